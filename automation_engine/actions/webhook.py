"""WEBHOOK action: JSON request to an external URL with bounded retry."""

from typing import Any, Dict, Optional

from ..core.exceptions import PermanentActionError
from ..models.core import ActionResult, ActionResultStatus, ActionType
from .base import ActionHandler, ActionInvocation
from .http_client import HttpClient

ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


class WebhookHandler(ActionHandler):
    action_type = ActionType.WEBHOOK.value
    label = "Webhook"
    description = "Send an HTTP request to an external service"
    required_config = ["url"]
    optional_config = ["method", "headers", "body"]
    config_defaults = {"method": "POST"}

    def __init__(self, client: Optional[HttpClient] = None):
        self.client = client or HttpClient()

    def execute(self, config: Dict[str, Any], invocation: Optional[ActionInvocation] = None) -> ActionResult:
        config = self.with_defaults(config)
        self.require(config, "url")

        method = str(config.get("method") or "POST").upper()
        if method not in ALLOWED_METHODS:
            raise PermanentActionError(f"Unsupported HTTP method '{method}'", action_type=self.action_type)

        headers = {"Content-Type": "application/json"}
        extra_headers = config.get("headers") or {}
        if not isinstance(extra_headers, dict):
            raise PermanentActionError("Webhook headers must be a mapping", action_type=self.action_type)
        headers.update({str(key): str(value) for key, value in extra_headers.items()})
        if invocation is not None:
            headers.setdefault("Idempotency-Key", invocation.idempotency_key)

        json_body = None
        data = None
        body = config.get("body")
        if method != "GET" and body is not None:
            if isinstance(body, str):
                data = body.encode("utf-8")
            else:
                json_body = body

        call = self.client.request(
            method,
            str(config["url"]),
            self.action_type,
            headers=headers,
            json_body=json_body,
            data=data,
        )

        return ActionResult(
            status=ActionResultStatus.SUCCEEDED,
            output={
                "status": call.status_code,
                "statusText": call.response.reason,
                "body": call.body(),
            },
            attempts=call.attempts,
        )
