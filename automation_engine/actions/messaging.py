"""Messaging actions: templated email and Telegram messages."""

from typing import Any, Dict, List, Optional

from ..core.exceptions import PermanentActionError
from ..models.core import ActionResult, ActionResultStatus, ActionType
from .base import ActionHandler, ActionInvocation
from .gateways import EmailGateway
from .http_client import HttpClient


def _address_list(value: Any) -> List[str]:
    """Accept a list of addresses or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


class SendEmailHandler(ActionHandler):
    action_type = ActionType.SEND_EMAIL.value
    label = "Send Email"
    description = "Send an email built from a saved template"
    required_config = ["templateId", "to"]
    optional_config = ["cc", "data"]

    def __init__(self, gateway: EmailGateway):
        self.gateway = gateway

    def execute(self, config: Dict[str, Any], invocation: Optional[ActionInvocation] = None) -> Dict[str, Any]:
        self.require(config, "templateId", "to")
        to = _address_list(config.get("to"))
        if not to:
            raise PermanentActionError("SEND_EMAIL has no recipients", action_type=self.action_type)

        data = config.get("data") or {}
        if not isinstance(data, dict):
            raise PermanentActionError("SEND_EMAIL data must be a mapping", action_type=self.action_type)

        return self.gateway.send_email(
            template_id=str(config["templateId"]),
            to=to,
            cc=_address_list(config.get("cc")),
            data=data,
            idempotency_key=invocation.idempotency_key if invocation else None,
        )


class SendTelegramHandler(ActionHandler):
    """Posts to the Telegram Bot API ``sendMessage`` method."""

    action_type = ActionType.SEND_TELEGRAM.value
    label = "Send Telegram Message"
    description = "Send a message to a Telegram chat through the configured bot"
    required_config = ["chatId", "message"]
    optional_config = ["parseMode"]
    config_defaults = {"parseMode": "HTML"}

    def __init__(
        self,
        bot_token: Optional[str],
        client: Optional[HttpClient] = None,
        api_base: str = "https://api.telegram.org",
    ):
        self.bot_token = bot_token
        self.client = client or HttpClient()
        self.api_base = api_base.rstrip("/")

    def execute(self, config: Dict[str, Any], invocation: Optional[ActionInvocation] = None) -> ActionResult:
        if not self.bot_token:
            raise PermanentActionError("Telegram bot token not configured", action_type=self.action_type)

        config = self.with_defaults(config)
        self.require(config, "chatId", "message")

        call = self.client.request(
            "POST",
            f"{self.api_base}/bot{self.bot_token}/sendMessage",
            self.action_type,
            json_body={
                "chat_id": config["chatId"],
                "text": config["message"],
                "parse_mode": config.get("parseMode") or "HTML",
            },
        )

        payload = call.body()
        if isinstance(payload, dict) and payload.get("ok") is False:
            raise PermanentActionError(
                f"Telegram API error: {payload.get('description', 'unknown error')}",
                action_type=self.action_type,
            )

        return ActionResult(status=ActionResultStatus.SUCCEEDED, output=payload, attempts=call.attempts)
