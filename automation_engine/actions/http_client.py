"""Outbound HTTP for action handlers, classifying failures as transient or permanent."""

import time
from typing import Any, Callable, Dict, Optional

import requests

from ..core.error_recovery import RetryConfig, retry_call
from ..core.exceptions import ActionError, PermanentActionError, TransientActionError
from ..core.logging import get_logger

logger = get_logger(__name__)


class HttpCallResult:
    """A completed HTTP exchange plus how many attempts it took."""

    def __init__(self, response: requests.Response, attempts: int):
        self.response = response
        self.attempts = attempts

    @property
    def status_code(self) -> int:
        return self.response.status_code

    def body(self) -> Any:
        """JSON body when the response has one, otherwise the raw text (or None)."""
        try:
            return self.response.json()
        except ValueError:
            return self.response.text or None


class HttpClient:
    """
    Thin wrapper over a ``requests.Session`` with bounded retry.

    Connection errors, timeouts and 5xx responses raise
    ``TransientActionError`` and are retried with exponential backoff;
    4xx responses raise ``PermanentActionError`` immediately.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 10.0,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.session = session or requests.Session()
        self.retry_config = retry_config or RetryConfig(retryable_exceptions=[TransientActionError])
        self.timeout = timeout
        self.sleep = sleep

    def request(
        self,
        method: str,
        url: str,
        action_type: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        data: Any = None,
    ) -> HttpCallResult:
        """
        Send a request, retrying transient failures.

        Returns:
            HttpCallResult for the first 2xx/3xx response

        Raises:
            ActionError: With ``details["attempts"]`` set to the attempts made
        """
        attempts = 0

        def _count(attempt: int) -> None:
            nonlocal attempts
            attempts = attempt

        try:
            response = retry_call(
                self._send,
                self.retry_config,
                method,
                url,
                action_type,
                headers or {},
                json_body,
                data,
                sleep=self.sleep,
                operation=f"{action_type.lower()}_request",
                on_attempt=_count,
            )
        except ActionError as e:
            e.add_details(attempts=attempts)
            raise

        return HttpCallResult(response, attempts)

    def _send(self, method, url, action_type, headers, json_body, data) -> requests.Response:
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                json=json_body,
                data=data,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientActionError(
                f"{action_type} request to {url} failed: {str(e)}",
                action_type=action_type,
            )
        except requests.RequestException as e:
            raise PermanentActionError(
                f"{action_type} request to {url} is invalid: {str(e)}",
                action_type=action_type,
            )

        status = response.status_code
        if status >= 500:
            raise TransientActionError(
                f"{action_type} request to {url} returned {status}",
                action_type=action_type,
                status_code=status,
            )
        if status >= 400:
            raise PermanentActionError(
                f"{action_type} request to {url} returned {status}",
                action_type=action_type,
                status_code=status,
            )

        logger.debug(f"{action_type} {method} {url} -> {status}")
        return response
