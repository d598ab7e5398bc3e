"""Startup wiring: registers every built-in handler on a dispatcher."""

import time
from typing import Any, Callable, Optional

import requests

from ..config import AppConfig
from ..core.action_dispatcher import ActionDispatcher
from ..core.error_recovery import RetryConfig
from ..core.exceptions import TransientActionError
from .delay import DelayHandler
from .gateways import InMemoryCrmGateway
from .http_client import HttpClient
from .messaging import SendEmailHandler, SendTelegramHandler
from .records import CreateNotificationHandler, CreateTaskHandler, UpdateFieldHandler
from .webhook import WebhookHandler


def build_http_client(
    config: AppConfig,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], Any] = time.sleep,
) -> HttpClient:
    """HTTP client whose retry policy comes from the webhook settings."""
    retry_config = RetryConfig(
        max_attempts=config.webhook_max_attempts,
        base_delay=config.webhook_base_delay,
        max_delay=config.webhook_max_delay,
        retryable_exceptions=[TransientActionError],
    )
    return HttpClient(session=session, retry_config=retry_config, timeout=config.webhook_timeout, sleep=sleep)


def build_default_dispatcher(
    config: AppConfig,
    gateway: Optional[Any] = None,
    http_client: Optional[HttpClient] = None,
) -> ActionDispatcher:
    """
    Create a dispatcher with all seven built-in action types.

    Args:
        config: Application configuration (retry policy, Telegram settings)
        gateway: Object implementing the email, task, notification and record
            gateways; defaults to an :class:`InMemoryCrmGateway`
        http_client: Shared client for WEBHOOK and SEND_TELEGRAM

    Returns:
        A ready-to-use ActionDispatcher
    """
    gateway = gateway if gateway is not None else InMemoryCrmGateway()
    http_client = http_client or build_http_client(config)

    dispatcher = ActionDispatcher()
    for handler in (
        SendEmailHandler(gateway),
        SendTelegramHandler(config.telegram_bot_token, client=http_client, api_base=config.telegram_api_base),
        CreateTaskHandler(gateway),
        CreateNotificationHandler(gateway),
        UpdateFieldHandler(gateway),
        WebhookHandler(client=http_client),
        DelayHandler(),
    ):
        dispatcher.register_handler(handler)
    return dispatcher
