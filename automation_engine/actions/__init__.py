"""Built-in action handlers and the collaborator gateways they call."""

from .base import ActionHandler, ActionInvocation
from .gateways import InMemoryCrmGateway
from .messaging import SendEmailHandler, SendTelegramHandler
from .records import CreateTaskHandler, CreateNotificationHandler, UpdateFieldHandler
from .webhook import WebhookHandler
from .delay import DelayHandler, compute_resume_at

__all__ = [
    "ActionHandler",
    "ActionInvocation",
    "InMemoryCrmGateway",
    "SendEmailHandler",
    "SendTelegramHandler",
    "CreateTaskHandler",
    "CreateNotificationHandler",
    "UpdateFieldHandler",
    "WebhookHandler",
    "DelayHandler",
    "compute_resume_at",
]
