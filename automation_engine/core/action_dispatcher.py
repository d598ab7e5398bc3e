"""Action Dispatcher: routes resolved action configs to registered handlers."""

import threading
from typing import Any, Dict, List, Optional

from ..actions.base import ActionHandler, ActionInvocation
from ..models.core import ActionResult, ActionResultStatus
from .exceptions import ActionError, ConfigurationError
from .logging import get_logger

logger = get_logger(__name__)


class ActionDispatcher:
    """Registry mapping action type strings to handlers.

    Handlers are registered at startup. Dispatch never raises: every outcome,
    including handler crashes, comes back as an :class:`ActionResult`.
    """

    def __init__(self):
        self._handlers: Dict[str, ActionHandler] = {}
        self._lock = threading.RLock()

    def register_handler(self, handler: ActionHandler, replace: bool = False) -> None:
        """Register a handler under its ``action_type``.

        Args:
            handler: Handler instance
            replace: Allow overriding an existing registration

        Raises:
            ConfigurationError: If the type is empty, the handler cannot
                execute, or the type is already registered
        """
        action_type = (getattr(handler, "action_type", "") or "").strip()
        if not action_type:
            raise ConfigurationError("Action handler must declare an action_type")
        if not callable(getattr(handler, "execute", None)):
            raise ConfigurationError(f"Handler for '{action_type}' has no execute method")

        with self._lock:
            if action_type in self._handlers and not replace:
                raise ConfigurationError(f"Action type '{action_type}' is already registered")
            self._handlers[action_type] = handler

        logger.info(f"Registered handler for action type '{action_type}'")

    def unregister_handler(self, action_type: str) -> bool:
        with self._lock:
            return self._handlers.pop(action_type, None) is not None

    def get_handler(self, action_type: str) -> ActionHandler:
        """Look up a handler, raising ConfigurationError when none is registered."""
        with self._lock:
            handler = self._handlers.get(action_type)
        if handler is None:
            raise ConfigurationError(f"Unknown action type: {action_type}")
        return handler

    def has_handler(self, action_type: str) -> bool:
        with self._lock:
            return action_type in self._handlers

    def list_action_types(self) -> List[str]:
        with self._lock:
            return sorted(self._handlers)

    def required_config_for(self, action_type: str) -> List[str]:
        return list(self.get_handler(action_type).required_config)

    def nullable_config_for(self, action_type: str) -> List[str]:
        return list(self.get_handler(action_type).nullable_config)

    def describe_actions(self) -> List[Dict[str, Any]]:
        with self._lock:
            handlers = [self._handlers[key] for key in sorted(self._handlers)]
        return [handler.describe() for handler in handlers]

    def dispatch(
        self,
        action_type: str,
        resolved_config: Dict[str, Any],
        invocation: Optional[ActionInvocation] = None,
    ) -> ActionResult:
        """Execute one action and describe the outcome.

        Args:
            action_type: Registered action type
            resolved_config: Config with all template tokens already resolved
            invocation: Run/node identity passed through to the handler

        Returns:
            ActionResult stamped with the node id, type and loop iteration
        """
        stamp = {
            "node_id": invocation.node_id if invocation else "",
            "action_type": action_type,
            "iteration": list(invocation.iteration) if invocation and invocation.iteration else None,
        }

        try:
            handler = self.get_handler(action_type)
        except ConfigurationError as e:
            logger.error(f"Dispatch failed for node {stamp['node_id']}: {e.message}")
            return ActionResult(
                status=ActionResultStatus.FAILED,
                error=e.message,
                error_details={"errorCode": e.error_code, "transient": False, "fatal": True},
                **stamp,
            )

        try:
            outcome = handler.execute(resolved_config, invocation)
        except ActionError as e:
            logger.error(f"Action {action_type} failed at node {stamp['node_id']}: {e.message}")
            details = dict(e.details)
            attempts = details.pop("attempts", 1)
            details.update({
                "errorCode": e.error_code,
                "transient": e.transient,
                "fatal": e.fatal,
            })
            if e.status_code is not None:
                details["statusCode"] = e.status_code
            details.pop("status_code", None)
            return ActionResult(
                status=ActionResultStatus.FAILED,
                error=e.message,
                error_details=details,
                attempts=attempts,
                **stamp,
            )
        except Exception as e:
            logger.error(f"Handler for {action_type} raised unexpectedly at node {stamp['node_id']}: {e}", exc_info=True)
            return ActionResult(
                status=ActionResultStatus.FAILED,
                error=f"Unexpected error in {action_type} handler: {str(e)}",
                error_details={"errorCode": type(e).__name__, "transient": False, "fatal": True},
                **stamp,
            )

        if isinstance(outcome, ActionResult):
            return outcome.model_copy(update=stamp)

        return ActionResult(status=ActionResultStatus.SUCCEEDED, output=outcome, **stamp)
