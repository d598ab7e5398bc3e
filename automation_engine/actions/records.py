"""Record-system actions: tasks, notifications and field updates."""

from datetime import timedelta
from typing import Any, Dict, Optional

from ..core.exceptions import PermanentActionError
from ..models.core import ActionType, utcnow
from .base import ActionHandler, ActionInvocation
from .gateways import NotificationGateway, RecordGateway, TaskGateway

TASK_PRIORITIES = ("LOW", "MEDIUM", "HIGH", "URGENT")


class CreateTaskHandler(ActionHandler):
    action_type = ActionType.CREATE_TASK.value
    label = "Create Task"
    description = "Create a task linked to the triggering record"
    required_config = ["title"]
    optional_config = ["description", "assigneeId", "priority", "dueInDays"]
    config_defaults = {"priority": "MEDIUM"}

    def __init__(self, gateway: TaskGateway):
        self.gateway = gateway

    def execute(self, config: Dict[str, Any], invocation: Optional[ActionInvocation] = None) -> Dict[str, Any]:
        config = self.with_defaults(config)
        self.require(config, "title")

        priority = str(config.get("priority") or "MEDIUM").upper()
        if priority not in TASK_PRIORITIES:
            raise PermanentActionError(
                f"Unknown task priority '{priority}'. Expected one of {', '.join(TASK_PRIORITIES)}",
                action_type=self.action_type,
            )

        due_date = None
        due_in_days = config.get("dueInDays")
        if due_in_days not in (None, ""):
            try:
                days = int(float(due_in_days))
            except (TypeError, ValueError):
                raise PermanentActionError(
                    f"dueInDays must be a number, got {due_in_days!r}",
                    action_type=self.action_type,
                )
            if days > 0:
                due_date = utcnow() + timedelta(days=days)

        return self.gateway.create_task(
            title=str(config["title"]),
            description=config.get("description") or None,
            assignee_id=config.get("assigneeId") or None,
            priority=priority,
            due_date=due_date,
            record_id=invocation.record_id if invocation else None,
            object_id=invocation.object_id if invocation else None,
        )


class CreateNotificationHandler(ActionHandler):
    action_type = ActionType.CREATE_NOTIFICATION.value
    label = "Create Notification"
    description = "Show an in-app notification to a user"
    required_config = ["userId", "title", "message"]
    optional_config = ["type", "link"]
    config_defaults = {"type": "info"}

    def __init__(self, gateway: NotificationGateway):
        self.gateway = gateway

    def execute(self, config: Dict[str, Any], invocation: Optional[ActionInvocation] = None) -> Dict[str, Any]:
        config = self.with_defaults(config)
        self.require(config, "userId", "title", "message")
        return self.gateway.create_notification(
            user_id=str(config["userId"]),
            title=str(config["title"]),
            message=str(config["message"]),
            type=str(config.get("type") or "info"),
            link=config.get("link") or None,
        )


class UpdateFieldHandler(ActionHandler):
    action_type = ActionType.UPDATE_FIELD.value
    label = "Update Field"
    description = "Set a field on the triggering record"
    required_config = ["field"]
    nullable_config = ["value"]

    def __init__(self, gateway: RecordGateway):
        self.gateway = gateway

    def execute(self, config: Dict[str, Any], invocation: Optional[ActionInvocation] = None) -> Dict[str, Any]:
        self.require(config, "field")
        if "value" not in config:
            raise PermanentActionError("UPDATE_FIELD requires value", action_type=self.action_type)
        if invocation is None or not invocation.record_id:
            raise PermanentActionError("UPDATE_FIELD needs a triggering record", action_type=self.action_type)

        return self.gateway.update_field(
            object_id=invocation.object_id,
            record_id=invocation.record_id,
            field=str(config["field"]),
            value=config["value"],
        )
