"""Collaborator interfaces used by the built-in action handlers.

The engine does not own email delivery, tasks, notifications or record
storage. Handlers talk to these gateways, which the host application supplies.
"""

import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol


class EmailGateway(Protocol):
    def send_email(
        self,
        template_id: str,
        to: List[str],
        cc: List[str],
        data: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...


class TaskGateway(Protocol):
    def create_task(
        self,
        title: str,
        description: Optional[str],
        assignee_id: Optional[str],
        priority: str,
        due_date: Optional[datetime],
        record_id: Optional[str],
        object_id: Optional[str],
    ) -> Dict[str, Any]:
        ...


class NotificationGateway(Protocol):
    def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type: str,
        link: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...


class RecordGateway(Protocol):
    def update_field(self, object_id: Optional[str], record_id: str, field: str, value: Any) -> Dict[str, Any]:
        ...


class InMemoryCrmGateway:
    """Gateway implementation that keeps everything in memory.

    Used by the default application wiring and by tests to observe side
    effects.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.emails: List[Dict[str, Any]] = []
        self.tasks: List[Dict[str, Any]] = []
        self.notifications: List[Dict[str, Any]] = []
        self.field_updates: List[Dict[str, Any]] = []
        self._sent_keys: Dict[str, Dict[str, Any]] = {}

    def send_email(self, template_id, to, cc, data, idempotency_key=None):
        with self._lock:
            if idempotency_key and idempotency_key in self._sent_keys:
                return self._sent_keys[idempotency_key]
            message = {
                "messageId": str(uuid.uuid4()),
                "templateId": template_id,
                "to": list(to),
                "cc": list(cc),
                "data": dict(data),
            }
            self.emails.append(message)
            if idempotency_key:
                self._sent_keys[idempotency_key] = message
            return message

    def create_task(self, title, description, assignee_id, priority, due_date, record_id, object_id):
        task = {
            "id": str(uuid.uuid4()),
            "title": title,
            "description": description,
            "assigneeId": assignee_id,
            "priority": priority,
            "dueDate": due_date.isoformat() if due_date else None,
            "recordId": record_id,
            "objectId": object_id,
        }
        with self._lock:
            self.tasks.append(task)
        return task

    def create_notification(self, user_id, title, message, type, link=None):
        notification = {
            "id": str(uuid.uuid4()),
            "userId": user_id,
            "title": title,
            "message": message,
            "type": type,
            "link": link,
        }
        with self._lock:
            self.notifications.append(notification)
        return notification

    def update_field(self, object_id, record_id, field, value):
        update = {"objectId": object_id, "recordId": record_id, "field": field, "value": value}
        with self._lock:
            self.field_updates.append(update)
        return update
