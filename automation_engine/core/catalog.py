"""Metadata catalogue for workflow editors: triggers, operators and template variables."""

from typing import Any, Dict, List

from ..models.core import ConditionOperator, EventType
from .exceptions import ConfigurationError

TRIGGERS: List[Dict[str, Any]] = [
    {"type": EventType.RECORD_CREATED.value, "name": "Record Created",
     "description": "When a new record is created", "requiresField": False},
    {"type": EventType.RECORD_UPDATED.value, "name": "Record Updated",
     "description": "When any field of a record changes", "requiresField": False},
    {"type": EventType.RECORD_DELETED.value, "name": "Record Deleted",
     "description": "When a record is deleted", "requiresField": False},
    {"type": EventType.FIELD_CHANGED.value, "name": "Field Changed",
     "description": "When a specific field changes", "requiresField": True},
    {"type": EventType.STAGE_CHANGED.value, "name": "Stage Changed",
     "description": "When a record moves to another stage", "requiresField": False},
]

_OPERATOR_LABELS = {
    ConditionOperator.EQUALS: "equals",
    ConditionOperator.NOT_EQUALS: "does not equal",
    ConditionOperator.CONTAINS: "contains",
    ConditionOperator.NOT_CONTAINS: "does not contain",
    ConditionOperator.STARTS_WITH: "starts with",
    ConditionOperator.ENDS_WITH: "ends with",
    ConditionOperator.GREATER_THAN: "greater than",
    ConditionOperator.LESS_THAN: "less than",
    ConditionOperator.GREATER_OR_EQUAL: "greater than or equal",
    ConditionOperator.LESS_OR_EQUAL: "less than or equal",
    ConditionOperator.IS_EMPTY: "is empty",
    ConditionOperator.IS_NOT_EMPTY: "is not empty",
    ConditionOperator.IN: "is one of",
    ConditionOperator.NOT_IN: "is not one of",
}

_COMMON_VARIABLES = [
    ("{{record.id}}", "Record ID", "clx123..."),
    ("{{record.<field>}}", "Any record field", "{{record.email}}"),
    ("{{record.owner_id}}", "Record owner ID", "user_123"),
    ("{{object.name}}", "Object name", "deals"),
    ("{{user.id}}", "Acting user ID", "user_123"),
    ("{{user.email}}", "Acting user email", "user@example.com"),
    ("{{user.name}}", "Acting user name", "Jane Doe"),
    ("{{trigger.type}}", "Trigger event type", "RECORD_UPDATED"),
    ("{{now}}", "Current date/time (UTC)", "2024-01-15T10:30:00Z"),
    ("{{now.date}}", "Current date", "2024-01-15"),
    ("{{now.time}}", "Current time", "10:30:00"),
    ("{{vars.<name>}}", "Workflow variable", "{{vars.threshold}}"),
    ("{{results.<nodeId>}}", "Output of an earlier action", "{{results.webhook_1.status}}"),
    ("{{loop.index}}", "Current loop position (inside a loop body)", "0"),
    ("{{loop.item}}", "Current loop item (inside a loop body)", "{{loop.item.email}}"),
]

_TRIGGER_VARIABLES = {
    EventType.RECORD_CREATED.value: [],
    EventType.RECORD_UPDATED.value: [
        ("{{changes}}", "Changed fields object", '{"status": {"old": "new", "new": "active"}}'),
        ("{{changes.<field>.old}}", "Old field value", "{{changes.status.old}}"),
        ("{{changes.<field>.new}}", "New field value", "{{changes.status.new}}"),
    ],
    EventType.RECORD_DELETED.value: [],
    EventType.FIELD_CHANGED.value: [
        ("{{field.name}}", "Changed field name", "status"),
        ("{{field.old}}", "Old value", "pending"),
        ("{{field.new}}", "New value", "active"),
    ],
    EventType.STAGE_CHANGED.value: [
        ("{{stage.old}}", "Previous stage", "lead"),
        ("{{stage.new}}", "New stage", "qualified"),
    ],
}


def list_triggers() -> List[Dict[str, Any]]:
    return [dict(trigger) for trigger in TRIGGERS]


def list_operators() -> List[Dict[str, Any]]:
    unary = {ConditionOperator.IS_EMPTY, ConditionOperator.IS_NOT_EMPTY}
    return [
        {"value": operator.value, "label": label, "requiresValue": operator not in unary}
        for operator, label in _OPERATOR_LABELS.items()
    ]


def list_variables(trigger_type: str) -> List[Dict[str, str]]:
    """Template variables available to workflows with the given trigger.

    Raises:
        ConfigurationError: If the trigger type is unknown
    """
    if trigger_type not in _TRIGGER_VARIABLES:
        raise ConfigurationError(f"Unknown trigger type '{trigger_type}'", config_key="trigger_type")
    return [
        {"name": name, "description": description, "example": example}
        for name, description, example in _COMMON_VARIABLES + _TRIGGER_VARIABLES[trigger_type]
    ]
