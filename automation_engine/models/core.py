"""Core Pydantic models for the workflow automation engine."""

import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


VARIABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

# Names that always resolve to system data and can never be shadowed by run variables.
RESERVED_CONTEXT_NAMES = frozenset({
    "record", "user", "now", "object", "trigger", "event", "before", "after",
    "changes", "field", "stage", "vars", "loop", "results",
})


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the SQL layer stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class EventType(str, Enum):
    """Domain events emitted by the surrounding record system."""
    RECORD_CREATED = "RECORD_CREATED"
    RECORD_UPDATED = "RECORD_UPDATED"
    RECORD_DELETED = "RECORD_DELETED"
    FIELD_CHANGED = "FIELD_CHANGED"
    STAGE_CHANGED = "STAGE_CHANGED"


class NodeType(str, Enum):
    """Closed set of workflow node variants."""
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    LOOP = "loop"


class ActionType(str, Enum):
    """Built-in action types."""
    SEND_EMAIL = "SEND_EMAIL"
    SEND_TELEGRAM = "SEND_TELEGRAM"
    CREATE_TASK = "CREATE_TASK"
    CREATE_NOTIFICATION = "CREATE_NOTIFICATION"
    UPDATE_FIELD = "UPDATE_FIELD"
    WEBHOOK = "WEBHOOK"
    DELAY = "DELAY"


class ConditionOperator(str, Enum):
    """Comparison operators understood by the condition evaluator."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IN = "in"
    NOT_IN = "not_in"


class ConditionLogic(str, Enum):
    """How a condition clause joins the running result."""
    AND = "AND"
    OR = "OR"


class EdgePort(str, Enum):
    """Named outgoing slots on branching nodes."""
    TRUE = "true"
    FALSE = "false"
    BODY = "body"
    EXIT = "exit"


class RunStatus(str, Enum):
    """Lifecycle states of an execution run."""
    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class ActionResultStatus(str, Enum):
    """Outcome of one action node visit."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class DelayUnit(str, Enum):
    """Units accepted by the DELAY action."""
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class _WireModel(BaseModel):
    """Base for models exchanged as camelCase JSON."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        """Dump to the JSON wire format (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TriggerSpec(_WireModel):
    """Definition-level trigger: which event type activates the workflow."""
    type: str = Field(..., description="Event type, e.g. FIELD_CHANGED")
    field: Optional[str] = Field(None, description="Watched field for FIELD_CHANGED triggers")


class TriggerNodeData(_WireModel):
    label: Optional[str] = None
    trigger_type: str = Field(..., alias="triggerType")
    object_name: Optional[str] = Field(None, alias="objectName")


class ActionNodeData(_WireModel):
    label: Optional[str] = None
    action_type: str = Field(..., alias="actionType")
    config: Dict[str, Any] = Field(default_factory=dict)
    continue_on_error: bool = Field(False, alias="continueOnError")


class ConditionClause(_WireModel):
    """One comparison in a condition list."""
    field: str = ""
    operator: str = ConditionOperator.EQUALS.value
    value: Any = None
    logic: Optional[str] = Field(None, description="AND/OR joining this clause to the previous result")


class ConditionNodeData(_WireModel):
    """A condition node: the primary clause plus optional follow-up clauses."""
    label: Optional[str] = None
    field: str = ""
    operator: str = ConditionOperator.EQUALS.value
    value: Any = None
    logic: Optional[str] = None
    conditions: List[ConditionClause] = Field(default_factory=list)

    def clauses(self) -> List[ConditionClause]:
        """Clauses in authoring order, primary clause first when it is set."""
        primary = []
        if self.field:
            primary.append(ConditionClause(
                field=self.field, operator=self.operator, value=self.value, logic=self.logic
            ))
        return primary + list(self.conditions)


class LoopNodeData(_WireModel):
    label: Optional[str] = None
    collection: str = Field("", validation_alias=AliasChoices("collection", "collectionExpr"))
    item_variable: str = Field("item", alias="itemVariable")


class TriggerNode(_WireModel):
    id: str
    type: Literal["trigger"] = "trigger"
    data: TriggerNodeData


class ActionNode(_WireModel):
    id: str
    type: Literal["action"] = "action"
    data: ActionNodeData


class ConditionNode(_WireModel):
    id: str
    type: Literal["condition"] = "condition"
    data: ConditionNodeData


class LoopNode(_WireModel):
    id: str
    type: Literal["loop"] = "loop"
    data: LoopNodeData


Node = Annotated[
    Union[TriggerNode, ActionNode, ConditionNode, LoopNode],
    Field(discriminator="type"),
]


class Edge(_WireModel):
    """Directed edge; ``source_port`` is set only for condition and loop sources."""
    source: str
    source_port: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("sourcePort", "sourceHandle", "source_port"),
        serialization_alias="sourcePort",
    )
    target: str


class Variable(_WireModel):
    """Run-scoped variable with a default value."""
    name: str
    value: Any = Field(None, validation_alias=AliasChoices("value", "default", "defaultValue"))

    @field_validator("name")
    @classmethod
    def validate_name(cls, name):
        """Variable names are alphanumeric/underscore and may not shadow system names."""
        name = (name or "").strip()
        if not VARIABLE_NAME_PATTERN.match(name):
            raise ValueError("Variable name must contain only letters, digits and underscores")
        if name in RESERVED_CONTEXT_NAMES:
            raise ValueError(f"Variable name '{name}' is reserved")
        return name


class WorkflowDefinition(_WireModel):
    """A saved, versioned workflow graph attached to one object type."""
    id: str = Field(..., description="Stable definition identifier")
    name: str = Field(..., description="Human readable name")
    description: Optional[str] = None
    object_id: str = Field(..., alias="objectId", description="Target object type")
    trigger: TriggerSpec
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    variables: List[Variable] = Field(default_factory=list)
    is_active: bool = Field(False, alias="isActive")
    version: int = Field(1, ge=1)
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @field_validator("name")
    @classmethod
    def validate_name_not_empty(cls, name):
        if not name or not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    def node_map(self) -> Dict[str, Any]:
        return {node.id: node for node in self.nodes}

    def outgoing(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def trigger_nodes(self) -> List[TriggerNode]:
        return [node for node in self.nodes if isinstance(node, TriggerNode)]


class DomainEvent(_WireModel):
    """Record-system event consumed by the trigger matcher."""
    event_type: str = Field(..., alias="eventType")
    object_type: str = Field(..., alias="objectType")
    record_id: str = Field(..., alias="recordId")
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    changed_fields: Optional[List[str]] = Field(None, alias="changedFields")
    user: Optional[Dict[str, Any]] = Field(None, description="Acting user (id, email, name)")

    def record_data(self) -> Dict[str, Any]:
        """Current record state: ``after`` when present, otherwise ``before``."""
        source = self.after if self.after is not None else (self.before or {})
        return dict(source)


class ActionResult(_WireModel):
    """Outcome of a single action node execution."""
    node_id: str = Field("", alias="nodeId")
    action_type: Optional[str] = Field(None, alias="actionType")
    status: ActionResultStatus
    output: Any = None
    error: Optional[str] = None
    error_details: Dict[str, Any] = Field(default_factory=dict, alias="errorDetails")
    attempts: int = 1
    iteration: Optional[List[int]] = Field(None, description="Loop indices, outermost first")
    timestamp: datetime = Field(default_factory=utcnow)


class LoopFrame(_WireModel):
    """Progress through one active Loop node."""
    loop_node_id: str = Field(..., alias="loopNodeId")
    item_variable: str = Field(..., alias="itemVariable")
    items: List[Any] = Field(default_factory=list)
    index: int = 0


class SuspensionPoint(_WireModel):
    """Where a delayed run picks up again."""
    delay_node_id: str = Field(..., alias="delayNodeId")
    resume_node_id: Optional[str] = Field(None, alias="resumeNodeId")
    resume_at: datetime = Field(..., alias="resumeAt")
    loop_frames: List[LoopFrame] = Field(default_factory=list, alias="loopFrames")
    visited: List[str] = Field(default_factory=list)

    @field_validator("resume_at")
    @classmethod
    def normalize_resume_at(cls, v):
        return as_naive_utc(v)


class ExecutionRun(_WireModel):
    """One execution of a definition version against one triggering event."""
    id: str
    definition_id: str = Field(..., alias="definitionId")
    definition_version: int = Field(..., alias="definitionVersion")
    event: Dict[str, Any] = Field(default_factory=dict)
    status: RunStatus = RunStatus.PENDING
    results: List[ActionResult] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    suspension: Optional[SuspensionPoint] = None
    cancel_requested: bool = Field(False, alias="cancelRequested")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    started_at: datetime = Field(default_factory=utcnow, alias="startedAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")


class ValidationIssue(_WireModel):
    """A single structural problem found in a definition."""
    code: str
    message: str
    node_id: Optional[str] = Field(None, alias="nodeId")


class ValidationResult(BaseModel):
    """Result of graph validation."""
    is_valid: bool = Field(..., description="Whether the graph is executable")
    errors: List[ValidationIssue] = Field(default_factory=list, description="All violations found")
    warnings: List[str] = Field(default_factory=list, description="Non-blocking observations")


class DefinitionSummary(BaseModel):
    """Summary information about a workflow definition."""
    id: str
    name: str
    object_id: str
    trigger_type: str
    is_active: bool
    version: int
    node_count: int
    updated_at: datetime


class PageMeta(_WireModel):
    """Position of one page within a filtered listing."""
    total: int
    page: int
    limit: int
    total_pages: int = Field(..., alias="totalPages")

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "PageMeta":
        return cls(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit) if limit else 0)


class Page(BaseModel):
    """One page of a listing plus its meta block."""
    data: List[Any]
    meta: PageMeta
