"""Data models for the workflow automation engine."""

from .core import (
    EventType,
    NodeType,
    ActionType,
    ConditionOperator,
    ConditionLogic,
    EdgePort,
    RunStatus,
    ActionResultStatus,
    DelayUnit,
    TriggerSpec,
    TriggerNodeData,
    ActionNodeData,
    ConditionClause,
    ConditionNodeData,
    LoopNodeData,
    TriggerNode,
    ActionNode,
    ConditionNode,
    LoopNode,
    Node,
    Edge,
    Variable,
    WorkflowDefinition,
    DomainEvent,
    ActionResult,
    LoopFrame,
    SuspensionPoint,
    ExecutionRun,
    ValidationIssue,
    ValidationResult,
    DefinitionSummary,
    PageMeta,
    Page,
    as_naive_utc,
    utcnow,
)

__all__ = [
    "EventType",
    "NodeType",
    "ActionType",
    "ConditionOperator",
    "ConditionLogic",
    "EdgePort",
    "RunStatus",
    "ActionResultStatus",
    "DelayUnit",
    "TriggerSpec",
    "TriggerNodeData",
    "ActionNodeData",
    "ConditionClause",
    "ConditionNodeData",
    "LoopNodeData",
    "TriggerNode",
    "ActionNode",
    "ConditionNode",
    "LoopNode",
    "Node",
    "Edge",
    "Variable",
    "WorkflowDefinition",
    "DomainEvent",
    "ActionResult",
    "LoopFrame",
    "SuspensionPoint",
    "ExecutionRun",
    "ValidationIssue",
    "ValidationResult",
    "DefinitionSummary",
    "PageMeta",
    "Page",
    "as_naive_utc",
    "utcnow",
]
