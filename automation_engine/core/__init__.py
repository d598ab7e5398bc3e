"""Core workflow automation components."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    MatchError,
    EvaluationError,
    ActionError,
    TransientActionError,
    PermanentActionError,
    SchedulingError,
    ExecutionEngineError,
    RunStateError,
    StorageError,
    DefinitionNotFoundError,
    RunNotFoundError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "MatchError",
    "EvaluationError",
    "ActionError",
    "TransientActionError",
    "PermanentActionError",
    "SchedulingError",
    "ExecutionEngineError",
    "RunStateError",
    "StorageError",
    "DefinitionNotFoundError",
    "RunNotFoundError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
]
