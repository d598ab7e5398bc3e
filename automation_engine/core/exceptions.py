"""Exceptions for the workflow automation engine with detailed error information."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    MATCHING = "matching"
    EVALUATION = "evaluation"
    EXECUTION = "execution"
    SCHEDULING = "scheduling"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class GraphValidationError(WorkflowEngineError):
    """Raised when a workflow definition fails structural validation.

    Carries every issue found so authors can fix the definition in one pass.
    """

    def __init__(
        self,
        message: str,
        issues: Optional[List[Any]] = None,
        definition_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.issues = list(issues or [])
        if definition_id:
            self.add_context(definition_id=definition_id)
        if self.issues:
            self.add_details(validation_errors=[
                issue.model_dump() if hasattr(issue, "model_dump") else str(issue)
                for issue in self.issues
            ])


class MatchError(WorkflowEngineError):
    """Raised when a domain event is malformed. Callers treat it as non-activation."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.MATCHING,
            **kwargs
        )


class EvaluationError(WorkflowEngineError):
    """Raised while coercing condition operands. Never escapes the evaluator."""

    def __init__(self, message: str, operator: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.EVALUATION,
            **kwargs
        )
        if operator:
            self.add_context(operator=operator)


class ActionError(WorkflowEngineError):
    """Raised by action handlers when a unit of work fails."""

    transient = False

    def __init__(
        self,
        message: str,
        action_type: Optional[str] = None,
        status_code: Optional[int] = None,
        fatal: bool = True,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.EXECUTION)
        super().__init__(message, recoverable=self.transient, **kwargs)
        self.action_type = action_type
        self.status_code = status_code
        self.fatal = fatal
        if action_type:
            self.add_context(action_type=action_type)
        if status_code is not None:
            self.add_details(status_code=status_code)


class TransientActionError(ActionError):
    """Network failures and 5xx responses; eligible for retry."""

    transient = True

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.NETWORK)
        super().__init__(message, retry_after=1, **kwargs)


class PermanentActionError(ActionError):
    """4xx responses, missing configuration and other non-retryable failures."""


class SchedulingError(WorkflowEngineError):
    """Raised for unusable delay settings; the scheduler continues immediately."""

    def __init__(self, message: str, node_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.SCHEDULING,
            **kwargs
        )
        if node_id:
            self.add_context(node_id=node_id)


class ExecutionEngineError(WorkflowEngineError):
    """Raised when run orchestration fails."""

    def __init__(
        self,
        message: str,
        run_id: Optional[str] = None,
        definition_id: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            message,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if run_id:
            self.add_context(run_id=run_id)
        if definition_id:
            self.add_context(definition_id=definition_id)


class RunStateError(ExecutionEngineError):
    """Raised for an illegal run transition, e.g. resuming a completed run."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, severity=ErrorSeverity.MEDIUM, **kwargs)


class StorageError(WorkflowEngineError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("recoverable", True)
        kwargs.setdefault("retry_after", 3)
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class DefinitionNotFoundError(StorageError):
    """Raised when a workflow definition does not exist."""

    def __init__(self, definition_id: str, version: Optional[int] = None):
        label = f"'{definition_id}'" if version is None else f"'{definition_id}' v{version}"
        super().__init__(f"Workflow definition {label} not found", recoverable=False, retry_after=None)
        self.add_context(definition_id=definition_id)


class RunNotFoundError(StorageError):
    """Raised when an execution run does not exist."""

    def __init__(self, run_id: str):
        super().__init__(f"Execution run '{run_id}' not found", recoverable=False, retry_after=None)
        self.add_context(run_id=run_id)


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
