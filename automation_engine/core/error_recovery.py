"""Retry with exponential backoff for transient failures."""

import time
import random
from typing import Callable, Any, Optional, List, Type

from .exceptions import WorkflowEngineError, TransientActionError, StorageError
from .logging import ErrorRecoveryLogger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[Type[Exception]]] = None
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or [
            TransientActionError, StorageError
        ]

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if an exception should be retried."""
        if attempt >= self.max_attempts:
            return False

        if isinstance(exception, WorkflowEngineError):
            return exception.recoverable

        return any(isinstance(exception, exc_type) for exc_type in self.retryable_exceptions)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay


def retry_call(
    func: Callable,
    config: RetryConfig,
    *args,
    sleep: Callable[[float], Any] = time.sleep,
    operation: Optional[str] = None,
    on_attempt: Optional[Callable[[int], None]] = None,
    **kwargs
) -> Any:
    """Call ``func`` until it succeeds, raises a non-retryable error, or attempts run out.

    ``on_attempt`` is invoked with the 1-based attempt number before each call.
    """
    operation = operation or getattr(func, "__name__", "operation")
    recovery_logger = ErrorRecoveryLogger(operation)

    for attempt in range(1, config.max_attempts + 1):
        if on_attempt is not None:
            on_attempt(attempt)
        try:
            result = func(*args, **kwargs)
            if attempt > 1:
                recovery_logger.log_recovery_success(operation, attempt)
            return result
        except Exception as e:
            if not config.should_retry(e, attempt):
                if attempt > 1:
                    recovery_logger.log_recovery_failure(operation, e, attempt)
                raise

            recovery_logger.log_recovery_attempt(operation, e, attempt, config.max_attempts)
            sleep(config.get_delay(attempt))

    # unreachable: the last attempt either returns or raises
    raise RuntimeError(f"retry loop for {operation} exited without a result")
