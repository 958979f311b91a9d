"""
Structured error types for cronspine.

Every error raised by the scheduler carries a category, an explicit
retryable flag, structured context (task, instance, claim owner) and an
optional chained cause. The run loop uses these attributes to decide
whether a failure is isolated to one instance or fatal for the batch.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         CronError                               │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  ConfigError          ValidationError      DatabaseError        │
        │  (CONFIG)             (VALIDATION)         (DATABASE)           │
        │      │                                         │                │
        │  InvalidSettingError                       DatastoreError       │
        │                                            (retryable)          │
        │                                                                 │
        │  ScheduleError        ExecutionError       SchedulerFatalError  │
        │  (ORCHESTRATION)      (EXECUTION)          (ORCHESTRATION)      │
        │      │                    │                                     │
        │  TaskNotFoundError    HandlerNotFoundError                      │
        │  InstanceNotFoundError TaskResolutionError                      │
        └─────────────────────────────────────────────────────────────────┘

Propagation policy:
    - ``ValidationError`` / ``ConfigError``: rejected immediately, no
      state change.
    - ``DatastoreError``: fatal for the current batch; the run loop reports
      it through ``CycleResult`` and stops.
    - ``ExecutionError`` subclasses: recorded as a failed outcome for the
      one instance; never abort sibling instances.

Usage:
    from cronspine.core.errors import DatastoreError

    try:
        conn.execute(sql, params)
    except sqlite3.Error as e:
        raise DatastoreError("claim query failed", cause=e)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors (usually transient)
    DATABASE = "DATABASE"         # Connection lost, lock timeout

    # Input errors (never retryable)
    VALIDATION = "VALIDATION"     # Bad task/instance definition
    CONFIG = "CONFIG"             # Unknown or invalid setting

    # Application errors
    EXECUTION = "EXECUTION"       # Handler resolution or invocation
    ORCHESTRATION = "ORCHESTRATION"  # Scheduling, claims, run loop

    # Internal errors
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        task: Task definition name
        arguments: Serialized instance arguments
        instance: Instance number
        run_by: Claim owner token of the agent that hit the error
        setting: Setting name (configuration errors)
        metadata: Additional key-value pairs
    """

    task: str | None = None
    arguments: str | None = None
    instance: int | None = None
    run_by: str | None = None
    setting: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["task", "arguments", "instance", "run_by", "setting"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CronError(Exception):
    """
    Base exception for all cronspine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    callers rarely need to pass them explicitly.

    Examples:
        >>> error = CronError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> error = ScheduleError("bad calendar").with_context(task="backup")
        >>> error.context.task
        'backup'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CronError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION / VALIDATION ERRORS
# =============================================================================


class ConfigError(CronError):
    """Configuration error (never retryable)."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidSettingError(ConfigError):
    """Unknown setting name or unusable value."""

    def __init__(self, setting: str, value: Any = None, message: str | None = None):
        msg = message or f"Unsupported setting '{setting}'"
        super().__init__(msg, context=ErrorContext(setting=setting, metadata={"value": value}))
        self.setting = setting
        self.value = value


class ValidationError(CronError):
    """A task definition or instance violates an invariant."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(self, message: str, *, field: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        return result


# =============================================================================
# DATASTORE ERRORS
# =============================================================================


class DatabaseError(CronError):
    """Database query or transaction error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class DatastoreError(DatabaseError):
    """The datastore is unreachable or a statement failed.

    Fatal for the current batch. Retryable in the sense that the next
    agent invocation may succeed; the run loop itself does not retry.
    """

    default_retryable = True


# =============================================================================
# SCHEDULING ERRORS
# =============================================================================


class ScheduleError(CronError):
    """Schedule configuration or computation error."""

    default_category = ErrorCategory.ORCHESTRATION


class TaskNotFoundError(ScheduleError):
    """No task definition with the given name."""

    def __init__(self, task: str):
        super().__init__(f"Task '{task}' not found", context=ErrorContext(task=task))


class InstanceNotFoundError(ScheduleError):
    """No schedule entry with the given identity."""

    def __init__(self, task: str, arguments: str, instance: int):
        super().__init__(
            f"Instance {instance} of task '{task}' not found",
            context=ErrorContext(task=task, arguments=arguments, instance=instance),
        )


class SchedulerFatalError(ScheduleError):
    """Raised at the top level when a cycle ended fatally."""


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class ExecutionError(CronError):
    """Failure while resolving or invoking a task handler."""

    default_category = ErrorCategory.EXECUTION


class HandlerNotFoundError(ExecutionError):
    """Handler or factory name is not in the registry."""

    def __init__(self, name: str, available: list[str] | None = None):
        detail = f" Available: {', '.join(available)}" if available else ""
        super().__init__(f"No handler registered for '{name}'.{detail}")
        self.name = name


class TaskResolutionError(ExecutionError):
    """Handler exists but the invocable unit could not be built."""


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, CronError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, CronError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.DATABASE
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CronError",
    "ConfigError",
    "InvalidSettingError",
    "ValidationError",
    "DatabaseError",
    "DatastoreError",
    "ScheduleError",
    "TaskNotFoundError",
    "InstanceNotFoundError",
    "SchedulerFatalError",
    "ExecutionError",
    "HandlerNotFoundError",
    "TaskResolutionError",
    "is_retryable",
    "categorize_error",
]
