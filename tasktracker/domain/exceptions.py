"""
Data-access exceptions.

A closed hierarchy of error kinds surfaced by the task data-access layer.
Store-level failures never leave the layer as raw driver errors; they are
re-raised as one of these, chained to the original cause.
"""

from enum import Enum


class ErrorType(str, Enum):
    """Error type enumeration for discriminated handling by callers."""

    INVALID_ARGUMENT = "invalid_argument"
    PERSISTENCE = "persistence_failed"
    TRANSACTION = "transaction_failed"


class TaskTrackerError(Exception):
    """Base class for all data-access errors with type discrimination."""

    error_type: ErrorType

    def __init__(
        self,
        message: str,
        details: dict[str, str | int | bool | None] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, str | dict[str, str | int | bool | None]]:
        """Convert error to dictionary for API responses."""
        return {
            "type": self.error_type.value,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(TaskTrackerError, ValueError):
    """Raised when a caller violates a precondition, such as a blank description."""

    error_type = ErrorType.INVALID_ARGUMENT

    def __init__(self, field_name: str, message: str) -> None:
        self.field_name = field_name
        super().__init__(
            f"Invalid value for '{field_name}': {message}", {"field": field_name}
        )


class PersistenceError(TaskTrackerError):
    """Raised when a store operation did not achieve its intended effect."""

    error_type = ErrorType.PERSISTENCE

    def __init__(
        self,
        message: str,
        operation: str,
        task_id: int | None = None,
    ) -> None:
        self.operation = operation
        self.task_id = task_id
        super().__init__(message, {"operation": operation, "task_id": task_id})


class TransactionError(TaskTrackerError):
    """Raised when a unit of work fails; the transaction has been rolled back."""

    error_type = ErrorType.TRANSACTION
