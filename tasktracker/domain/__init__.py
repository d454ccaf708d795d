from .exceptions import (
    ErrorType,
    InvalidArgumentError,
    PersistenceError,
    TaskTrackerError,
    TransactionError,
)
from .task import Task, TaskStatus

__all__ = [
    "ErrorType",
    "InvalidArgumentError",
    "PersistenceError",
    "Task",
    "TaskStatus",
    "TaskTrackerError",
    "TransactionError",
]
