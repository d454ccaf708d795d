from .connection_pool import (
    DatabaseConnectionPool,
    close_connection_pool,
    get_connection_pool,
)
from .repositories import TaskRepository
from .unit_of_work import TransactionalExecutor

__all__ = [
    "DatabaseConnectionPool",
    "TaskRepository",
    "TransactionalExecutor",
    "close_connection_pool",
    "get_connection_pool",
]
