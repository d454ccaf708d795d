"""
Test Configuration and Fixtures

Every test gets its own in-memory SQLite database behind a real
connection pool, so repository and executor tests exercise actual
transactions.
"""

from collections.abc import Generator

import pytest
import structlog

from tasktracker.core.db import init_db
from tasktracker.domain.task import Task, TaskStatus
from tasktracker.infrastructure.database.connection_pool import DatabaseConnectionPool
from tasktracker.infrastructure.database.repositories import TaskRepository
from tasktracker.infrastructure.database.unit_of_work import TransactionalExecutor


@pytest.fixture(scope="function")
def pool() -> Generator[DatabaseConnectionPool, None, None]:
    """Provide a pool over a fresh in-memory database with the schema created."""
    db_pool = DatabaseConnectionPool("sqlite://")
    init_db(db_pool.engine)

    yield db_pool

    db_pool.close()


@pytest.fixture
def executor(pool: DatabaseConnectionPool) -> TransactionalExecutor:
    return TransactionalExecutor(pool)


@pytest.fixture
def repository(pool: DatabaseConnectionPool) -> TaskRepository:
    return TaskRepository(pool)


@pytest.fixture
def sample_task() -> Task:
    """Provide an unpersisted task."""
    return Task(description="Buy milk", status=TaskStatus.TODO)


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    yield
    structlog.reset_defaults()
