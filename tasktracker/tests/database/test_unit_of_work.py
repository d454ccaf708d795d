"""
Transactional Executor Tests

Commit/rollback behaviour, failure wrapping, and the connection lifecycle
(auto-commit restored, connection always released).
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import insert, select, text
from sqlalchemy.exc import OperationalError

from tasktracker.domain.exceptions import TransactionError
from tasktracker.infrastructure.database.connection_pool import DatabaseConnectionPool
from tasktracker.infrastructure.database.repositories.task_repository import (
    tasks_table,
    utcnow,
)
from tasktracker.infrastructure.database.unit_of_work import TransactionalExecutor


def _db_error(message: str = "boom") -> OperationalError:
    return OperationalError("statement", None, Exception(message))


def _count(pool: DatabaseConnectionPool) -> int:
    with pool.connection() as conn:
        return len(conn.execute(select(tasks_table.c.id)).all())


def _insert_row(conn, description="Buy milk"):
    now = utcnow()
    conn.execute(
        insert(tasks_table).values(
            description=description, status="TODO", created_at=now, updated_at=now
        )
    )


@pytest.fixture
def mock_pool():
    """A pool double that hands out one mock connection in auto-commit mode."""
    conn = MagicMock(name="connection")
    pool = MagicMock(spec=DatabaseConnectionPool)
    pool.acquire.return_value = conn
    # auto-commit on at checkout, off once the executor has disabled it
    pool.is_autocommit.side_effect = [True, False]
    return pool, conn


class TestExecutorLifecycle:
    """Exactly one commit or rollback, and exactly one borrow and release."""

    def test_success_commits_and_releases(self, mock_pool):
        pool, conn = mock_pool
        executor = TransactionalExecutor(pool)

        result = executor.execute(lambda c: "done")

        assert result == "done"
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        pool.acquire.assert_called_once()
        pool.release.assert_called_once_with(conn)

    def test_autocommit_disabled_then_restored(self, mock_pool):
        pool, conn = mock_pool
        executor = TransactionalExecutor(pool)

        executor.execute(lambda c: None)

        assert [call.args for call in pool.set_autocommit.call_args_list] == [
            (conn, False),
            (conn, True),
        ]

    def test_autocommit_left_alone_when_already_off(self):
        conn = MagicMock(name="connection")
        pool = MagicMock(spec=DatabaseConnectionPool)
        pool.acquire.return_value = conn
        pool.is_autocommit.return_value = False

        TransactionalExecutor(pool).execute(lambda c: None)

        pool.set_autocommit.assert_not_called()
        conn.commit.assert_called_once()
        pool.release.assert_called_once_with(conn)

    def test_work_failure_rolls_back_and_wraps_cause(self, mock_pool):
        pool, conn = mock_pool
        executor = TransactionalExecutor(pool)
        failure = ValueError("bad unit of work")

        def work(c):
            raise failure

        with pytest.raises(TransactionError) as exc_info:
            executor.execute(work)

        assert exc_info.value.__cause__ is failure
        conn.commit.assert_not_called()
        conn.rollback.assert_called_once()
        pool.release.assert_called_once_with(conn)

    def test_commit_failure_rolls_back(self, mock_pool):
        pool, conn = mock_pool
        conn.commit.side_effect = _db_error("commit failed")
        executor = TransactionalExecutor(pool)

        with pytest.raises(TransactionError) as exc_info:
            executor.execute(lambda c: None)

        assert isinstance(exc_info.value.__cause__, OperationalError)
        conn.rollback.assert_called_once()
        pool.release.assert_called_once_with(conn)

    def test_rollback_failure_does_not_mask_original(self, mock_pool):
        pool, conn = mock_pool
        conn.rollback.side_effect = _db_error("rollback failed")
        executor = TransactionalExecutor(pool)
        failure = RuntimeError("original failure")

        def work(c):
            raise failure

        with pytest.raises(TransactionError) as exc_info:
            executor.execute(work)

        assert exc_info.value.__cause__ is failure
        pool.release.assert_called_once_with(conn)

    def test_restore_failure_still_releases(self, mock_pool):
        pool, conn = mock_pool
        pool.set_autocommit.side_effect = [None, _db_error("restore failed")]
        executor = TransactionalExecutor(pool)

        assert executor.execute(lambda c: 42) == 42
        conn.commit.assert_called_once()
        pool.release.assert_called_once_with(conn)

    def test_acquire_failure_raises_transaction_error(self):
        pool = MagicMock(spec=DatabaseConnectionPool)
        pool.acquire.side_effect = _db_error("pool exhausted")
        executor = TransactionalExecutor(pool)

        with pytest.raises(TransactionError) as exc_info:
            executor.execute(lambda c: None)

        assert isinstance(exc_info.value.__cause__, OperationalError)
        pool.release.assert_not_called()


class TestExecutorAgainstDatabase:
    """Atomicity against a real store."""

    def test_statements_commit_together(self, pool, executor):
        def work(conn):
            _insert_row(conn, "first")
            _insert_row(conn, "second")

        executor.execute(work)

        assert _count(pool) == 2

    def test_partial_failure_leaves_no_trace(self, pool, executor):
        def work(conn):
            _insert_row(conn, "first")
            # description is NOT NULL
            _insert_row(conn, None)

        with pytest.raises(TransactionError):
            executor.execute(work)

        assert _count(pool) == 0

    def test_context_manager_rolls_back_on_error(self, pool, executor):
        with pytest.raises(TransactionError):
            with executor.transaction() as conn:
                _insert_row(conn)
                raise RuntimeError("abort")

        assert _count(pool) == 0

    def test_autocommit_off_inside_and_restored_after(self, pool, executor):
        seen = []

        def work(conn):
            seen.append(pool.is_autocommit(conn))
            conn.execute(text("SELECT 1"))

        executor.execute(work)

        assert seen == [False]
        with pool.connection() as conn:
            assert pool.is_autocommit(conn) is True

    def test_connection_returned_on_every_path(self, pool, executor):
        executor.execute(lambda conn: _insert_row(conn))
        with pytest.raises(TransactionError):
            executor.execute(lambda conn: _insert_row(conn, None))

        metrics = pool.get_metrics()
        assert metrics["checkout_count"] == metrics["checkin_count"]
