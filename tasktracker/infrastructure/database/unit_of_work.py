"""
Transactional execution of units of work.

A unit of work receives one leased connection with auto-commit disabled.
Its statements are committed together, or rolled back together if anything
fails, and the connection is always restored and returned to the pool.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import Connection
from sqlalchemy.exc import SQLAlchemyError

from tasktracker.core.observability import get_logger
from tasktracker.domain.exceptions import TransactionError

from .connection_pool import DatabaseConnectionPool, get_connection_pool

logger = get_logger(__name__)

T = TypeVar("T")


class TransactionalExecutor:
    """
    Runs units of work against a single pooled connection with
    all-or-nothing semantics.

    Usage:
        executor = TransactionalExecutor(pool)

        executor.execute(lambda conn: conn.execute(stmt))

        with executor.transaction() as conn:
            conn.execute(first)
            conn.execute(second)
    """

    def __init__(self, pool: DatabaseConnectionPool | None = None):
        self._pool = pool or get_connection_pool()

    @property
    def pool(self) -> DatabaseConnectionPool:
        return self._pool

    def execute(self, work: Callable[[Connection], T]) -> T:
        """
        Run ``work`` inside one transaction and return its result.

        Raises:
            TransactionError: If the work or the commit failed; the cause is
                chained as ``__cause__``
        """
        with self.transaction() as conn:
            return work(conn)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """
        Context manager yielding a connection inside one transaction.

        Commits when the block exits normally, rolls back when it raises.

        Raises:
            TransactionError: If acquiring, running or committing failed
        """
        try:
            conn = self._pool.acquire()
        except SQLAlchemyError as e:
            logger.error("Transaction failed to acquire connection", error=str(e))
            raise TransactionError(f"Transaction failed: {e}") from e

        original_autocommit = True
        try:
            original_autocommit = self._pool.is_autocommit(conn)
            if original_autocommit:
                self._pool.set_autocommit(conn, False)

            yield conn

            conn.commit()
        except Exception as e:
            self._rollback(conn)
            logger.error("Transaction failed", error=str(e), exc_info=True)
            raise TransactionError(f"Transaction failed: {e}") from e
        finally:
            self._restore_and_release(conn, original_autocommit)

    def _rollback(self, conn: Connection) -> None:
        try:
            conn.rollback()
            logger.info("Transaction rolled back")
        except SQLAlchemyError as e:
            # The original failure is what the caller sees
            logger.error("Error rolling back transaction", error=str(e), exc_info=True)

    def _restore_and_release(self, conn: Connection, original_autocommit: bool) -> None:
        try:
            if self._pool.is_autocommit(conn) != original_autocommit:
                self._pool.set_autocommit(conn, original_autocommit)
        except SQLAlchemyError as e:
            logger.error("Error restoring auto-commit mode", error=str(e), exc_info=True)
        finally:
            self._pool.release(conn)


__all__ = ["TransactionalExecutor"]
