"""
Task repository implementation providing CRUD operations.

Each operation leases exactly one connection from the pool for its own
duration. Single-statement operations run directly on the leased
connection; multi-statement operations go through the transactional
executor. Store failures are logged and re-raised as ``PersistenceError``
or ``TransactionError``.
"""

from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy import (
    Connection,
    Row,
    case,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError

from tasktracker.core.observability import get_logger
from tasktracker.domain.exceptions import InvalidArgumentError, PersistenceError
from tasktracker.domain.task import Task, TaskStatus

from ..connection_pool import DatabaseConnectionPool, get_connection_pool
from ..unit_of_work import TransactionalExecutor

logger = get_logger(__name__)

T = TypeVar("T")

tasks_table = Task.__table__


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form the store keeps."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def row_to_task(row: Row[Any]) -> Task:
    """
    Rebuild a Task from a ``tasks`` row.

    Raises:
        ValueError: If the stored status is not a known TaskStatus name
    """
    return Task(
        id=int(row.id),
        description=row.description,
        status=TaskStatus.from_db(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _validate_description(task: Task) -> str:
    description = task.description
    if description is None or not str(description).strip():
        raise InvalidArgumentError("description", "must not be blank")
    return description


def _validate_status(task: Task) -> TaskStatus:
    if task.status is None:
        raise InvalidArgumentError("status", "is required")
    try:
        return TaskStatus.from_db(task.status)
    except ValueError as e:
        raise InvalidArgumentError("status", str(e)) from e


class TaskRepository:
    """
    Data-access component for Task records.

    Holds no state besides the pool handle and is safe to share between
    threads.
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool | None = None,
        executor: TransactionalExecutor | None = None,
    ):
        self._pool = pool or get_connection_pool()
        self._executor = executor or TransactionalExecutor(self._pool)

    def create(self, task: Task) -> Task:
        """
        Persist a new task.

        Stamps ``created_at`` and ``updated_at`` and assigns the
        store-generated id to ``task``.

        Returns:
            The same task instance, now persisted

        Raises:
            InvalidArgumentError: If the description is blank, the status is
                missing or the task already has an id
            PersistenceError: If no row was inserted, no id was generated, or
                the store failed
        """
        if task.id is not None:
            raise InvalidArgumentError("id", "task is already persisted")
        description = _validate_description(task)
        status = _validate_status(task)

        now = utcnow()
        try:
            with self._pool.connection() as conn:
                task_id = self._insert(conn, description, status, now)
                conn.commit()
        except PersistenceError as e:
            logger.error("Task creation failed", operation="create", error=e.message)
            raise
        except SQLAlchemyError as e:
            logger.error("Error creating task", operation="create", error=str(e), exc_info=True)
            raise PersistenceError("Error creating task", operation="create") from e

        task.id = task_id
        task.status = status
        task.created_at = now
        task.updated_at = now
        logger.info("Task created", operation="create", task_id=task_id)
        return task

    def get_by_id(self, task_id: int) -> Task | None:
        """
        Get a task by id.

        Returns:
            The task if found, None otherwise

        Raises:
            PersistenceError: If the store failed or the row is unreadable
        """
        statement = select(tasks_table).where(tasks_table.c.id == task_id)
        try:
            with self._pool.connection() as conn:
                row = conn.execute(statement).first()
            return row_to_task(row) if row is not None else None
        except (SQLAlchemyError, ValueError) as e:
            logger.error(
                "Error getting task by ID",
                operation="get_by_id",
                task_id=task_id,
                error=str(e),
                exc_info=True,
            )
            raise PersistenceError(
                f"Error getting task by ID: {task_id}",
                operation="get_by_id",
                task_id=task_id,
            ) from e

    def get_all(self) -> list[Task]:
        """
        Get every task in the store's natural row order.

        Raises:
            PersistenceError: If the store failed or a row is unreadable
        """
        try:
            with self._pool.connection() as conn:
                rows = conn.execute(select(tasks_table)).all()
            return [row_to_task(row) for row in rows]
        except (SQLAlchemyError, ValueError) as e:
            logger.error("Error getting all tasks", operation="get_all", error=str(e), exc_info=True)
            raise PersistenceError("Error getting all tasks", operation="get_all") from e

    def count(self) -> int:
        """
        Get total number of tasks.

        Raises:
            PersistenceError: If the store failed
        """
        try:
            statement = select(func.count()).select_from(tasks_table)
            with self._pool.connection() as conn:
                return int(conn.execute(statement).scalar_one())
        except SQLAlchemyError as e:
            logger.error("Error counting tasks", operation="count", error=str(e), exc_info=True)
            raise PersistenceError("Error counting tasks", operation="count") from e

    def update(self, task: Task) -> Task:
        """
        Write the task's description and status to its row.

        ``updated_at`` is always stamped here at write time; any value set by
        the caller is overwritten.

        Returns:
            The same task instance with a refreshed ``updated_at``

        Raises:
            InvalidArgumentError: If the task has no id or a blank description
            PersistenceError: If no row has the task's id or the store failed
        """
        if task.id is None:
            raise InvalidArgumentError("id", "task has not been persisted")
        description = _validate_description(task)
        status = _validate_status(task)

        now = self._stamp(task)
        try:
            with self._pool.connection() as conn:
                rows = self._update(conn, task.id, description, status, now)
                conn.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Error updating task",
                operation="update",
                task_id=task.id,
                error=str(e),
                exc_info=True,
            )
            raise PersistenceError(
                f"Error updating task: {task.id}", operation="update", task_id=task.id
            ) from e

        if rows == 0:
            logger.warning("Task update affected no rows", operation="update", task_id=task.id)
            raise PersistenceError(
                f"Task update failed. No rows affected. Task ID: {task.id}",
                operation="update",
                task_id=task.id,
            )

        task.status = status
        task.updated_at = now
        logger.info("Task updated", operation="update", task_id=task.id, status=status.name)
        return task

    def delete(self, task_id: int) -> None:
        """
        Delete the task with the given id.

        Raises:
            PersistenceError: If no row has that id or the store failed
        """
        statement = delete(tasks_table).where(tasks_table.c.id == task_id)
        try:
            with self._pool.connection() as conn:
                rows = conn.execute(statement).rowcount
                conn.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Error deleting task",
                operation="delete",
                task_id=task_id,
                error=str(e),
                exc_info=True,
            )
            raise PersistenceError(
                f"Error deleting task: {task_id}", operation="delete", task_id=task_id
            ) from e

        if rows == 0:
            logger.warning("Task delete affected no rows", operation="delete", task_id=task_id)
            raise PersistenceError(
                f"Deleting task failed, no rows affected. Task ID: {task_id}",
                operation="delete",
                task_id=task_id,
            )
        logger.info("Task deleted", operation="delete", task_id=task_id)

    def create_many(self, tasks: Iterable[Task]) -> list[Task]:
        """
        Persist several new tasks in a single transaction.

        Every task is validated before anything is written. Ids and
        timestamps are assigned to the instances only once the transaction
        has committed.

        Raises:
            InvalidArgumentError: If any task is invalid (nothing is written)
            TransactionError: If any insert or the commit failed (nothing is
                written)
        """
        batch = list(tasks)
        validated = []
        for task in batch:
            if task.id is not None:
                raise InvalidArgumentError("id", "task is already persisted")
            validated.append((task, _validate_description(task), _validate_status(task)))

        now = utcnow()

        def work(conn: Connection) -> list[int]:
            return [
                self._insert(conn, description, status, now)
                for _, description, status in validated
            ]

        ids = self._executor.execute(work)

        for (task, _, status), task_id in zip(validated, ids):
            task.id = task_id
            task.status = status
            task.created_at = now
            task.updated_at = now
        logger.info("Tasks created", operation="create_many", count=len(ids))
        return batch

    def mark_in_progress(self, task_id: int) -> Task:
        """Move a task to IN_PROGRESS; see ``change_status``."""
        return self.change_status(task_id, TaskStatus.IN_PROGRESS)

    def mark_done(self, task_id: int) -> Task:
        """Move a task to DONE; see ``change_status``."""
        return self.change_status(task_id, TaskStatus.DONE)

    def change_status(self, task_id: int, status: TaskStatus) -> Task:
        """
        Write a task's new status and read it back within one transaction.

        Only ``status`` and ``updated_at`` are written, so a concurrent
        description change is never overwritten.

        Returns:
            The task as stored after the change

        Raises:
            TransactionError: If the task does not exist (cause is a
                ``PersistenceError``) or the store failed
        """

        def work(conn: Connection) -> Task:
            now = utcnow()
            # The write comes first so the row is locked before it is read
            rows = conn.execute(
                update(tasks_table)
                .where(tasks_table.c.id == task_id)
                .values(
                    status=status.to_db(),
                    updated_at=case(
                        (tasks_table.c.created_at > now, tasks_table.c.created_at),
                        else_=now,
                    ),
                )
            ).rowcount
            if rows == 0:
                raise PersistenceError(
                    f"Task not found. Task ID: {task_id}",
                    operation="change_status",
                    task_id=task_id,
                )
            row = conn.execute(
                select(tasks_table).where(tasks_table.c.id == task_id)
            ).one()
            return row_to_task(row)

        task = self._executor.execute(work)
        logger.info(
            "Task status changed",
            operation="change_status",
            task_id=task_id,
            status=status.name,
        )
        return task

    def run_in_transaction(self, work: Callable[[Connection], T]) -> T:
        """
        Run a caller-defined unit of work atomically.

        Raises:
            TransactionError: If the work or the commit failed
        """
        return self._executor.execute(work)

    @staticmethod
    def _stamp(task: Task) -> datetime:
        now = utcnow()
        # Keep updated_at >= created_at even if the clock moved backwards
        if task.created_at is not None and now < task.created_at:
            return task.created_at
        return now

    @staticmethod
    def _insert(
        conn: Connection, description: str, status: TaskStatus, now: datetime
    ) -> int:
        result = conn.execute(
            insert(tasks_table).values(
                description=description,
                status=status.to_db(),
                created_at=now,
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            raise PersistenceError(
                "Task creation failed. No rows affected.", operation="create"
            )
        key = result.inserted_primary_key
        if not key or key[0] is None:
            raise PersistenceError("Task creation failed. No ID obtained.", operation="create")
        return int(key[0])

    @staticmethod
    def _update(
        conn: Connection,
        task_id: int,
        description: str,
        status: TaskStatus,
        now: datetime,
    ) -> int:
        result = conn.execute(
            update(tasks_table)
            .where(tasks_table.c.id == task_id)
            .values(description=description, status=status.to_db(), updated_at=now)
        )
        return result.rowcount
