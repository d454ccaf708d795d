"""
Task entity and status enumeration.

A Task mirrors one row of the ``tasks`` table. Instances are created in
memory without an id; the data-access layer assigns the id and timestamps
when the task is persisted.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel


class TaskStatus(str, Enum):
    """
    Task lifecycle status.

    Persisted as the member name; ``to_db``/``from_db`` are the only
    conversions the data-access layer uses.
    """

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"

    def to_db(self) -> str:
        return self.name

    @classmethod
    def from_db(cls, raw: "str | TaskStatus | None") -> "TaskStatus":
        if isinstance(raw, cls):
            return raw
        if raw is None or not str(raw).strip():
            raise ValueError("Task status is empty")
        name = str(raw).strip().upper()
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"Unknown task status: {raw!r}") from None


class Task(SQLModel, table=True):
    """Task record stored in the ``tasks`` table."""

    __tablename__ = "tasks"

    id: int | None = Field(default=None, primary_key=True)
    description: str = Field(nullable=False)
    status: TaskStatus = Field(
        default=TaskStatus.TODO,
        sa_column=Column("status", String(32), nullable=False),
    )
    # Naive UTC timestamps
    created_at: datetime | None = Field(
        default=None,
        sa_column=Column("created_at", DateTime(timezone=False), nullable=False),
    )
    updated_at: datetime | None = Field(
        default=None,
        sa_column=Column("updated_at", DateTime(timezone=False), nullable=False),
    )

    @property
    def is_persisted(self) -> bool:
        """A task without an id has never been written to the store."""
        return self.id is not None
