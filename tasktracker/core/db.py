from sqlalchemy import Engine
from sqlmodel import SQLModel

# make sure all SQLModel models are imported before creating tables,
# otherwise they are missing from SQLModel.metadata
from tasktracker.domain.task import Task  # noqa: F401


def init_db(engine: Engine) -> None:
    """Create the ``tasks`` table if it does not exist yet."""
    SQLModel.metadata.create_all(engine)
