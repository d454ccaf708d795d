"""
Database connection pooling with health checks and monitoring.

Wraps a SQLAlchemy engine and its pool so the data-access layer can lease
one connection per operation, toggle auto-commit on it, and always hand it
back.
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any

from sqlalchemy import Connection, Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool, StaticPool

from tasktracker.core.config import Settings, get_settings
from tasktracker.core.observability import get_logger

logger = get_logger(__name__)

AUTOCOMMIT = "AUTOCOMMIT"


@dataclass
class PoolMetrics:
    """Metrics for connection pool monitoring."""

    connections_created: int = 0
    connections_closed: int = 0
    connections_invalidated: int = 0
    checkout_count: int = 0
    checkin_count: int = 0
    checkout_time_total: float = 0
    release_failures: int = 0
    health_checks_passed: int = 0
    health_checks_failed: int = 0
    last_health_check: datetime | None = None

    @property
    def avg_checkout_time(self) -> float:
        """Average time a connection stays checked out."""
        return (
            (self.checkout_time_total / self.checkin_count)
            if self.checkin_count > 0
            else 0
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "connections_created": self.connections_created,
            "connections_closed": self.connections_closed,
            "connections_invalidated": self.connections_invalidated,
            "checkout_count": self.checkout_count,
            "checkin_count": self.checkin_count,
            "avg_checkout_time_ms": self.avg_checkout_time * 1000,
            "release_failures": self.release_failures,
            "health_checks_passed": self.health_checks_passed,
            "health_checks_failed": self.health_checks_failed,
            "last_health_check": self.last_health_check.isoformat()
            if self.last_health_check
            else None,
        }


class DatabaseConnectionPool:
    """
    Bounded, health-checked pool of database connections.

    Connections are leased with ``acquire()``/``release()`` or the
    ``connection()`` context manager. When ``autocommit`` is enabled every
    leased connection starts in auto-commit mode, so single statements are
    durable as soon as they execute; callers that need a transaction switch
    it off with ``set_autocommit`` and restore it before release.
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: float = 30.0,
        pool_recycle: int = 3600,
        pool_pre_ping: bool = True,
        echo: bool = False,
        connect_args: dict[str, Any] | None = None,
        autocommit: bool = True,
    ):
        self.database_url = database_url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_timeout = pool_timeout
        self.pool_recycle = pool_recycle
        self.pool_pre_ping = pool_pre_ping
        self.echo = echo
        self.connect_args = dict(connect_args or {})
        self.autocommit = autocommit

        self.metrics = PoolMetrics()
        self.is_healthy = True
        self._lock = Lock()

        self._base_engine = self._create_engine()
        self._setup_event_listeners()
        # Connections from this engine inherit the default auto-commit mode
        self.engine: Engine = (
            self._base_engine.execution_options(isolation_level=AUTOCOMMIT)
            if autocommit
            else self._base_engine
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "DatabaseConnectionPool":
        """Build a pool from application settings."""
        settings = settings or get_settings()
        return cls(
            database_url=settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_timeout=settings.DATABASE_POOL_TIMEOUT,
            pool_recycle=settings.DATABASE_POOL_RECYCLE,
            pool_pre_ping=settings.DATABASE_POOL_PRE_PING,
            echo=settings.DATABASE_ECHO,
            connect_args=settings.DATABASE_CONNECT_ARGS,
        )

    def _create_engine(self) -> Engine:
        """Create SQLAlchemy engine with the configured pool."""
        url = make_url(self.database_url)
        connect_args = dict(self.connect_args)

        if url.get_backend_name() == "sqlite":
            # Pooled SQLite connections are shared between threads
            connect_args.setdefault("check_same_thread", False)
            if url.database in (None, "", ":memory:"):
                # An in-memory database lives as long as its single connection
                return create_engine(
                    url,
                    poolclass=StaticPool,
                    connect_args=connect_args,
                    echo=self.echo,
                )

        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=self.pool_size,
            max_overflow=self.max_overflow,
            pool_timeout=self.pool_timeout,
            pool_recycle=self.pool_recycle,
            pool_pre_ping=self.pool_pre_ping,
            connect_args=connect_args,
            echo=self.echo,
        )

    def _setup_event_listeners(self) -> None:
        """Setup SQLAlchemy pool event listeners for monitoring."""

        @event.listens_for(self._base_engine, "connect")
        def receive_connect(dbapi_conn, connection_record):
            with self._lock:
                self.metrics.connections_created += 1

        @event.listens_for(self._base_engine, "close")
        def receive_close(dbapi_conn, connection_record):
            with self._lock:
                self.metrics.connections_closed += 1

        @event.listens_for(self._base_engine, "checkout")
        def receive_checkout(dbapi_conn, connection_record, connection_proxy):
            connection_record.info["checkout_time"] = time.time()
            with self._lock:
                self.metrics.checkout_count += 1

        @event.listens_for(self._base_engine, "checkin")
        def receive_checkin(dbapi_conn, connection_record):
            checkout_time = connection_record.info.pop("checkout_time", None)
            with self._lock:
                self.metrics.checkin_count += 1
                if checkout_time is not None:
                    self.metrics.checkout_time_total += time.time() - checkout_time

        @event.listens_for(self._base_engine, "invalidate")
        def receive_invalidate(dbapi_conn, connection_record, exception):
            with self._lock:
                self.metrics.connections_invalidated += 1
            logger.warning("Connection invalidated", error=str(exception))

    def acquire(self) -> Connection:
        """
        Lease a connection from the pool.

        Blocks up to ``pool_timeout`` seconds when the pool is exhausted.

        Raises:
            SQLAlchemyError: If no connection could be obtained
        """
        return self.engine.connect()

    def release(self, conn: Connection) -> None:
        """Return a connection to the pool. Failures are logged, never raised."""
        try:
            conn.close()
        except SQLAlchemyError as e:
            with self._lock:
                self.metrics.release_failures += 1
            logger.error("Error releasing connection", error=str(e), exc_info=True)

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Lease a connection for the duration of the block."""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    @staticmethod
    def is_autocommit(conn: Connection) -> bool:
        """Whether the connection commits every statement on its own."""
        return conn.get_execution_options().get("isolation_level") == AUTOCOMMIT

    @staticmethod
    def set_autocommit(conn: Connection, enabled: bool) -> None:
        """
        Switch auto-commit on or off for a leased connection.

        Must not be called while a transaction is in progress on ``conn``.
        """
        if enabled:
            conn.execution_options(isolation_level=AUTOCOMMIT)
        else:
            conn.execution_options(isolation_level=conn.default_isolation_level)

    def health_check(self) -> bool:
        """Run a trivial query to verify the store is reachable."""
        try:
            with self.connection() as conn:
                conn.execute(text("SELECT 1")).scalar()

            with self._lock:
                self.is_healthy = True
                self.metrics.health_checks_passed += 1
                self.metrics.last_health_check = datetime.now(timezone.utc)
        except SQLAlchemyError as e:
            with self._lock:
                self.is_healthy = False
                self.metrics.health_checks_failed += 1
                self.metrics.last_health_check = datetime.now(timezone.utc)
            logger.error("Database health check failed", error=str(e))

        return self.is_healthy

    def get_metrics(self) -> dict[str, Any]:
        """Get current pool metrics."""
        with self._lock:
            metrics = self.metrics.to_dict()

        metrics["is_healthy"] = self.is_healthy
        metrics["status"] = self._base_engine.pool.status()
        return metrics

    def close(self) -> None:
        """Close the connection pool."""
        self._base_engine.dispose()
        logger.info("Database connection pool closed", url=self.safe_url)

    @property
    def safe_url(self) -> str:
        return make_url(self.database_url).render_as_string(hide_password=True)


# Global connection pool instance
_pool: DatabaseConnectionPool | None = None
_pool_lock = Lock()


def get_connection_pool() -> DatabaseConnectionPool:
    """Get or create the process-wide connection pool."""
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = DatabaseConnectionPool.from_settings()
            logger.info("Database connection pool created", url=_pool.safe_url)
        return _pool


def close_connection_pool() -> None:
    """Dispose the process-wide connection pool, if one was created."""
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.close()
            _pool = None


__all__ = [
    "DatabaseConnectionPool",
    "PoolMetrics",
    "close_connection_pool",
    "get_connection_pool",
]
