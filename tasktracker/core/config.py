from functools import lru_cache
from typing import Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TASKTRACKER_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "tasktracker"
    ENVIRONMENT: Literal["local", "testing", "staging", "production"] = "local"

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./tasks.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_POOL_TIMEOUT: float = 30.0  # seconds to wait for a free connection
    DATABASE_POOL_RECYCLE: int = 3600
    DATABASE_POOL_PRE_PING: bool = True
    DATABASE_ECHO: bool = False
    # Passed straight to the DBAPI driver (statement/busy timeouts live here)
    DATABASE_CONNECT_ARGS: dict[str, Any] = {}

    # Observability Configuration
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"
    LOG_SQL: bool = False

    @field_validator("DATABASE_POOL_SIZE")
    @classmethod
    def _check_pool_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("DATABASE_POOL_SIZE must be at least 1")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        return v.strip().upper()


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once from the environment."""
    return Settings()
