"""Runtime settings and logging setup.

Settings are read from environment variables named after the fields
(``DATABASE_URL``, ``PORT``, ``LOG_JSON``, ...) or from a local ``.env`` file.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Storefront configuration.

    Example:
        >>> settings = Settings()  # from the environment
        >>> settings = Settings(database_url="mongodb://localhost:27017", log_json=False)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    database_url: Optional[str] = Field(default=None, description="Mongo connection string; unset means in-memory")
    database_name: str = "storefront"
    port: int = 8000
    log_level: str = "INFO"
    log_json: bool = True
    order_list_stale_seconds: float = Field(default=300, ge=0)
    order_stale_seconds: float = Field(default=60, ge=0)
    order_cache_size: int = Field(default=1024, ge=1)
    session_idle_seconds: float = Field(default=1800, gt=0)
    max_sessions: int = Field(default=10_000, ge=1)
    password_hash_iterations: int = Field(default=200_000, ge=1)
    cors_origins: str = Field(default="*", description="Comma-separated allowed origins")

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

def configure_logging(*, log_level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog on top of the stdlib logging module.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Render JSON lines when True, human-readable console output otherwise.
    """
    processors: list[Any] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level.upper(), logging.INFO))
