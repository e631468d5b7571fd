"""Configuration management for CVE Manager using Pydantic Settings."""

import json
import logging
import sys
from functools import lru_cache
from typing import Self

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Standard LogRecord attributes, everything else on a record came from ``extra``
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "message",
        "thread",
        "threadName",
        "taskName",
    }
)


class JsonFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_obj = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_obj[key] = value
        return json.dumps(log_obj, default=str)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CVE_MANAGER_",
        case_sensitive=False,
    )

    # Logging
    log_level: str = "INFO"

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8080

    # Database
    db_host: str | None = None
    db_port: int = 5432
    db_name: str = "cve_manager"
    db_username: str | None = None
    db_password: str | None = None
    db_sslmode: str | None = None
    db_pool_min_size: int = 2
    db_pool_max_size: int = 10

    # Header carrying the caller's organization id, set by the upstream gateway
    org_id_header: str = "X-Org-Id"

    @model_validator(mode="after")
    def validate_configuration(self) -> Self:
        """Validate configuration on startup.

        Fails fast on invalid settings, warns about missing optional ones.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not self.db_host:
            warnings.append("CVE_MANAGER_DB_HOST not set - database operations will fail")

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_levels:
            errors.append(
                f"Invalid CVE_MANAGER_LOG_LEVEL '{self.log_level}'. "
                f"Must be one of: {', '.join(sorted(valid_levels))}"
            )

        if self.db_pool_min_size < 1 or self.db_pool_max_size < self.db_pool_min_size:
            errors.append(
                f"Invalid database pool size {self.db_pool_min_size}..{self.db_pool_max_size}. "
                "Minimum must be at least 1 and not above maximum"
            )

        # Logging isn't configured yet
        for warning in warnings:
            print(f"[CONFIG WARNING] {warning}", file=sys.stderr)

        if errors:
            for error in errors:
                print(f"[CONFIG ERROR] {error}", file=sys.stderr)
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

        return self

    @property
    def database_configured(self) -> bool:
        """Check if database connection parameters are set."""
        return bool(self.db_host and self.db_username and self.db_password)

    def configure_logging(self) -> None:
        """Configure structured JSON logging."""
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.root.handlers = [handler]
        logging.root.setLevel(getattr(logging, self.log_level.upper(), logging.INFO))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
