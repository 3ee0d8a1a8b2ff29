"""
Configuration for the delivery status client.

Settings come from environment variables (``DELIVERY_`` prefix) or a ``.env``
file, with defaults suitable for a local backend.
"""

import logging
import sys
from functools import lru_cache

import structlog
from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class DeliveryClientSettings(BaseSettings):
    """
    Client settings with environment overrides.

    Uses Pydantic for validation and type safety.
    Environment variables override defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="DELIVERY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    base_url: str = Field(
        default="http://localhost:8000/api",
        description="Backend API root, without trailing slash",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Per-request timeout in seconds",
    )
    max_retries: int = Field(
        default=1,
        ge=0,
        le=5,
        description="Transport retries for idempotent GET requests",
    )

    # Task classification
    urgent_window_minutes: int = Field(
        default=60,
        ge=0,
        description="Active tasks due within this window count as urgent",
    )

    # Status reconciliation
    auto_reset_when_busy: bool = Field(
        default=True,
        description="Run the safety reset when a load reports 'busy'",
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(
        default=False, description="Enable JSON logging for production"
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so endpoint paths can be appended."""
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache(maxsize=1)
def get_settings() -> DeliveryClientSettings:
    """Get the process-wide settings instance."""
    return DeliveryClientSettings()


def configure_structlog(level: str = "INFO", json_logs: bool = False) -> None:
    """Initialize structlog with clean, readable logging."""
    logging.basicConfig(
        level=level,
        stream=sys.stdout,
        force=True,
        format="%(message)s",  # structlog renders the whole line
    )
    logging.root.setLevel(level)

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            pad_event=20,
            level_styles={
                "debug": "\033[36m",  # cyan
                "info": "\033[32m",  # green
                "warning": "\033[33m",  # yellow
                "error": "\033[31m",  # red
            },
        )

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.stdlib.add_log_level,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
