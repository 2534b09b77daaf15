"""Configuration management for Courier."""

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from courier.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Courier configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the COURIER_ prefix. For example:
        COURIER_DELIVERY_MAX_ATTEMPTS=3
        COURIER_SUBMISSION_URL=http://records.internal/submit

    Retry Notes:
        - Delay before retry n is base * 2**(n-1), capped at retry_max_delay_seconds
        - Up to retry_jitter_seconds of random jitter is added to each delay
        - Jitter must stay below the base delay so delays keep increasing
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Outbound delivery
    delivery_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Per-attempt HTTP timeout for outbound webhook calls",
    )
    delivery_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum attempts per delivery chain (initial try included)",
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Backoff delay after the first failed attempt (doubles each attempt)",
    )
    retry_max_delay_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Upper bound for a single backoff delay",
    )
    retry_jitter_seconds: float = Field(
        default=0.3,
        ge=0.0,
        description="Maximum random jitter added to each backoff delay",
    )
    response_body_max_chars: int = Field(
        default=1000,
        ge=0,
        le=100_000,
        description="Response bodies are truncated to this length in the delivery log",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum HTTP attempts in flight at once",
    )

    # Inbound ingestion
    inbound_secret_header: str = Field(
        default="X-Inbound-Secret",
        min_length=1,
        description="Header carrying the shared secret for inbound mappings",
    )
    inbound_max_body_bytes: int = Field(
        default=1_048_576,
        ge=1,
        description="Largest inbound request body accepted",
    )
    submission_url: str | None = Field(
        default=None,
        description=(
            "Endpoint of the record-submission pipeline. "
            "If not set, mapped records are kept in memory (development only)."
        ),
    )
    submission_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="HTTP timeout when forwarding mapped records",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # CORS Configuration
    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description=(
            "List of allowed CORS origins. Use ['*'] for permissive mode (dev only). "
            "In production, specify exact origins like ['https://app.example.com']."
        ),
    )
    cors_allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        description="Allowed HTTP methods for CORS requests",
    )
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed headers for CORS requests",
    )
    cors_max_age: int = Field(
        default=600,
        ge=0,
        le=86400,
        description="Max age (seconds) for CORS preflight cache",
    )

    @model_validator(mode="after")
    def validate_retry_settings(self) -> "Settings":
        """Validate backoff settings are ordered correctly.

        The cap must not be below the base delay, and jitter must stay below
        the base delay so that consecutive delays strictly increase until the cap.
        """
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError(
                f"retry_max_delay_seconds ({self.retry_max_delay_seconds}) must be >= "
                f"retry_base_delay_seconds ({self.retry_base_delay_seconds})"
            )
        if self.retry_jitter_seconds > 0 and self.retry_jitter_seconds >= max(
            self.retry_base_delay_seconds, 1e-9
        ):
            raise ValueError(
                f"retry_jitter_seconds ({self.retry_jitter_seconds}) must be less than "
                f"retry_base_delay_seconds ({self.retry_base_delay_seconds})"
            )
        return self

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Fail fast on configuration that is only acceptable in development."""
        if self.env == "production":
            if self.submission_url is None:
                raise ConfigurationError(
                    "COURIER_SUBMISSION_URL must be set in production. "
                    "The in-memory submission sink loses inbound records on restart."
                )
            if self.cors_allow_origins == ["*"]:
                logger.warning(
                    "CORS allows all origins in production. "
                    "Set COURIER_CORS_ALLOW_ORIGINS to the management UI origin."
                )
        return self

    model_config = {
        "env_prefix": "COURIER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }
