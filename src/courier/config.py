"""Configuration management for Courier.

Settings are loaded from the environment once and passed explicitly into
the registry, router, dispatcher and engine; no component reads
module-level configuration.
"""

import logging
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class BackoffSettings(BaseModel):
    """Exponential backoff with jitter for retryable failures.

    The delay before retry ``n`` is:
        min(base_seconds * 2**n, max_seconds) * uniform(jitter_min, jitter_max)

    Attributes:
        base_seconds: Delay unit (1.0 default).
        max_seconds: Cap applied before jitter (3600 default).
        jitter_min: Lower jitter multiplier (0.8 default).
        jitter_max: Upper jitter multiplier (1.2 default).
    """

    base_seconds: float = Field(default=1.0, gt=0.0, description="Backoff delay unit")
    max_seconds: float = Field(default=3600.0, gt=0.0, description="Backoff cap before jitter")
    jitter_min: float = Field(default=0.8, gt=0.0, le=1.0, description="Lower jitter bound")
    jitter_max: float = Field(default=1.2, ge=1.0, description="Upper jitter bound")

    @model_validator(mode="after")
    def validate_bounds(self) -> "BackoffSettings":
        """The cap must not be smaller than the base delay."""
        if self.max_seconds < self.base_seconds:
            raise ValueError(
                f"max_seconds ({self.max_seconds}) must be >= base_seconds ({self.base_seconds})"
            )
        return self


class Settings(BaseSettings):
    """Courier configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the COURIER_ prefix. For example:
        COURIER_DATABASE_URL=sqlite+aiosqlite:////var/lib/courier/courier.db
        COURIER_REQUIRE_HTTPS=false
        COURIER_BACKOFF__BASE_SECONDS=2
    """

    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./courier.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(default=False, description="Log SQL statements")

    # Security
    require_https: bool = Field(
        default=True,
        description="Only allow https:// endpoint URLs",
    )
    sign_deliveries: bool = Field(
        default=True,
        description="Include the HMAC signature header in deliveries",
    )

    # Endpoint defaults
    default_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=300.0,
        description="Request timeout for endpoints registered without one",
    )
    default_max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Retry budget for endpoints registered without one",
    )
    default_rate_limit_per_hour: int = Field(
        default=1000,
        ge=1,
        description="Deliveries per hour per endpoint unless overridden",
    )
    rate_limit_burst: float | None = Field(
        default=None,
        ge=1.0,
        description="Token bucket capacity; defaults to the hourly limit",
    )

    # Retry policy
    backoff: BackoffSettings = Field(
        default_factory=BackoffSettings,
        description="Backoff policy for retryable failures",
    )
    auto_disable_threshold: int = Field(
        default=10,
        ge=1,
        description="Consecutive failed outcomes before an endpoint is auto-disabled",
    )

    # Worker pool
    worker_count: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Parallel delivery workers",
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="How often due retries are picked up",
    )

    # Retention
    retention_days: int = Field(
        default=30,
        ge=1,
        description="Days to keep terminal deliveries and their log entries",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log output format")

    # CORS Configuration
    cors_enabled: bool = Field(default=True, description="Enable CORS middleware")
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="List of allowed CORS origins",
    )

    model_config = {
        "env_prefix": "COURIER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def warn_insecure_production(self) -> "Settings":
        """Log when production runs with plain HTTP or unsigned deliveries."""
        if self.env == "production":
            if not self.require_https:
                logger.warning("require_https is disabled in production")
            if not self.sign_deliveries:
                logger.warning("sign_deliveries is disabled in production")
        return self
