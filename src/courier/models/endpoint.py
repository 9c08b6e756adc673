"""Webhook endpoint models.

An endpoint is an external HTTP(S) URL that subscribes to a set of event
types. Endpoints carry their own signing secret, timeout, retry budget and
optional custom headers, and move between Active, Disabled and AutoDisabled.
"""

from __future__ import annotations

import secrets
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now

TEST_EVENT_TYPE = "test.ping"


def generate_secret() -> str:
    """Generate a signing secret in the ``whsec_<hex>`` format."""
    return f"whsec_{secrets.token_hex(24)}"


class EndpointStatus(str, Enum):
    """Lifecycle status of a webhook endpoint."""

    ACTIVE = "active"
    DISABLED = "disabled"  # Operator action
    AUTO_DISABLED = "auto_disabled"  # Too many consecutive failures


class WebhookEndpoint(BaseModel):
    """A registered webhook endpoint.

    Attributes:
        id: Unique identifier.
        name: Human-readable name shown in the dashboard.
        description: Optional description.
        url: Target URL receiving POST deliveries.
        secret: Shared secret for HMAC-SHA256 signatures.
        subscribed_events: Event types this endpoint receives (exact match).
        timeout: Request timeout in seconds.
        max_retries: Retries after the first attempt (total attempts = max_retries + 1).
        custom_headers: Extra headers sent with each delivery, in order.
        rate_limit_per_hour: Per-endpoint override of the global rate limit.
        status: Active, Disabled or AutoDisabled.
        consecutive_failures: Failed outcomes since the last success or enable.
        created_at: When the endpoint was registered.
        updated_at: When the endpoint was last modified.
        last_triggered_at: When an event last matched this endpoint.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    name: str = Field(default="", description="Display name")
    description: str | None = Field(default=None, description="Human-readable description")
    url: str = Field(description="Endpoint URL")
    secret: str = Field(default_factory=generate_secret, description="HMAC signing secret")
    subscribed_events: set[str] = Field(default_factory=set, description="Subscribed event types")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    custom_headers: dict[str, str] = Field(default_factory=dict, description="Extra headers")
    rate_limit_per_hour: int | None = Field(
        default=None, ge=1, description="Per-endpoint deliveries per hour"
    )
    status: EndpointStatus = Field(default=EndpointStatus.ACTIVE)
    consecutive_failures: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_triggered_at: datetime | None = Field(default=None)

    @property
    def is_active(self) -> bool:
        return self.status is EndpointStatus.ACTIVE

    @property
    def max_attempts(self) -> int:
        """Upper bound on delivery attempts for one record."""
        return self.max_retries + 1

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this endpoint is active and subscribed to the event type."""
        return self.is_active and event_type in self.subscribed_events


class EndpointRegistration(BaseModel):
    """Input for registering an endpoint.

    Unset timeout and max_retries fall back to the global defaults; a blank
    secret is replaced with a generated one.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    name: str = ""
    description: str | None = None
    url: str
    secret: str | None = None
    subscribed_events: set[str] = Field(default_factory=set)
    timeout: float | None = Field(default=None, gt=0)
    max_retries: int | None = Field(default=None, ge=0)
    custom_headers: dict[str, str] = Field(default_factory=dict)
    rate_limit_per_hour: int | None = Field(default=None, ge=1)


class EndpointPatch(BaseModel):
    """Partial update for an endpoint. Only fields that are set are applied."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    description: str | None = None
    url: str | None = None
    secret: str | None = None
    subscribed_events: set[str] | None = None
    timeout: float | None = Field(default=None, gt=0)
    max_retries: int | None = Field(default=None, ge=0)
    custom_headers: dict[str, str] | None = None
    rate_limit_per_hour: int | None = Field(default=None, ge=1)


__all__ = [
    "TEST_EVENT_TYPE",
    "EndpointPatch",
    "EndpointRegistration",
    "EndpointStatus",
    "WebhookEndpoint",
    "generate_secret",
]
