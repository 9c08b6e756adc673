"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from courier.models import (
    DeliveryStatus,
    EndpointStatus,
    OutcomeKind,
)


class RegisterEndpointRequest(BaseModel):
    """Request body for registering an endpoint.

    Attributes:
        id: Optional caller-chosen id.
        name: Display name.
        description: Optional description.
        url: Target URL.
        secret: Signing secret (generated when omitted or blank).
        events: Event types to subscribe to.
        timeout: Request timeout in seconds (global default when omitted).
        max_retries: Retries after the first attempt (global default when omitted).
        headers: Extra request headers.
        rate_limit_per_hour: Per-endpoint rate limit override.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = Field(default=None, description="Caller-chosen endpoint id")
    name: str = Field(default="", description="Display name")
    description: str | None = Field(default=None, description="Description")
    url: str = Field(min_length=1, description="Target URL")
    secret: str | None = Field(default=None, description="Signing secret")
    events: list[str] = Field(min_length=1, description="Subscribed event types")
    timeout: float | None = Field(default=None, gt=0, le=300, description="Timeout in seconds")
    max_retries: int | None = Field(default=None, ge=0, le=20, description="Retry budget")
    headers: dict[str, str] = Field(default_factory=dict, description="Custom headers")
    rate_limit_per_hour: int | None = Field(default=None, ge=1, description="Rate limit override")


class UpdateEndpointRequest(BaseModel):
    """Partial update for an endpoint; omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    description: str | None = None
    url: str | None = None
    secret: str | None = None
    events: list[str] | None = None
    timeout: float | None = Field(default=None, gt=0, le=300)
    max_retries: int | None = Field(default=None, ge=0, le=20)
    headers: dict[str, str] | None = None
    rate_limit_per_hour: int | None = Field(default=None, ge=1)


class EndpointStatsResponse(BaseModel):
    """Delivery statistics for an endpoint."""

    model_config = ConfigDict(extra="forbid")

    endpoint_id: str
    success_count: int
    failure_count: int
    success_rate: float | None
    last_triggered_at: str | None


class EndpointResponse(BaseModel):
    """An endpoint as returned by the API.

    The secret is only returned in full when the endpoint is created;
    elsewhere a short prefix is shown.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    description: str | None
    url: str
    secret: str | None = None
    secret_preview: str
    events: list[str]
    timeout: float
    max_retries: int
    headers: dict[str, str]
    rate_limit_per_hour: int | None
    status: EndpointStatus
    consecutive_failures: int
    created_at: str
    updated_at: str
    last_triggered_at: str | None


class EndpointDetailResponse(BaseModel):
    """An endpoint with its statistics."""

    model_config = ConfigDict(extra="forbid")

    endpoint: EndpointResponse
    stats: EndpointStatsResponse


class EndpointListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    endpoints: list[EndpointResponse]
    count: int


class DeliveryResponse(BaseModel):
    """A delivery record as returned by the API."""

    model_config = ConfigDict(extra="forbid")

    id: str
    endpoint_id: str
    event_id: str
    event_type: str
    payload: Any
    status: DeliveryStatus
    attempt_count: int
    response_code: int | None
    response_time_ms: int | None
    error_message: str | None
    next_attempt_at: str | None
    replay_of: str | None
    created_at: str
    updated_at: str
    completed_at: str | None


class DeliveryListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deliveries: list[DeliveryResponse]
    count: int


class DeliveryLogEntryResponse(BaseModel):
    """One recorded transition of a delivery."""

    model_config = ConfigDict(extra="forbid")

    id: int | None
    delivery_id: str
    endpoint_id: str
    event_type: str
    attempt_number: int
    from_status: DeliveryStatus | None
    to_status: DeliveryStatus
    outcome: OutcomeKind | None
    response_code: int | None
    response_time_ms: int | None
    error_message: str | None
    next_attempt_at: str | None
    recorded_at: str


class DeliveryHistoryResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    delivery_id: str
    entries: list[DeliveryLogEntryResponse]


class RecentEventsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entries: list[DeliveryLogEntryResponse]
    count: int


class PublishRequest(BaseModel):
    """Request body for publishing a domain event.

    Attributes:
        event_type: Event type, e.g. "user.created".
        payload: JSON payload delivered verbatim to every matching endpoint.
    """

    model_config = ConfigDict(extra="forbid")

    event_type: str = Field(min_length=1, description="Event type")
    payload: Any = Field(default_factory=dict, description="Event payload")


class PublishResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_id: str | None
    event_type: str
    deliveries: list[DeliveryResponse]
    count: int


class PurgeResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    removed: int


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, degraded, unhealthy).
        version: API version.
        storage_connected: Whether storage is connected.
        engine_running: Whether delivery workers are running.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    storage_connected: bool
    engine_running: bool = False


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
