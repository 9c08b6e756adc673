"""Delivery log models: the audit trail and the statistics derived from it."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .base import utc_now
from .delivery import DeliveryStatus, OutcomeKind


class DeliveryLogEntry(BaseModel):
    """One state transition of one delivery.

    Entries are written once and never updated.

    Attributes:
        id: Sequence number assigned by the store (None until persisted).
        delivery_id: Delivery that transitioned.
        endpoint_id: Endpoint of the delivery.
        event_type: Event type of the delivery.
        attempt_number: Attempt count at the time of the transition.
        from_status: Previous status (None for creation).
        to_status: New status.
        outcome: Classification of the attempt that caused the transition, if any.
        response_code: HTTP status of that attempt.
        response_time_ms: Duration of that attempt.
        error_message: Error of that attempt.
        next_attempt_at: Scheduled retry time for RetryWait transitions.
        recorded_at: When the transition happened.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: int | None = None
    delivery_id: str
    endpoint_id: str
    event_type: str
    attempt_number: int = Field(ge=0)
    from_status: DeliveryStatus | None = None
    to_status: DeliveryStatus
    outcome: OutcomeKind | None = None
    response_code: int | None = None
    response_time_ms: int | None = None
    error_message: str | None = None
    next_attempt_at: datetime | None = None
    recorded_at: datetime = Field(default_factory=utc_now)


class EndpointStats(BaseModel):
    """Read-side counters for one endpoint.

    Attributes:
        endpoint_id: Endpoint the stats describe.
        success_count: Deliveries that reached Succeeded.
        failure_count: Failed attempts (retryable or permanent).
        success_rate: Percentage of successes among successes and failures.
        last_triggered_at: Most recent delivery creation for the endpoint.
    """

    model_config = ConfigDict(extra="forbid")

    endpoint_id: str
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    success_rate: float | None = None
    last_triggered_at: datetime | None = None

    @classmethod
    def from_counts(
        cls,
        endpoint_id: str,
        success_count: int,
        failure_count: int,
        last_triggered_at: datetime | None,
    ) -> EndpointStats:
        total = success_count + failure_count
        rate = round(success_count / total * 100, 2) if total else None
        return cls(
            endpoint_id=endpoint_id,
            success_count=success_count,
            failure_count=failure_count,
            success_rate=rate,
            last_triggered_at=last_triggered_at,
        )


__all__ = ["DeliveryLogEntry", "EndpointStats"]
