"""API helper functions for building response objects."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from .schemas import (
    DeliveryLogEntryResponse,
    DeliveryResponse,
    EndpointResponse,
    EndpointStatsResponse,
    isoformat,
)

if TYPE_CHECKING:
    from courier.models import DeliveryAttempt, DeliveryLogEntry, EndpointStats, WebhookEndpoint

# Characters of the secret shown outside the create response
SECRET_PREVIEW_LENGTH = 10


def endpoint_to_response(endpoint: WebhookEndpoint, include_secret: bool = False) -> EndpointResponse:
    """Convert a WebhookEndpoint to an EndpointResponse.

    Args:
        endpoint: The endpoint.
        include_secret: Return the full secret (only right after creation).
    """
    return EndpointResponse(
        id=endpoint.id,
        name=endpoint.name,
        description=endpoint.description,
        url=endpoint.url,
        secret=endpoint.secret if include_secret else None,
        secret_preview=endpoint.secret[:SECRET_PREVIEW_LENGTH] + "...",
        events=sorted(endpoint.subscribed_events),
        timeout=endpoint.timeout,
        max_retries=endpoint.max_retries,
        headers=dict(endpoint.custom_headers),
        rate_limit_per_hour=endpoint.rate_limit_per_hour,
        status=endpoint.status,
        consecutive_failures=endpoint.consecutive_failures,
        created_at=endpoint.created_at.isoformat(),
        updated_at=endpoint.updated_at.isoformat(),
        last_triggered_at=isoformat(endpoint.last_triggered_at),
    )


def stats_to_response(stats: EndpointStats) -> EndpointStatsResponse:
    return EndpointStatsResponse(
        endpoint_id=stats.endpoint_id,
        success_count=stats.success_count,
        failure_count=stats.failure_count,
        success_rate=stats.success_rate,
        last_triggered_at=isoformat(stats.last_triggered_at),
    )


def _decode_payload(payload: bytes) -> Any:
    try:
        return json.loads(payload)
    except ValueError:
        return payload.decode("utf-8", errors="replace")


def delivery_to_response(delivery: DeliveryAttempt) -> DeliveryResponse:
    """Convert a DeliveryAttempt to a DeliveryResponse with a decoded payload."""
    return DeliveryResponse(
        id=delivery.id,
        endpoint_id=delivery.endpoint_id,
        event_id=delivery.event_id,
        event_type=delivery.event_type,
        payload=_decode_payload(delivery.payload),
        status=delivery.status,
        attempt_count=delivery.attempt_count,
        response_code=delivery.response_code,
        response_time_ms=delivery.response_time_ms,
        error_message=delivery.error_message,
        next_attempt_at=isoformat(delivery.next_attempt_at),
        replay_of=delivery.replay_of,
        created_at=delivery.created_at.isoformat(),
        updated_at=delivery.updated_at.isoformat(),
        completed_at=isoformat(delivery.completed_at),
    )


def log_entry_to_response(entry: DeliveryLogEntry) -> DeliveryLogEntryResponse:
    return DeliveryLogEntryResponse(
        id=entry.id,
        delivery_id=entry.delivery_id,
        endpoint_id=entry.endpoint_id,
        event_type=entry.event_type,
        attempt_number=entry.attempt_number,
        from_status=entry.from_status,
        to_status=entry.to_status,
        outcome=entry.outcome,
        response_code=entry.response_code,
        response_time_ms=entry.response_time_ms,
        error_message=entry.error_message,
        next_attempt_at=isoformat(entry.next_attempt_at),
        recorded_at=entry.recorded_at.isoformat(),
    )
