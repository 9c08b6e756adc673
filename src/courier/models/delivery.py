"""Delivery models and the delivery state machine.

A DeliveryAttempt is created once per (endpoint, event) pair and moves
through the closed set of states below. Transitions not listed in
``ALLOWED_TRANSITIONS`` are rejected with InvalidTransitionError, so a
terminal record can never be reopened.

    Pending -> InFlight -> Succeeded
                        -> RetryWait -> InFlight ...
                        -> DeadLettered

InFlight and RetryWait may also fall back to Pending when their endpoint is
paused; that is a cancellation, not a failure.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from courier.exceptions import InvalidTransitionError

from .base import generate_id, utc_now


class DeliveryStatus(str, Enum):
    """Status of a delivery record."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    RETRY_WAIT = "retry_wait"
    DEAD_LETTERED = "dead_lettered"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({DeliveryStatus.SUCCEEDED, DeliveryStatus.DEAD_LETTERED})

ALLOWED_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.IN_FLIGHT}),
    DeliveryStatus.IN_FLIGHT: frozenset(
        {
            DeliveryStatus.SUCCEEDED,
            DeliveryStatus.RETRY_WAIT,
            DeliveryStatus.DEAD_LETTERED,
            DeliveryStatus.PENDING,
        }
    ),
    DeliveryStatus.RETRY_WAIT: frozenset({DeliveryStatus.IN_FLIGHT, DeliveryStatus.PENDING}),
    DeliveryStatus.SUCCEEDED: frozenset(),
    DeliveryStatus.DEAD_LETTERED: frozenset(),
}


class OutcomeKind(str, Enum):
    """Classification of a single dispatch attempt."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    PERMANENT_FAILURE = "permanent_failure"
    RATE_LIMIT_DEFERRED = "rate_limit_deferred"

    @property
    def is_failure(self) -> bool:
        return self in (OutcomeKind.RETRYABLE_FAILURE, OutcomeKind.PERMANENT_FAILURE)


@dataclass(frozen=True)
class Outcome:
    """Result of one dispatch attempt.

    Attributes:
        kind: How the attempt ended.
        response_code: HTTP status, if a response was received.
        response_time_ms: Wall time of the HTTP call.
        error_message: Description of the failure, if any.
        retry_after: Seconds until a rate-limit token is available (deferrals only).
    """

    kind: OutcomeKind
    response_code: int | None = None
    response_time_ms: int | None = None
    error_message: str | None = None
    retry_after: float | None = None

    @classmethod
    def deferred(cls, retry_after: float) -> Outcome:
        return cls(kind=OutcomeKind.RATE_LIMIT_DEFERRED, retry_after=retry_after)


class DeliveryAttempt(BaseModel):
    """Delivery of one event to one endpoint, across all of its attempts.

    Attributes:
        id: Unique identifier.
        endpoint_id: Target endpoint.
        event_id: Identifier of the triggering event (shared across its fan-out).
        event_type: Event type string.
        payload: Raw JSON bytes captured at publish time, sent verbatim on every attempt.
        status: Current state.
        attempt_count: Completed HTTP attempts.
        response_code: Status code of the latest response.
        response_time_ms: Duration of the latest attempt.
        error_message: Error from the latest failed attempt.
        next_attempt_at: When a RetryWait record becomes due.
        replay_of: Dead-lettered delivery this record replays, if any.
        created_at: When the record was created.
        updated_at: When the record last changed.
        completed_at: When the record reached a terminal state.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    endpoint_id: str
    event_id: str = Field(default_factory=lambda: generate_id("evt"))
    event_type: str
    payload: bytes = Field(frozen=True)
    status: DeliveryStatus = Field(default=DeliveryStatus.PENDING)
    attempt_count: int = Field(default=0, ge=0)
    response_code: int | None = None
    response_time_ms: int | None = None
    error_message: str | None = None
    next_attempt_at: datetime | None = None
    replay_of: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def payload_json(self) -> Any:
        """Decode the stored payload for display."""
        return json.loads(self.payload)

    def transition(self, to: DeliveryStatus, *, at: datetime | None = None) -> DeliveryStatus:
        """Move to a new status, enforcing the transition table.

        Returns:
            The previous status.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        previous = self.status
        if to not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransitionError(self.id, previous.value, to.value)
        now = at or utc_now()
        self.status = to
        self.updated_at = now
        if to.is_terminal:
            self.completed_at = now
            self.next_attempt_at = None
        elif to is not DeliveryStatus.RETRY_WAIT:
            self.next_attempt_at = None
        return previous

    def record_response(self, outcome: Outcome) -> None:
        """Copy response metadata from a completed attempt."""
        self.attempt_count += 1
        self.response_code = outcome.response_code
        self.response_time_ms = outcome.response_time_ms
        self.error_message = outcome.error_message


__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "DeliveryAttempt",
    "DeliveryStatus",
    "Outcome",
    "OutcomeKind",
]
