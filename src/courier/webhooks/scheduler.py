"""Retry scheduling and the delivery state machine driver.

Every state change goes through here and is saved together with its log
entry. The rules:

- Success: Succeeded.
- PermanentFailure: DeadLettered immediately.
- RetryableFailure: RetryWait with ``next_attempt_at = now + backoff(n)``
  while ``n < max_retries + 1`` (``n`` being the attempt count after this
  attempt), else DeadLettered.
- RateLimitDeferred: no change.

DeadLettered records are only ever retried through ``replay``, which
creates a new record.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import datetime, timedelta

from courier.config import BackoffSettings
from courier.exceptions import NotFoundError, ValidationError
from courier.logging import get_logger
from courier.models import (
    DeliveryAttempt,
    DeliveryLogEntry,
    DeliveryStatus,
    Outcome,
    OutcomeKind,
    WebhookEndpoint,
    utc_now,
)
from courier.storage import CourierStorage
from courier.storage.deliveries import transition_entry

from .backoff import compute_backoff

logger = get_logger(__name__)

Clock = Callable[[], datetime]


class RetryScheduler:
    """Applies attempt outcomes to deliveries.

    Args:
        storage: Backing store.
        policy: Backoff parameters.
        rng: Random source for jitter.
        clock: Current time; ``utc_now`` by default.
    """

    def __init__(
        self,
        storage: CourierStorage,
        policy: BackoffSettings,
        rng: random.Random | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.storage = storage
        self.policy = policy
        self.rng = rng or random.Random()
        self.clock = clock

    def backoff(self, attempt: int) -> float:
        return compute_backoff(attempt, self.policy, self.rng)

    async def begin_attempt(self, delivery: DeliveryAttempt) -> DeliveryAttempt:
        """Mark a Pending or RetryWait delivery InFlight."""
        previous = delivery.transition(DeliveryStatus.IN_FLIGHT, at=self.clock())
        return await self.storage.save_delivery(delivery, transition_entry(delivery, previous))

    async def cancel(self, delivery: DeliveryAttempt) -> DeliveryAttempt:
        """Return an interrupted delivery to Pending without counting the attempt."""
        previous = delivery.transition(DeliveryStatus.PENDING, at=self.clock())
        saved = await self.storage.save_delivery(delivery, transition_entry(delivery, previous))
        logger.info("Delivery cancelled", delivery_id=delivery.id, previous=previous.value)
        return saved

    async def apply(
        self,
        delivery: DeliveryAttempt,
        endpoint: WebhookEndpoint,
        outcome: Outcome,
    ) -> DeliveryAttempt:
        """Record an InFlight delivery's outcome and move it to its next state.

        Raises:
            ValueError: For a RateLimitDeferred outcome, which never reaches
                an InFlight record.
        """
        if outcome.kind is OutcomeKind.RATE_LIMIT_DEFERRED:
            raise ValueError("deferred outcomes do not change delivery state")

        now = self.clock()
        delivery.record_response(outcome)

        if outcome.kind is OutcomeKind.SUCCESS:
            target = DeliveryStatus.SUCCEEDED
        elif outcome.kind is OutcomeKind.PERMANENT_FAILURE:
            target = DeliveryStatus.DEAD_LETTERED
        elif delivery.attempt_count < endpoint.max_attempts:
            target = DeliveryStatus.RETRY_WAIT
        else:
            target = DeliveryStatus.DEAD_LETTERED

        previous = delivery.transition(target, at=now)
        if target is DeliveryStatus.RETRY_WAIT:
            delay = self.backoff(delivery.attempt_count)
            delivery.next_attempt_at = now + timedelta(seconds=delay)

        entry = DeliveryLogEntry(
            delivery_id=delivery.id,
            endpoint_id=delivery.endpoint_id,
            event_type=delivery.event_type,
            attempt_number=delivery.attempt_count,
            from_status=previous,
            to_status=target,
            outcome=outcome.kind,
            response_code=outcome.response_code,
            response_time_ms=outcome.response_time_ms,
            error_message=outcome.error_message,
            next_attempt_at=delivery.next_attempt_at,
            recorded_at=now,
        )
        await self.storage.save_delivery(delivery, entry)

        log = logger.warning if target is DeliveryStatus.DEAD_LETTERED else logger.info
        log(
            "Delivery attempt recorded",
            delivery_id=delivery.id,
            endpoint_id=delivery.endpoint_id,
            attempt=delivery.attempt_count,
            outcome=outcome.kind.value,
            status=target.value,
            response_code=outcome.response_code,
            next_attempt_at=delivery.next_attempt_at.isoformat() if delivery.next_attempt_at else None,
        )
        return delivery

    async def due(self, limit: int = 100) -> list[DeliveryAttempt]:
        """RetryWait deliveries whose backoff has elapsed."""
        return await self.storage.due_retries(self.clock(), limit=limit)

    async def replay(self, delivery_id: str) -> DeliveryAttempt:
        """Create a fresh Pending copy of a DeadLettered delivery.

        Raises:
            NotFoundError: If the delivery does not exist.
            ValidationError: If it is not DeadLettered.
        """
        original = await self.storage.get_delivery(delivery_id)
        if original is None:
            raise NotFoundError("delivery", delivery_id)
        if original.status is not DeliveryStatus.DEAD_LETTERED:
            raise ValidationError(
                "delivery_id",
                f"only dead-lettered deliveries can be replayed (status: {original.status.value})",
            )

        now = self.clock()
        replay = DeliveryAttempt(
            endpoint_id=original.endpoint_id,
            event_id=original.event_id,
            event_type=original.event_type,
            payload=original.payload,
            replay_of=original.id,
            created_at=now,
            updated_at=now,
        )
        await self.storage.create_deliveries([replay])
        logger.info("Delivery replayed", delivery_id=replay.id, replay_of=original.id)
        return replay
