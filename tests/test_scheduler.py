"""Tests for the retry scheduler."""

from __future__ import annotations

import random
from datetime import timedelta

import pytest

from courier.config import BackoffSettings
from courier.exceptions import NotFoundError, ValidationError
from courier.models import (
    DeliveryAttempt,
    DeliveryStatus,
    Outcome,
    OutcomeKind,
    WebhookEndpoint,
)
from courier.storage import CourierStorage
from courier.webhooks.scheduler import RetryScheduler

from conftest import FakeClock

SUCCESS = Outcome(kind=OutcomeKind.SUCCESS, response_code=200, response_time_ms=5)
RETRYABLE = Outcome(kind=OutcomeKind.RETRYABLE_FAILURE, response_code=503, error_message="HTTP 503")
PERMANENT = Outcome(kind=OutcomeKind.PERMANENT_FAILURE, response_code=404, error_message="HTTP 404")


@pytest.fixture
def scheduler(storage: CourierStorage, clock: FakeClock) -> RetryScheduler:
    return RetryScheduler(storage, BackoffSettings(), rng=random.Random(0), clock=clock)


@pytest.fixture
async def endpoint(storage: CourierStorage) -> WebhookEndpoint:
    return await storage.create_endpoint(
        WebhookEndpoint(url="https://e.com/h", subscribed_events={"user.created"}, max_retries=2)
    )


@pytest.fixture
async def delivery(storage: CourierStorage, endpoint: WebhookEndpoint) -> DeliveryAttempt:
    record = DeliveryAttempt(endpoint_id=endpoint.id, event_type="user.created", payload=b"{}")
    await storage.create_deliveries([record])
    return record


async def run_attempt(
    scheduler: RetryScheduler,
    delivery: DeliveryAttempt,
    endpoint: WebhookEndpoint,
    outcome: Outcome,
) -> DeliveryAttempt:
    delivery = await scheduler.begin_attempt(delivery)
    return await scheduler.apply(delivery, endpoint, outcome)


class TestApply:
    """Tests for RetryScheduler.apply()."""

    @pytest.mark.asyncio
    async def test_success_is_terminal(
        self, scheduler: RetryScheduler, delivery: DeliveryAttempt, endpoint: WebhookEndpoint
    ) -> None:
        result = await run_attempt(scheduler, delivery, endpoint, SUCCESS)
        assert result.status is DeliveryStatus.SUCCEEDED
        assert result.attempt_count == 1
        assert result.response_code == 200
        assert result.completed_at is not None

    @pytest.mark.asyncio
    async def test_permanent_failure_dead_letters_immediately(
        self, scheduler: RetryScheduler, delivery: DeliveryAttempt, endpoint: WebhookEndpoint
    ) -> None:
        result = await run_attempt(scheduler, delivery, endpoint, PERMANENT)
        assert result.status is DeliveryStatus.DEAD_LETTERED
        assert result.attempt_count == 1
        assert result.next_attempt_at is None

    @pytest.mark.asyncio
    async def test_retryable_failure_schedules_retry(
        self,
        scheduler: RetryScheduler,
        delivery: DeliveryAttempt,
        endpoint: WebhookEndpoint,
        clock: FakeClock,
    ) -> None:
        result = await run_attempt(scheduler, delivery, endpoint, RETRYABLE)
        assert result.status is DeliveryStatus.RETRY_WAIT
        delay = (result.next_attempt_at - clock.now).total_seconds()
        # backoff(1) = 2s with +/-20% jitter
        assert 1.6 <= delay <= 2.4

    @pytest.mark.asyncio
    async def test_attempts_bounded_by_max_retries(
        self,
        scheduler: RetryScheduler,
        delivery: DeliveryAttempt,
        endpoint: WebhookEndpoint,
        clock: FakeClock,
    ) -> None:
        """max_retries=2 allows three attempts, then the record is dead-lettered."""
        statuses = []
        for _ in range(3):
            delivery = await run_attempt(scheduler, delivery, endpoint, RETRYABLE)
            statuses.append(delivery.status)
            clock.advance(3600)
        assert statuses == [
            DeliveryStatus.RETRY_WAIT,
            DeliveryStatus.RETRY_WAIT,
            DeliveryStatus.DEAD_LETTERED,
        ]
        assert delivery.attempt_count == 3

    @pytest.mark.asyncio
    async def test_log_entry_carries_outcome(
        self,
        scheduler: RetryScheduler,
        storage: CourierStorage,
        delivery: DeliveryAttempt,
        endpoint: WebhookEndpoint,
    ) -> None:
        await run_attempt(scheduler, delivery, endpoint, RETRYABLE)
        history = await storage.delivery_history(delivery.id)
        assert [e.to_status for e in history] == [
            DeliveryStatus.PENDING,
            DeliveryStatus.IN_FLIGHT,
            DeliveryStatus.RETRY_WAIT,
        ]
        last = history[-1]
        assert last.outcome is OutcomeKind.RETRYABLE_FAILURE
        assert last.response_code == 503
        assert last.attempt_number == 1
        assert last.next_attempt_at is not None

    @pytest.mark.asyncio
    async def test_deferred_outcome_rejected(
        self, scheduler: RetryScheduler, delivery: DeliveryAttempt, endpoint: WebhookEndpoint
    ) -> None:
        with pytest.raises(ValueError):
            await scheduler.apply(delivery, endpoint, Outcome.deferred(1.0))


class TestCancel:
    """Tests for RetryScheduler.cancel()."""

    @pytest.mark.asyncio
    async def test_cancel_does_not_count_attempt(
        self, scheduler: RetryScheduler, delivery: DeliveryAttempt
    ) -> None:
        delivery = await scheduler.begin_attempt(delivery)
        result = await scheduler.cancel(delivery)
        assert result.status is DeliveryStatus.PENDING
        assert result.attempt_count == 0


class TestDue:
    """Tests for RetryScheduler.due()."""

    @pytest.mark.asyncio
    async def test_due_after_backoff(
        self,
        scheduler: RetryScheduler,
        delivery: DeliveryAttempt,
        endpoint: WebhookEndpoint,
        clock: FakeClock,
    ) -> None:
        await run_attempt(scheduler, delivery, endpoint, RETRYABLE)
        assert await scheduler.due() == []
        clock.advance(3)
        assert [d.id for d in await scheduler.due()] == [delivery.id]


class TestReplay:
    """Tests for RetryScheduler.replay()."""

    @pytest.mark.asyncio
    async def test_replay_dead_lettered(
        self,
        scheduler: RetryScheduler,
        storage: CourierStorage,
        delivery: DeliveryAttempt,
        endpoint: WebhookEndpoint,
    ) -> None:
        dead = await run_attempt(scheduler, delivery, endpoint, PERMANENT)

        replay = await scheduler.replay(dead.id)

        assert replay.id != dead.id
        assert replay.status is DeliveryStatus.PENDING
        assert replay.attempt_count == 0
        assert replay.payload == dead.payload
        assert replay.replay_of == dead.id
        assert (await storage.get_delivery(dead.id)).status is DeliveryStatus.DEAD_LETTERED

    @pytest.mark.asyncio
    async def test_replay_requires_dead_letter(
        self, scheduler: RetryScheduler, delivery: DeliveryAttempt
    ) -> None:
        with pytest.raises(ValidationError):
            await scheduler.replay(delivery.id)

    @pytest.mark.asyncio
    async def test_replay_unknown(self, scheduler: RetryScheduler) -> None:
        with pytest.raises(NotFoundError):
            await scheduler.replay("dlv_missing")

    def test_backoff_uses_policy(self, scheduler: RetryScheduler) -> None:
        assert 0.8 <= scheduler.backoff(0) <= 1.2
        assert timedelta(seconds=scheduler.backoff(3)) <= timedelta(seconds=9.6)
