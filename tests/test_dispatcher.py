"""Tests for HTTP dispatch and outcome classification."""

from __future__ import annotations

import httpx
import pytest

from courier.config import Settings
from courier.models import DeliveryAttempt, OutcomeKind, WebhookEndpoint
from courier.webhooks.dispatcher import Dispatcher, classify_status
from courier.webhooks.rate_limit import RateLimit, RateLimiter
from courier.webhooks.signer import verify_signature

from conftest import FakeMonotonic, Receiver

URL = "https://hooks.example.com/e1"


@pytest.fixture
def endpoint() -> WebhookEndpoint:
    return WebhookEndpoint(
        id="whk_e1",
        url=URL,
        secret="whsec_test",
        subscribed_events={"user.created"},
        timeout=2.0,
        custom_headers={"Authorization": "Bearer abc"},
    )


@pytest.fixture
def delivery() -> DeliveryAttempt:
    return DeliveryAttempt(
        id="dlv_1", endpoint_id="whk_e1", event_type="user.created", payload=b'{"id":42}'
    )


@pytest.fixture
def dispatcher(
    settings: Settings, http_client: httpx.AsyncClient, monotonic: FakeMonotonic
) -> Dispatcher:
    limiter = RateLimiter(RateLimit(capacity=100, refill_per_second=1), clock=monotonic)
    return Dispatcher(settings, limiter, client=http_client, wall_clock=lambda: 1700000000.0)


class TestClassifyStatus:
    """Tests for classify_status()."""

    @pytest.mark.parametrize("code", [200, 201, 202, 204, 299])
    def test_success(self, code: int) -> None:
        assert classify_status(code) is OutcomeKind.SUCCESS

    @pytest.mark.parametrize("code", [429, 500, 502, 503, 504])
    def test_retryable(self, code: int) -> None:
        assert classify_status(code) is OutcomeKind.RETRYABLE_FAILURE

    @pytest.mark.parametrize("code", [400, 401, 403, 404, 410, 422, 301, 302, 101])
    def test_permanent(self, code: int) -> None:
        assert classify_status(code) is OutcomeKind.PERMANENT_FAILURE


class TestSend:
    """Tests for Dispatcher.send()."""

    @pytest.mark.asyncio
    async def test_request_contract(
        self,
        dispatcher: Dispatcher,
        receiver: Receiver,
        endpoint: WebhookEndpoint,
        delivery: DeliveryAttempt,
    ) -> None:
        outcome = await dispatcher.send(delivery, endpoint)

        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.response_code == 200
        assert outcome.error_message is None
        request = receiver.requests[0]
        assert request.method == "POST"
        assert str(request.url) == URL
        assert request.content == b'{"id":42}'
        assert request.headers["content-type"] == "application/json"
        assert request.headers["x-webhook-event"] == "user.created"
        assert request.headers["x-webhook-delivery-id"] == "dlv_1"
        assert request.headers["x-webhook-timestamp"] == "1700000000"
        assert request.headers["authorization"] == "Bearer abc"
        assert verify_signature(
            "whsec_test", 1700000000, request.content, request.headers["x-webhook-signature"]
        )

    @pytest.mark.asyncio
    async def test_unsigned_when_disabled(
        self,
        http_client: httpx.AsyncClient,
        receiver: Receiver,
        endpoint: WebhookEndpoint,
        delivery: DeliveryAttempt,
    ) -> None:
        settings = Settings(_env_file=None, sign_deliveries=False)
        limiter = RateLimiter(RateLimit(capacity=10, refill_per_second=1))
        dispatcher = Dispatcher(settings, limiter, client=http_client)

        await dispatcher.send(delivery, endpoint)

        assert "x-webhook-signature" not in receiver.requests[0].headers
        assert "x-webhook-timestamp" in receiver.requests[0].headers

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (500, OutcomeKind.RETRYABLE_FAILURE),
            (503, OutcomeKind.RETRYABLE_FAILURE),
            (429, OutcomeKind.RETRYABLE_FAILURE),
            (400, OutcomeKind.PERMANENT_FAILURE),
            (404, OutcomeKind.PERMANENT_FAILURE),
        ],
    )
    async def test_status_classification(
        self,
        dispatcher: Dispatcher,
        receiver: Receiver,
        endpoint: WebhookEndpoint,
        delivery: DeliveryAttempt,
        status: int,
        kind: OutcomeKind,
    ) -> None:
        receiver.script(URL, status)
        outcome = await dispatcher.send(delivery, endpoint)
        assert outcome.kind is kind
        assert outcome.response_code == status
        assert outcome.error_message.startswith(f"HTTP {status}")

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(
        self,
        dispatcher: Dispatcher,
        receiver: Receiver,
        endpoint: WebhookEndpoint,
        delivery: DeliveryAttempt,
    ) -> None:
        receiver.script(URL, httpx.ReadTimeout("timed out"))
        outcome = await dispatcher.send(delivery, endpoint)
        assert outcome.kind is OutcomeKind.RETRYABLE_FAILURE
        assert outcome.response_code is None
        assert "timed out" in outcome.error_message

    @pytest.mark.asyncio
    async def test_network_error_is_retryable(
        self,
        dispatcher: Dispatcher,
        receiver: Receiver,
        endpoint: WebhookEndpoint,
        delivery: DeliveryAttempt,
    ) -> None:
        receiver.script(URL, httpx.ConnectError("connection refused"))
        outcome = await dispatcher.send(delivery, endpoint)
        assert outcome.kind is OutcomeKind.RETRYABLE_FAILURE
        assert "ConnectError" in outcome.error_message


class TestAttempt:
    """Tests for Dispatcher.attempt() and rate limiting."""

    @pytest.mark.asyncio
    async def test_deferred_when_out_of_tokens(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        receiver: Receiver,
        monotonic: FakeMonotonic,
        endpoint: WebhookEndpoint,
        delivery: DeliveryAttempt,
    ) -> None:
        limiter = RateLimiter(RateLimit(capacity=1, refill_per_second=1), clock=monotonic)
        dispatcher = Dispatcher(settings, limiter, client=http_client)

        first = await dispatcher.attempt(delivery, endpoint)
        second = await dispatcher.attempt(delivery, endpoint)

        assert first.kind is OutcomeKind.SUCCESS
        assert second.kind is OutcomeKind.RATE_LIMIT_DEFERRED
        assert second.retry_after == pytest.approx(1.0)
        assert len(receiver.requests) == 1

        monotonic.advance(1.0)
        third = await dispatcher.attempt(delivery, endpoint)
        assert third.kind is OutcomeKind.SUCCESS
        assert len(receiver.requests) == 2
