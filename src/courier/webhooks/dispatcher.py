"""HTTP delivery of a single attempt.

The dispatcher signs and POSTs the stored payload bytes and classifies
the result. It does not touch delivery state; the engine hands the
outcome to the retry scheduler and the endpoint registry.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import httpx

from courier.config import Settings
from courier.logging import get_logger
from courier.models import DeliveryAttempt, Outcome, OutcomeKind, WebhookEndpoint

from .rate_limit import RateLimiter
from .signer import build_headers

logger = get_logger(__name__)

# Truncate response bodies stored in error messages
MAX_ERROR_BODY = 200


def classify_status(status_code: int) -> OutcomeKind:
    """Map an HTTP status code to an attempt outcome.

    2xx succeeds; 5xx and 429 are retried; everything else is permanent.
    """
    if 200 <= status_code < 300:
        return OutcomeKind.SUCCESS
    if status_code == 429 or 500 <= status_code < 600:
        return OutcomeKind.RETRYABLE_FAILURE
    return OutcomeKind.PERMANENT_FAILURE


class Dispatcher:
    """Sends deliveries over a shared httpx client.

    Args:
        settings: Supplies ``sign_deliveries``.
        rate_limiter: Per-endpoint token buckets.
        client: Shared async client; one is created if None.
        wall_clock: Source of the unix timestamp header.
    """

    def __init__(
        self,
        settings: Settings,
        rate_limiter: RateLimiter,
        client: httpx.AsyncClient | None = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.rate_limiter = rate_limiter
        self._client = client
        self._owns_client = client is None
        self._wall_clock = wall_clock

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=False)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def acquire(self, endpoint: WebhookEndpoint) -> Outcome | None:
        """Take a rate-limit token.

        Returns:
            None if a token was taken, else a RateLimitDeferred outcome.
        """
        limit = endpoint.rate_limit_per_hour
        if await self.rate_limiter.try_acquire(endpoint.id, limit):
            return None
        return Outcome.deferred(await self.rate_limiter.retry_after(endpoint.id, limit))

    async def attempt(self, delivery: DeliveryAttempt, endpoint: WebhookEndpoint) -> Outcome:
        """Rate-limit check followed by the HTTP call."""
        deferred = await self.acquire(endpoint)
        if deferred is not None:
            return deferred
        return await self.send(delivery, endpoint)

    async def send(self, delivery: DeliveryAttempt, endpoint: WebhookEndpoint) -> Outcome:
        """POST the delivery and classify the result.

        Network errors and timeouts are returned as retryable outcomes, never
        raised. Cancellation propagates to the caller.
        """
        timestamp = int(self._wall_clock())
        headers = build_headers(
            secret=endpoint.secret,
            timestamp=timestamp,
            payload=delivery.payload,
            event_type=delivery.event_type,
            delivery_id=delivery.id,
            custom_headers=endpoint.custom_headers,
            include_signature=self.settings.sign_deliveries,
        )

        started = time.monotonic()
        try:
            response = await self.client.post(
                endpoint.url,
                content=delivery.payload,
                headers=headers,
                timeout=endpoint.timeout,
            )
        except httpx.TimeoutException:
            return Outcome(
                kind=OutcomeKind.RETRYABLE_FAILURE,
                response_time_ms=_elapsed_ms(started),
                error_message=f"Request timed out after {endpoint.timeout}s",
            )
        except httpx.InvalidURL as e:
            return Outcome(
                kind=OutcomeKind.PERMANENT_FAILURE,
                response_time_ms=_elapsed_ms(started),
                error_message=f"Invalid URL: {e}",
            )
        except httpx.HTTPError as e:
            return Outcome(
                kind=OutcomeKind.RETRYABLE_FAILURE,
                response_time_ms=_elapsed_ms(started),
                error_message=f"{type(e).__name__}: {e}",
            )

        elapsed = _elapsed_ms(started)
        kind = classify_status(response.status_code)
        error_message = None
        if kind is not OutcomeKind.SUCCESS:
            error_message = f"HTTP {response.status_code}: {response.text[:MAX_ERROR_BODY]}"

        logger.debug(
            "Delivery attempt finished",
            delivery_id=delivery.id,
            endpoint_id=endpoint.id,
            status_code=response.status_code,
            outcome=kind.value,
            response_time_ms=elapsed,
        )
        return Outcome(
            kind=kind,
            response_code=response.status_code,
            response_time_ms=elapsed,
            error_message=error_message,
        )


def _elapsed_ms(started: float) -> int:
    return int(round((time.monotonic() - started) * 1000))
