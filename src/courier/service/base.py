"""Core Courier service layer.

This module provides WebhookService, which wires the storage, registry,
router, dispatcher, scheduler and delivery engine together behind one
management interface.

Example:
    ```python
    from courier.models import EndpointRegistration
    from courier.service import WebhookService

    async with WebhookService.create() as courier:
        endpoint = await courier.register_endpoint(
            EndpointRegistration(
                name="CRM sync",
                url="https://crm.example.com/hooks",
                subscribed_events={"user.created"},
            )
        )
        await courier.publish("user.created", {"id": 42, "email": "a@example.com"})
    ```
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any

import httpx

from courier.config import Settings
from courier.logging import get_logger
from courier.models import utc_now
from courier.storage import CourierStorage
from courier.webhooks import (
    DeliveryEngine,
    DeliveryLog,
    Dispatcher,
    EndpointRegistry,
    EventRouter,
    RateLimiter,
    RetryScheduler,
)
from courier.webhooks.scheduler import Clock

from .deliveries import DeliveryOpsMixin
from .endpoints import EndpointOpsMixin

logger = get_logger(__name__)


@dataclass
class WebhookService(EndpointOpsMixin, DeliveryOpsMixin):
    """High-level webhook service.

    This service provides:
    - register_endpoint() / update_endpoint() / enable_endpoint() / disable_endpoint()
    - publish(): fan an event out into queued deliveries
    - list_deliveries() / get_delivery() / delivery_history() / replay()
    - test_endpoint(): send a ``test.ping``

    Dependencies are injected so tests can swap the HTTP transport, the
    rate-limit clock and the jitter source.

    Attributes:
        storage: SQL storage backend.
        settings: Configuration settings.
        http_client: Shared httpx client (created by the dispatcher if None).
        rate_limiter: Token buckets (built from settings if None).
        rng: Jitter source for backoff.
        clock: Current time for state transitions.
    """

    storage: CourierStorage
    settings: Settings
    http_client: httpx.AsyncClient | None = field(default=None)
    rate_limiter: RateLimiter | None = field(default=None)
    rng: random.Random | None = field(default=None)
    clock: Clock = field(default=utc_now)

    registry: EndpointRegistry = field(init=False, repr=False)
    router: EventRouter = field(init=False, repr=False)
    dispatcher: Dispatcher = field(init=False, repr=False)
    scheduler: RetryScheduler = field(init=False, repr=False)
    log: DeliveryLog = field(init=False, repr=False)
    engine: DeliveryEngine = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Build the dispatch components from settings."""
        if self.rate_limiter is None:
            self.rate_limiter = RateLimiter.from_settings(
                self.settings.default_rate_limit_per_hour,
                burst=self.settings.rate_limit_burst,
            )
        self.registry = EndpointRegistry(self.storage, self.settings)
        self.dispatcher = Dispatcher(self.settings, self.rate_limiter, client=self.http_client)
        self.scheduler = RetryScheduler(
            self.storage, self.settings.backoff, rng=self.rng, clock=self.clock
        )
        self.log = DeliveryLog(
            self.storage, retention_days=self.settings.retention_days, clock=self.clock
        )
        self.engine = DeliveryEngine(
            self.storage, self.registry, self.dispatcher, self.scheduler, self.settings
        )
        self.router = EventRouter(self.storage, sink=self.engine.enqueue, clock=self.clock)

    @classmethod
    def create(cls, settings: Settings | None = None) -> WebhookService:
        """Create a WebhookService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.

        Returns:
            Configured WebhookService instance.
        """
        if settings is None:
            settings = Settings()
        return cls(
            storage=CourierStorage(settings.database_url, echo=settings.database_echo),
            settings=settings,
        )

    async def initialize(self) -> None:
        """Initialize storage (create tables)."""
        await self.storage.initialize()

    async def start(self) -> None:
        """Start the delivery engine."""
        await self.engine.start()

    async def close(self) -> None:
        """Stop the engine and release the HTTP client and database."""
        await self.engine.stop()
        await self.dispatcher.close()
        await self.storage.close()

    async def __aenter__(self) -> WebhookService:
        """Async context manager entry."""
        await self.initialize()
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()


__all__ = ["WebhookService"]
