"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import random
import sys
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest

# Add tests directory to path so the fakes below can be imported by test modules
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from courier.config import Settings
from courier.models import EndpointRegistration
from courier.service import WebhookService
from courier.storage import CourierStorage
from courier.webhooks import RateLimiter

MEMORY_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Settable UTC clock for state transitions and retry due times."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeMonotonic:
    """Settable monotonic clock for token buckets."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class Receiver:
    """Scripted webhook receiver behind an httpx.MockTransport.

    Responses are taken from a per-URL script; once the script runs out the
    default status is returned. A script item may be an int status code, an
    exception instance to raise, or an async callable returning a Response.
    """

    def __init__(self, default_status: int = 200) -> None:
        self.default_status = default_status
        self.scripts: dict[str, list] = {}
        self.requests: list[httpx.Request] = []
        self.active: dict[str, int] = {}
        self.max_active: dict[str, int] = {}
        self.total_active = 0
        self.max_total_active = 0
        self.delay = 0.0

    def script(self, url: str, *items) -> None:
        self.scripts.setdefault(url, []).extend(items)

    def requests_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(request)
        self.active[url] = self.active.get(url, 0) + 1
        self.max_active[url] = max(self.max_active.get(url, 0), self.active[url])
        self.total_active += 1
        self.max_total_active = max(self.max_total_active, self.total_active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            script = self.scripts.get(url)
            item = script.pop(0) if script else self.default_status
            if isinstance(item, BaseException):
                raise item
            if callable(item):
                return await item(request)
            return httpx.Response(item, text="ok" if item < 400 else "error")
        finally:
            self.active[url] -= 1
            self.total_active -= 1


@pytest.fixture
def settings() -> Settings:
    """Settings for tests: in-memory database, timer effectively off."""
    return Settings(
        _env_file=None,
        env="test",
        database_url=MEMORY_URL,
        worker_count=4,
        poll_interval_seconds=3600.0,
        log_format="text",
    )


@pytest.fixture
async def storage() -> CourierStorage:
    """Initialized in-memory storage."""
    store = CourierStorage(MEMORY_URL)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def receiver() -> Receiver:
    return Receiver()


@pytest.fixture
async def http_client(receiver: Receiver) -> httpx.AsyncClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(receiver))
    yield client
    await client.aclose()


@pytest.fixture
async def service(
    storage: CourierStorage,
    settings: Settings,
    http_client: httpx.AsyncClient,
    clock: FakeClock,
    monotonic: FakeMonotonic,
) -> WebhookService:
    """Running WebhookService wired to the scripted receiver."""
    svc = WebhookService(
        storage=storage,
        settings=settings,
        http_client=http_client,
        rate_limiter=RateLimiter.from_settings(
            settings.default_rate_limit_per_hour, clock=monotonic
        ),
        rng=random.Random(7),
        clock=clock,
    )
    await svc.start()
    yield svc
    await svc.engine.stop()
    await svc.dispatcher.close()


@pytest.fixture
def make_registration() -> Callable[..., EndpointRegistration]:
    """Factory for endpoint registrations with test-friendly defaults."""

    def _make(url: str = "https://hooks.example.com/e1", **kwargs) -> EndpointRegistration:
        kwargs.setdefault("subscribed_events", {"user.created"})
        return EndpointRegistration(url=url, **kwargs)

    return _make
