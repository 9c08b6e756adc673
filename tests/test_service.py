"""Tests for the WebhookService facade."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from courier.config import Settings
from courier.exceptions import NotFoundError, ValidationError
from courier.models import (
    TEST_EVENT_TYPE,
    DeliveryStatus,
    EndpointPatch,
    EndpointRegistration,
    EndpointStatus,
)
from courier.service import PublishResult, WebhookService

from conftest import FakeClock, Receiver

E1 = "https://hooks.example.com/e1"


class TestPublish:
    """Tests for publish()."""

    @pytest.mark.asyncio
    async def test_result_describes_fan_out(
        self, service: WebhookService, make_registration: Callable[..., EndpointRegistration]
    ) -> None:
        first = await service.register_endpoint(make_registration())
        second = await service.register_endpoint(make_registration("https://hooks.example.com/e2"))

        result = await service.publish("user.created", {"id": 1})

        assert isinstance(result, PublishResult)
        assert result.event_type == "user.created"
        assert result.event_id is not None
        assert sorted(result.endpoint_ids) == sorted([first.id, second.id])

    @pytest.mark.asyncio
    async def test_no_subscribers(self, service: WebhookService) -> None:
        result = await service.publish("nobody.cares", {})
        assert result.event_id is None
        assert result.deliveries == []

    @pytest.mark.asyncio
    async def test_rejects_unserializable_payload(
        self, service: WebhookService, make_registration: Callable[..., EndpointRegistration]
    ) -> None:
        await service.register_endpoint(make_registration())
        with pytest.raises(ValidationError):
            await service.publish("user.created", {"bad": object()})


class TestEndpointOps:
    """Tests for endpoint management through the service."""

    @pytest.mark.asyncio
    async def test_update_and_detail(
        self, service: WebhookService, make_registration: Callable[..., EndpointRegistration]
    ) -> None:
        endpoint = await service.register_endpoint(make_registration(name="CRM"))

        updated = await service.update_endpoint(endpoint.id, EndpointPatch(timeout=5.0))
        detail = await service.endpoint_detail(endpoint.id)

        assert updated.timeout == 5.0
        assert detail.endpoint.name == "CRM"
        assert detail.stats.success_count == 0

    @pytest.mark.asyncio
    async def test_list_by_status(
        self, service: WebhookService, make_registration: Callable[..., EndpointRegistration]
    ) -> None:
        active = await service.register_endpoint(make_registration())
        disabled = await service.register_endpoint(make_registration())
        await service.disable_endpoint(disabled.id)

        assert [e.id for e in await service.list_endpoints(EndpointStatus.ACTIVE)] == [active.id]
        assert len(await service.list_endpoints()) == 2

    @pytest.mark.asyncio
    async def test_stats_for_unknown_endpoint(self, service: WebhookService) -> None:
        with pytest.raises(NotFoundError):
            await service.endpoint_stats("whk_missing")

    @pytest.mark.asyncio
    async def test_enable_resets_failures(
        self,
        service: WebhookService,
        receiver: Receiver,
        make_registration: Callable[..., EndpointRegistration],
    ) -> None:
        endpoint = await service.register_endpoint(make_registration(max_retries=0))
        receiver.script(E1, 500)
        await service.publish("user.created", {})
        await service.engine.wait_idle()
        assert (await service.get_endpoint(endpoint.id)).consecutive_failures == 1

        await service.disable_endpoint(endpoint.id)
        enabled = await service.enable_endpoint(endpoint.id)

        assert enabled.status is EndpointStatus.ACTIVE
        assert enabled.consecutive_failures == 0


class TestTestEndpoint:
    """Tests for test_endpoint()."""

    @pytest.mark.asyncio
    async def test_sends_ping_without_subscription(
        self,
        service: WebhookService,
        receiver: Receiver,
        make_registration: Callable[..., EndpointRegistration],
    ) -> None:
        endpoint = await service.register_endpoint(make_registration())

        delivery = await service.test_endpoint(endpoint.id)
        await service.engine.wait_idle()

        assert delivery.event_type == TEST_EVENT_TYPE
        assert (await service.get_delivery(delivery.id)).status is DeliveryStatus.SUCCEEDED
        request = receiver.requests_to(E1)[0]
        assert request.headers["x-webhook-event"] == TEST_EVENT_TYPE
        assert b'"endpoint_id"' in request.content

    @pytest.mark.asyncio
    async def test_disabled_endpoint_rejected(
        self, service: WebhookService, make_registration: Callable[..., EndpointRegistration]
    ) -> None:
        endpoint = await service.register_endpoint(make_registration())
        await service.disable_endpoint(endpoint.id)
        with pytest.raises(ValidationError):
            await service.test_endpoint(endpoint.id)

    @pytest.mark.asyncio
    async def test_unknown_endpoint(self, service: WebhookService) -> None:
        with pytest.raises(NotFoundError):
            await service.test_endpoint("whk_missing")


class TestReplay:
    """Tests for replay()."""

    @pytest.mark.asyncio
    async def test_replay_is_delivered(
        self,
        service: WebhookService,
        receiver: Receiver,
        make_registration: Callable[..., EndpointRegistration],
    ) -> None:
        await service.register_endpoint(make_registration())
        receiver.script(E1, 410)
        result = await service.publish("user.created", {"id": 9})
        await service.engine.wait_idle()
        dead = await service.get_delivery(result.deliveries[0].id)
        assert dead.status is DeliveryStatus.DEAD_LETTERED

        replay = await service.replay(dead.id)
        await service.engine.wait_idle()

        delivered = await service.get_delivery(replay.id)
        assert delivered.status is DeliveryStatus.SUCCEEDED
        assert delivered.replay_of == dead.id
        assert delivered.event_id == dead.event_id
        requests = receiver.requests_to(E1)
        assert requests[0].content == requests[1].content
        assert requests[0].headers["x-webhook-delivery-id"] != requests[1].headers[
            "x-webhook-delivery-id"
        ]

    @pytest.mark.asyncio
    async def test_replay_waits_for_disabled_endpoint(
        self,
        service: WebhookService,
        receiver: Receiver,
        make_registration: Callable[..., EndpointRegistration],
    ) -> None:
        endpoint = await service.register_endpoint(make_registration())
        receiver.script(E1, 404)
        result = await service.publish("user.created", {})
        await service.engine.wait_idle()
        await service.disable_endpoint(endpoint.id)

        replay = await service.replay(result.deliveries[0].id)
        await service.engine.wait_idle()
        assert (await service.get_delivery(replay.id)).status is DeliveryStatus.PENDING

        await service.enable_endpoint(endpoint.id)
        await service.engine.wait_idle()
        assert (await service.get_delivery(replay.id)).status is DeliveryStatus.SUCCEEDED


class TestQueries:
    """Tests for history, stats and recent events."""

    @pytest.mark.asyncio
    async def test_history_and_stats(
        self,
        service: WebhookService,
        receiver: Receiver,
        make_registration: Callable[..., EndpointRegistration],
    ) -> None:
        endpoint = await service.register_endpoint(make_registration(max_retries=0))
        receiver.script(E1, 200, 500, 200, 200)
        for n in range(4):
            await service.publish("user.created", {"n": n})
        await service.engine.wait_idle()

        stats = await service.endpoint_stats(endpoint.id)
        assert stats.success_count == 3
        assert stats.failure_count == 1
        assert stats.success_rate == 75.0
        assert stats.last_triggered_at is not None

        recent = await service.recent_events(limit=5, endpoint_id=endpoint.id)
        assert len(recent) == 5
        assert recent[0].recorded_at >= recent[-1].recorded_at

    @pytest.mark.asyncio
    async def test_history_for_unknown_delivery(self, service: WebhookService) -> None:
        with pytest.raises(NotFoundError):
            await service.delivery_history("dlv_missing")

    @pytest.mark.asyncio
    async def test_list_deliveries_filters(
        self,
        service: WebhookService,
        receiver: Receiver,
        make_registration: Callable[..., EndpointRegistration],
    ) -> None:
        endpoint = await service.register_endpoint(make_registration(max_retries=0))
        receiver.script(E1, 404)
        await service.publish("user.created", {"n": 1})
        await service.publish("user.created", {"n": 2})
        await service.engine.wait_idle()

        dead = await service.list_deliveries(
            endpoint_id=endpoint.id, status=DeliveryStatus.DEAD_LETTERED
        )
        succeeded = await service.list_deliveries(status=DeliveryStatus.SUCCEEDED)
        assert len(dead) == 1
        assert len(succeeded) == 1
        assert len(await service.list_deliveries(limit=1)) == 1


class TestRetention:
    """Tests for purge_expired()."""

    @pytest.mark.asyncio
    async def test_purges_old_terminal_deliveries(
        self,
        service: WebhookService,
        clock: FakeClock,
        make_registration: Callable[..., EndpointRegistration],
    ) -> None:
        await service.register_endpoint(make_registration())
        old = await service.publish("user.created", {"n": 1})
        await service.engine.wait_idle()

        clock.advance(31 * 86400)
        fresh = await service.publish("user.created", {"n": 2})
        await service.engine.wait_idle()

        assert await service.purge_expired() == 1
        with pytest.raises(NotFoundError):
            await service.get_delivery(old.deliveries[0].id)
        assert (await service.get_delivery(fresh.deliveries[0].id)).status is (
            DeliveryStatus.SUCCEEDED
        )


class TestLifecycle:
    """Tests for create() and the async context manager."""

    @pytest.mark.asyncio
    async def test_context_manager(self) -> None:
        settings = Settings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")
        async with WebhookService.create(settings) as courier:
            assert courier.engine.running
            assert await courier.list_endpoints() == []
        assert not courier.engine.running
