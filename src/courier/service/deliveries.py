"""Event publishing and delivery inspection mixin for WebhookService."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from courier.exceptions import NotFoundError
from courier.models import DeliveryAttempt, DeliveryLogEntry, DeliveryStatus

from .models import PublishResult

if TYPE_CHECKING:
    from courier.storage import CourierStorage
    from courier.webhooks import (
        DeliveryEngine,
        DeliveryLog,
        EndpointRegistry,
        EventRouter,
        RetryScheduler,
    )


class DeliveryOpsMixin:
    """Mixin providing publish, replay and delivery queries.

    Expects these attributes from the base class:
    - storage: CourierStorage
    - registry: EndpointRegistry
    - router: EventRouter
    - scheduler: RetryScheduler
    - log: DeliveryLog
    - engine: DeliveryEngine
    """

    storage: CourierStorage
    registry: EndpointRegistry
    router: EventRouter
    scheduler: RetryScheduler
    log: DeliveryLog
    engine: DeliveryEngine

    async def publish(self, event_type: str, payload: Any) -> PublishResult:
        """Publish a domain event to every subscribed Active endpoint.

        Args:
            event_type: Event type, e.g. ``"user.created"``.
            payload: JSON-serializable value, or raw JSON bytes.

        Returns:
            The created deliveries, which are already queued for dispatch.

        Example:
            ```python
            async with WebhookService.create() as courier:
                result = await courier.publish("user.created", {"id": 42})
                print(f"Fanned out to {len(result.deliveries)} endpoints")
            ```
        """
        deliveries = await self.router.publish(event_type, payload)
        return PublishResult(
            event_id=deliveries[0].event_id if deliveries else None,
            event_type=event_type,
            deliveries=deliveries,
        )

    async def list_deliveries(
        self,
        endpoint_id: str | None = None,
        status: DeliveryStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        """List deliveries, newest first."""
        return await self.storage.list_deliveries(
            endpoint_id=endpoint_id, status=status, limit=limit, offset=offset
        )

    async def get_delivery(self, delivery_id: str) -> DeliveryAttempt:
        delivery = await self.storage.get_delivery(delivery_id)
        if delivery is None:
            raise NotFoundError("delivery", delivery_id)
        return delivery

    async def delivery_history(self, delivery_id: str) -> list[DeliveryLogEntry]:
        """Every recorded transition of one delivery, oldest first."""
        await self.get_delivery(delivery_id)
        return await self.log.history(delivery_id)

    async def recent_events(
        self,
        limit: int = 50,
        endpoint_id: str | None = None,
    ) -> list[DeliveryLogEntry]:
        return await self.log.recent(limit=limit, endpoint_id=endpoint_id)

    async def replay(self, delivery_id: str) -> DeliveryAttempt:
        """Re-send a dead-lettered delivery as a new record.

        The replay is queued right away if the endpoint is Active; otherwise
        it stays Pending until the endpoint is enabled.

        Raises:
            NotFoundError: If the delivery does not exist.
            ValidationError: If it is not DeadLettered.
        """
        replay = await self.scheduler.replay(delivery_id)
        endpoint = await self.registry.get(replay.endpoint_id)
        if endpoint.is_active:
            self.engine.enqueue(replay)
        return replay

    async def purge_expired(self) -> int:
        """Delete terminal deliveries past the retention period."""
        return await self.log.purge_expired()
