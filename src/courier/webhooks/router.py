"""Event fan-out: one delivery record per matching endpoint."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import pydantic_core

from courier.exceptions import ValidationError
from courier.logging import get_logger
from courier.models import (
    DeliveryAttempt,
    EndpointStatus,
    WebhookEndpoint,
    generate_id,
    utc_now,
)
from courier.storage import CourierStorage

logger = get_logger(__name__)

DeliverySink = Callable[[DeliveryAttempt], None]


def encode_payload(payload: Any) -> bytes:
    """Serialize a payload to JSON bytes.

    Bytes are taken as already-encoded JSON and stored unchanged once
    they parse.
    """
    if isinstance(payload, bytes | bytearray):
        try:
            pydantic_core.from_json(payload)
        except ValueError as e:
            raise ValidationError("payload", f"invalid JSON: {e}") from e
        return bytes(payload)
    try:
        return pydantic_core.to_json(payload)
    except pydantic_core.PydanticSerializationError as e:
        raise ValidationError("payload", f"not JSON serializable: {e}") from e


class EventRouter:
    """Creates Pending deliveries for published events.

    Args:
        storage: Backing store.
        sink: Called with each new delivery after it is committed, typically
            ``DeliveryEngine.enqueue``. Without a sink the records stay
            Pending until the engine starts.
        clock: Source of creation timestamps.
    """

    def __init__(
        self,
        storage: CourierStorage,
        sink: DeliverySink | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.sink = sink
        self.clock = clock

    async def publish(self, event_type: str, payload: Any) -> list[DeliveryAttempt]:
        """Fan an event out to every Active endpoint subscribed to it.

        The payload is serialized once and the same bytes are stored on
        every record.

        Returns:
            The created deliveries, in endpoint registration order.
        """
        if not event_type or not event_type.strip():
            raise ValidationError("event_type", "must not be blank")
        endpoints = [
            endpoint
            for endpoint in await self.storage.list_endpoints(status=EndpointStatus.ACTIVE)
            if endpoint.subscribes_to(event_type)
        ]
        return await self._fan_out(event_type, encode_payload(payload), endpoints)

    async def publish_to(
        self,
        endpoint: WebhookEndpoint,
        event_type: str,
        payload: Any,
    ) -> DeliveryAttempt:
        """Create a delivery for one endpoint regardless of its subscriptions.

        Raises:
            ValidationError: If the endpoint is not Active.
        """
        if not endpoint.is_active:
            raise ValidationError("endpoint", f"endpoint {endpoint.id} is {endpoint.status.value}")
        (delivery,) = await self._fan_out(event_type, encode_payload(payload), [endpoint])
        return delivery

    async def _fan_out(
        self,
        event_type: str,
        body: bytes,
        endpoints: list[WebhookEndpoint],
    ) -> list[DeliveryAttempt]:
        event_id = generate_id("evt")
        if not endpoints:
            logger.debug("No endpoints subscribed", event_type=event_type, event_id=event_id)
            return []

        now = self.clock()
        deliveries = [
            DeliveryAttempt(
                endpoint_id=endpoint.id,
                event_id=event_id,
                event_type=event_type,
                payload=body,
                created_at=now,
                updated_at=now,
            )
            for endpoint in endpoints
        ]
        await self.storage.create_deliveries(deliveries)
        await self.storage.touch_endpoints([e.id for e in endpoints], now)

        if self.sink is not None:
            for delivery in deliveries:
                self.sink(delivery)

        logger.info(
            "Event published",
            event_type=event_type,
            event_id=event_id,
            deliveries=len(deliveries),
        )
        return deliveries
