"""Endpoint management mixin for WebhookService."""

from __future__ import annotations

from typing import TYPE_CHECKING

from courier.logging import get_logger
from courier.models import (
    TEST_EVENT_TYPE,
    DeliveryAttempt,
    EndpointPatch,
    EndpointRegistration,
    EndpointStats,
    EndpointStatus,
    WebhookEndpoint,
)

from .models import EndpointDetail

if TYPE_CHECKING:
    from courier.webhooks import DeliveryEngine, DeliveryLog, EndpointRegistry, EventRouter

logger = get_logger(__name__)


class EndpointOpsMixin:
    """Mixin providing endpoint operations.

    Expects these attributes from the base class:
    - registry: EndpointRegistry
    - router: EventRouter
    - log: DeliveryLog
    - engine: DeliveryEngine
    """

    registry: EndpointRegistry
    router: EventRouter
    log: DeliveryLog
    engine: DeliveryEngine

    async def register_endpoint(self, registration: EndpointRegistration) -> WebhookEndpoint:
        """Validate and register a new endpoint.

        Raises:
            ValidationError: On malformed input or a duplicate id.
        """
        return await self.registry.register(registration)

    async def update_endpoint(self, endpoint_id: str, patch: EndpointPatch) -> WebhookEndpoint:
        return await self.registry.update(endpoint_id, patch)

    async def disable_endpoint(self, endpoint_id: str) -> WebhookEndpoint:
        """Disable an endpoint and pause its deliveries.

        Queued and in-flight deliveries go back to Pending; none are failed.
        """
        endpoint = await self.registry.disable(endpoint_id)
        await self.engine.pause_endpoint(endpoint_id)
        return endpoint

    async def enable_endpoint(self, endpoint_id: str) -> WebhookEndpoint:
        """Re-activate an endpoint, reset its failure counter and resume its Pending deliveries."""
        endpoint = await self.registry.enable(endpoint_id)
        await self.engine.resume_endpoint(endpoint_id)
        return endpoint

    async def list_endpoints(self, status: EndpointStatus | None = None) -> list[WebhookEndpoint]:
        return await self.registry.list(status)

    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint:
        return await self.registry.get(endpoint_id)

    async def endpoint_detail(self, endpoint_id: str) -> EndpointDetail:
        endpoint = await self.registry.get(endpoint_id)
        return EndpointDetail(endpoint=endpoint, stats=await self.log.endpoint_stats(endpoint_id))

    async def endpoint_stats(self, endpoint_id: str) -> EndpointStats:
        """Success and failure counts for an existing endpoint."""
        await self.registry.get(endpoint_id)
        return await self.log.endpoint_stats(endpoint_id)

    async def test_endpoint(self, endpoint_id: str) -> DeliveryAttempt:
        """Queue a ``test.ping`` delivery to one endpoint.

        The ping goes through the normal pipeline (signing, rate limit,
        retries) whether or not the endpoint subscribes to ``test.ping``.

        Raises:
            NotFoundError: If the endpoint does not exist.
            ValidationError: If the endpoint is not Active.
        """
        endpoint = await self.registry.get(endpoint_id)
        payload = {
            "event": TEST_EVENT_TYPE,
            "endpoint_id": endpoint.id,
            "timestamp": self.router.clock().isoformat(),
            "data": {"message": "This is a test delivery"},
        }
        delivery = await self.router.publish_to(endpoint, TEST_EVENT_TYPE, payload)
        logger.info("Test delivery queued", endpoint_id=endpoint_id, delivery_id=delivery.id)
        return delivery
