"""FastAPI router for Courier API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from courier import __version__
from courier.exceptions import CourierError
from courier.models import DeliveryStatus, EndpointPatch, EndpointRegistration, EndpointStatus
from courier.service import WebhookService

from .helpers import (
    delivery_to_response,
    endpoint_to_response,
    log_entry_to_response,
    stats_to_response,
)
from .schemas import (
    DeliveryHistoryResponse,
    DeliveryListResponse,
    DeliveryResponse,
    EndpointDetailResponse,
    EndpointListResponse,
    EndpointResponse,
    EndpointStatsResponse,
    HealthResponse,
    PublishRequest,
    PublishResponse,
    PurgeResponse,
    RecentEventsResponse,
    RegisterEndpointRequest,
    UpdateEndpointRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: WebhookService | None = None


def set_service(service: WebhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> WebhookService:
    """Dependency to get the WebhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[WebhookService, Depends(get_service)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health.

    Healthy when storage is connected and the delivery engine is running;
    degraded when only storage is available.
    """
    if _service is None:
        return HealthResponse(status="unhealthy", version=__version__, storage_connected=False)

    engine_running = _service.engine.running
    return HealthResponse(
        status="healthy" if engine_running else "degraded",
        version=__version__,
        storage_connected=True,
        engine_running=engine_running,
    )


# Endpoints


@router.post(
    "/endpoints",
    response_model=EndpointResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["endpoints"],
)
async def register_endpoint(
    request: RegisterEndpointRequest,
    service: ServiceDep,
) -> EndpointResponse:
    """Register a webhook endpoint.

    The full signing secret is returned only in this response.
    """
    try:
        endpoint = await service.register_endpoint(
            EndpointRegistration(
                id=request.id,
                name=request.name,
                description=request.description,
                url=request.url,
                secret=request.secret,
                subscribed_events=set(request.events),
                timeout=request.timeout,
                max_retries=request.max_retries,
                custom_headers=request.headers,
                rate_limit_per_hour=request.rate_limit_per_hour,
            )
        )
    except CourierError:
        raise
    except Exception as e:
        logger.exception("Failed to register endpoint")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred while registering the endpoint",
        ) from e
    return endpoint_to_response(endpoint, include_secret=True)


@router.get("/endpoints", response_model=EndpointListResponse, tags=["endpoints"])
async def list_endpoints(
    service: ServiceDep,
    endpoint_status: Annotated[EndpointStatus | None, Query(alias="status")] = None,
) -> EndpointListResponse:
    """List endpoints, oldest first."""
    endpoints = await service.list_endpoints(endpoint_status)
    return EndpointListResponse(
        endpoints=[endpoint_to_response(e) for e in endpoints],
        count=len(endpoints),
    )


@router.get("/endpoints/{endpoint_id}", response_model=EndpointDetailResponse, tags=["endpoints"])
async def get_endpoint(endpoint_id: str, service: ServiceDep) -> EndpointDetailResponse:
    """Get an endpoint together with its delivery statistics."""
    detail = await service.endpoint_detail(endpoint_id)
    return EndpointDetailResponse(
        endpoint=endpoint_to_response(detail.endpoint),
        stats=stats_to_response(detail.stats),
    )


@router.patch("/endpoints/{endpoint_id}", response_model=EndpointResponse, tags=["endpoints"])
async def update_endpoint(
    endpoint_id: str,
    request: UpdateEndpointRequest,
    service: ServiceDep,
) -> EndpointResponse:
    """Partially update an endpoint."""
    changes = request.model_dump(exclude_unset=True)
    if "events" in changes:
        events = changes.pop("events")
        changes["subscribed_events"] = set(events) if events is not None else None
    if "headers" in changes:
        changes["custom_headers"] = changes.pop("headers")
    endpoint = await service.update_endpoint(endpoint_id, EndpointPatch(**changes))
    return endpoint_to_response(endpoint)


@router.post(
    "/endpoints/{endpoint_id}/enable", response_model=EndpointResponse, tags=["endpoints"]
)
async def enable_endpoint(endpoint_id: str, service: ServiceDep) -> EndpointResponse:
    """Re-activate an endpoint and resume its pending deliveries."""
    return endpoint_to_response(await service.enable_endpoint(endpoint_id))


@router.post(
    "/endpoints/{endpoint_id}/disable", response_model=EndpointResponse, tags=["endpoints"]
)
async def disable_endpoint(endpoint_id: str, service: ServiceDep) -> EndpointResponse:
    """Disable an endpoint; its deliveries are paused, not failed."""
    return endpoint_to_response(await service.disable_endpoint(endpoint_id))


@router.get(
    "/endpoints/{endpoint_id}/stats", response_model=EndpointStatsResponse, tags=["endpoints"]
)
async def endpoint_stats(endpoint_id: str, service: ServiceDep) -> EndpointStatsResponse:
    """Success count, failure count, success rate and last trigger time."""
    return stats_to_response(await service.endpoint_stats(endpoint_id))


@router.post(
    "/endpoints/{endpoint_id}/test",
    response_model=DeliveryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["endpoints"],
)
async def test_endpoint(endpoint_id: str, service: ServiceDep) -> DeliveryResponse:
    """Queue a test.ping delivery to the endpoint."""
    return delivery_to_response(await service.test_endpoint(endpoint_id))


# Events and deliveries


@router.post(
    "/events",
    response_model=PublishResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["events"],
)
async def publish_event(request: PublishRequest, service: ServiceDep) -> PublishResponse:
    """Publish an event to every subscribed Active endpoint."""
    try:
        result = await service.publish(request.event_type, request.payload)
    except CourierError:
        raise
    except Exception as e:
        logger.exception("Failed to publish event")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred while publishing the event",
        ) from e
    return PublishResponse(
        event_id=result.event_id,
        event_type=result.event_type,
        deliveries=[delivery_to_response(d) for d in result.deliveries],
        count=len(result.deliveries),
    )


@router.get("/events/recent", response_model=RecentEventsResponse, tags=["events"])
async def recent_events(
    service: ServiceDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    endpoint_id: str | None = None,
) -> RecentEventsResponse:
    """Most recent delivery log entries, newest first."""
    entries = await service.recent_events(limit=limit, endpoint_id=endpoint_id)
    return RecentEventsResponse(
        entries=[log_entry_to_response(e) for e in entries],
        count=len(entries),
    )


@router.get("/deliveries", response_model=DeliveryListResponse, tags=["deliveries"])
async def list_deliveries(
    service: ServiceDep,
    endpoint_id: str | None = None,
    delivery_status: Annotated[DeliveryStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeliveryListResponse:
    """List deliveries, newest first, filtered by endpoint and/or status."""
    deliveries = await service.list_deliveries(
        endpoint_id=endpoint_id, status=delivery_status, limit=limit, offset=offset
    )
    return DeliveryListResponse(
        deliveries=[delivery_to_response(d) for d in deliveries],
        count=len(deliveries),
    )


@router.get("/deliveries/{delivery_id}", response_model=DeliveryResponse, tags=["deliveries"])
async def get_delivery(delivery_id: str, service: ServiceDep) -> DeliveryResponse:
    return delivery_to_response(await service.get_delivery(delivery_id))


@router.get(
    "/deliveries/{delivery_id}/history",
    response_model=DeliveryHistoryResponse,
    tags=["deliveries"],
)
async def delivery_history(delivery_id: str, service: ServiceDep) -> DeliveryHistoryResponse:
    """Every recorded transition of a delivery, oldest first."""
    entries = await service.delivery_history(delivery_id)
    return DeliveryHistoryResponse(
        delivery_id=delivery_id,
        entries=[log_entry_to_response(e) for e in entries],
    )


@router.post(
    "/deliveries/{delivery_id}/replay",
    response_model=DeliveryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["deliveries"],
)
async def replay_delivery(delivery_id: str, service: ServiceDep) -> DeliveryResponse:
    """Replay a dead-lettered delivery as a new Pending record."""
    return delivery_to_response(await service.replay(delivery_id))


@router.post("/maintenance/purge", response_model=PurgeResponse, tags=["system"])
async def purge_expired(service: ServiceDep) -> PurgeResponse:
    """Delete terminal deliveries older than the retention period."""
    return PurgeResponse(removed=await service.purge_expired())
