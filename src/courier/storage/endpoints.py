"""Endpoint storage operations for Courier.

Provides methods to store, retrieve, and update webhook endpoints,
including the transactional failure-counter update behind auto-disable.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update

from courier.exceptions import NotFoundError, ValidationError
from courier.models import EndpointStatus, WebhookEndpoint, ensure_utc, utc_now

from .retry import storage_retry
from .tables import EndpointRow


# Columns an endpoint update may change
_CONFIG_COLUMNS = frozenset(
    {
        "name",
        "description",
        "url",
        "secret",
        "subscribed_events",
        "timeout",
        "max_retries",
        "custom_headers",
        "rate_limit_per_hour",
        "updated_at",
    }
)


def endpoint_to_values(endpoint: WebhookEndpoint) -> dict[str, Any]:
    return {
        "id": endpoint.id,
        "name": endpoint.name,
        "description": endpoint.description,
        "url": endpoint.url,
        "secret": endpoint.secret,
        "subscribed_events": sorted(endpoint.subscribed_events),
        "timeout": endpoint.timeout,
        "max_retries": endpoint.max_retries,
        "custom_headers": dict(endpoint.custom_headers),
        "rate_limit_per_hour": endpoint.rate_limit_per_hour,
        "status": endpoint.status.value,
        "consecutive_failures": endpoint.consecutive_failures,
        "created_at": endpoint.created_at,
        "updated_at": endpoint.updated_at,
        "last_triggered_at": endpoint.last_triggered_at,
    }


def row_to_endpoint(row: EndpointRow) -> WebhookEndpoint:
    return WebhookEndpoint(
        id=row.id,
        name=row.name,
        description=row.description,
        url=row.url,
        secret=row.secret,
        subscribed_events=set(row.subscribed_events or []),
        timeout=row.timeout,
        max_retries=row.max_retries,
        custom_headers=dict(row.custom_headers or {}),
        rate_limit_per_hour=row.rate_limit_per_hour,
        status=EndpointStatus(row.status),
        consecutive_failures=row.consecutive_failures,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
        last_triggered_at=ensure_utc(row.last_triggered_at),
    )


class EndpointMixin:
    """Mixin providing endpoint operations for CourierStorage.

    This mixin expects the following from the base class:
    - transaction() -> async context manager yielding an AsyncSession
    """

    transaction: Any

    @storage_retry
    async def create_endpoint(self, endpoint: WebhookEndpoint) -> WebhookEndpoint:
        """Insert a new endpoint.

        Raises:
            ValidationError: If an endpoint with the same id exists.
        """
        async with self.transaction() as session:
            if await session.get(EndpointRow, endpoint.id) is not None:
                raise ValidationError("id", f"endpoint {endpoint.id} already exists")
            session.add(EndpointRow(**endpoint_to_values(endpoint)))
        return endpoint

    @storage_retry
    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        async with self.transaction() as session:
            row = await session.get(EndpointRow, endpoint_id)
            return row_to_endpoint(row) if row is not None else None

    @storage_retry
    async def list_endpoints(self, status: EndpointStatus | None = None) -> list[WebhookEndpoint]:
        """List endpoints, oldest first, optionally filtered by status."""
        stmt = select(EndpointRow).order_by(EndpointRow.created_at, EndpointRow.id)
        if status is not None:
            stmt = stmt.where(EndpointRow.status == status.value)
        async with self.transaction() as session:
            result = await session.execute(stmt)
            return [row_to_endpoint(row) for row in result.scalars().all()]

    @storage_retry
    async def save_endpoint(self, endpoint: WebhookEndpoint) -> WebhookEndpoint:
        """Write an endpoint's configuration columns.

        Status, the failure counter and the creation and trigger times are
        owned by the lifecycle operations and are left as stored.

        Returns:
            The endpoint as stored after the write.

        Raises:
            NotFoundError: If the endpoint does not exist.
        """
        values = {
            key: value
            for key, value in endpoint_to_values(endpoint).items()
            if key in _CONFIG_COLUMNS
        }
        async with self.transaction() as session:
            result = await session.execute(
                update(EndpointRow).where(EndpointRow.id == endpoint.id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("endpoint", endpoint.id)
            row = await session.get(EndpointRow, endpoint.id, populate_existing=True)
            return row_to_endpoint(row)

    @storage_retry
    async def set_endpoint_status(
        self,
        endpoint_id: str,
        status: EndpointStatus,
        reset_failures: bool = False,
    ) -> WebhookEndpoint:
        """Change an endpoint's status in one transaction.

        Raises:
            NotFoundError: If the endpoint does not exist.
        """
        async with self.transaction() as session:
            row = await session.get(EndpointRow, endpoint_id)
            if row is None:
                raise NotFoundError("endpoint", endpoint_id)
            row.status = status.value
            if reset_failures:
                row.consecutive_failures = 0
            row.updated_at = utc_now()
            return row_to_endpoint(row)

    @storage_retry
    async def record_endpoint_outcome(
        self,
        endpoint_id: str,
        success: bool,
        threshold: int,
    ) -> tuple[WebhookEndpoint, bool]:
        """Update the consecutive-failure counter and apply auto-disable.

        The read, increment and status change happen in one transaction.

        Args:
            endpoint_id: Endpoint whose delivery completed.
            success: Whether the attempt succeeded.
            threshold: Failures at which an Active endpoint is auto-disabled.

        Returns:
            The updated endpoint and whether this call auto-disabled it.

        Raises:
            NotFoundError: If the endpoint does not exist.
        """
        async with self.transaction() as session:
            row = await session.get(EndpointRow, endpoint_id)
            if row is None:
                raise NotFoundError("endpoint", endpoint_id)
            auto_disabled = False
            if success:
                row.consecutive_failures = 0
            else:
                row.consecutive_failures += 1
                if (
                    row.status == EndpointStatus.ACTIVE.value
                    and row.consecutive_failures >= threshold
                ):
                    row.status = EndpointStatus.AUTO_DISABLED.value
                    row.updated_at = utc_now()
                    auto_disabled = True
            return row_to_endpoint(row), auto_disabled

    @storage_retry
    async def touch_endpoints(self, endpoint_ids: list[str], at: datetime) -> None:
        """Set last_triggered_at on the given endpoints."""
        if not endpoint_ids:
            return
        async with self.transaction() as session:
            await session.execute(
                update(EndpointRow)
                .where(EndpointRow.id.in_(endpoint_ids))
                .values(last_triggered_at=at)
            )
