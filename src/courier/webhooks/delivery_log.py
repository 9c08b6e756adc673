"""Read side of the append-only delivery log, plus retention."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from courier.logging import get_logger
from courier.models import DeliveryLogEntry, EndpointStats, utc_now
from courier.storage import CourierStorage

logger = get_logger(__name__)


class DeliveryLog:
    """Queries over the delivery log.

    Entries are written by the storage layer in the same transaction as the
    delivery change they describe, so this class only reads and purges.
    """

    def __init__(
        self,
        storage: CourierStorage,
        retention_days: int = 30,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.storage = storage
        self.retention_days = retention_days
        self.clock = clock

    async def endpoint_stats(self, endpoint_id: str) -> EndpointStats:
        return await self.storage.endpoint_stats(endpoint_id)

    async def last_triggered(self, endpoint_id: str) -> datetime | None:
        stats = await self.storage.endpoint_stats(endpoint_id)
        return stats.last_triggered_at

    async def recent(self, limit: int = 50, endpoint_id: str | None = None) -> list[DeliveryLogEntry]:
        return await self.storage.recent_log(limit=limit, endpoint_id=endpoint_id)

    async def history(self, delivery_id: str) -> list[DeliveryLogEntry]:
        return await self.storage.delivery_history(delivery_id)

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete terminal deliveries older than the retention period.

        Returns:
            Number of deliveries removed.
        """
        cutoff = (now or self.clock()) - timedelta(days=self.retention_days)
        removed = await self.storage.purge_terminal_before(cutoff)
        if removed:
            logger.info("Purged expired deliveries", removed=removed, cutoff=cutoff.isoformat())
        return removed
