"""SQL storage client for Courier.

This module provides the main CourierStorage class that combines
all storage operations through mixins.

Example:
    ```python
    from courier.storage import CourierStorage

    async with CourierStorage("sqlite+aiosqlite:///./courier.db") as storage:
        await storage.create_endpoint(endpoint)
        pending = await storage.pending_deliveries(endpoint.id)
    ```
"""

from __future__ import annotations

from typing import Any

from .base import StorageBase
from .deliveries import DeliveryMixin
from .endpoints import EndpointMixin
from .log import DeliveryLogMixin


class CourierStorage(EndpointMixin, DeliveryMixin, DeliveryLogMixin, StorageBase):
    """Async SQL storage for endpoints, deliveries and the delivery log.

    This class combines functionality from multiple mixins:
    - EndpointMixin: create_endpoint, get_endpoint, list_endpoints,
      record_endpoint_outcome, set_endpoint_status, ...
    - DeliveryMixin: create_deliveries, save_delivery, list_deliveries,
      due_retries, revert_to_pending, purge_terminal_before, ...
    - DeliveryLogMixin: delivery_history, recent_log, endpoint_stats
    """

    async def __aenter__(self) -> CourierStorage:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
