"""Courier service layer.

Provides the high-level WebhookService for managing endpoints and
publishing events.

Example:
    ```python
    from courier.service import WebhookService

    async with WebhookService.create() as courier:
        result = await courier.publish("donation.received", {"amount": 25})
        for delivery in result.deliveries:
            print(delivery.endpoint_id, delivery.status)
    ```
"""

from .base import WebhookService
from .models import EndpointDetail, PublishResult

__all__ = [
    "EndpointDetail",
    "PublishResult",
    "WebhookService",
]
