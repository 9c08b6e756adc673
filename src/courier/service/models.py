"""Result models returned by WebhookService."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from courier.models import DeliveryAttempt, EndpointStats, WebhookEndpoint


class PublishResult(BaseModel):
    """Deliveries created by one published event."""

    model_config = ConfigDict(extra="forbid")

    event_id: str | None = Field(description="Shared id of the fan-out (None if nothing matched)")
    event_type: str
    deliveries: list[DeliveryAttempt] = Field(default_factory=list)

    @property
    def endpoint_ids(self) -> list[str]:
        return [d.endpoint_id for d in self.deliveries]


class EndpointDetail(BaseModel):
    """An endpoint together with its delivery statistics."""

    model_config = ConfigDict(extra="forbid")

    endpoint: WebhookEndpoint
    stats: EndpointStats


__all__ = ["EndpointDetail", "PublishResult"]
