"""Endpoint registry: registration, updates and lifecycle status.

The registry validates endpoint configuration, applies the global defaults
from Settings and owns the consecutive-failure counter that drives
auto-disable. Pausing the delivery engine when an endpoint stops being
Active is the caller's job (see ``WebhookService``).
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from courier.config import Settings
from courier.exceptions import NotFoundError, ValidationError
from courier.logging import get_logger
from courier.models import (
    EndpointPatch,
    EndpointRegistration,
    EndpointStatus,
    WebhookEndpoint,
    generate_secret,
    utc_now,
)
from courier.storage import CourierStorage

from .signer import RESERVED_HEADERS

logger = get_logger(__name__)

_URL_ADAPTER = TypeAdapter(HttpUrl)
_HEADER_NAME = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")


def validate_url(url: str, require_https: bool) -> str:
    """Check that a URL is an absolute http(s) URL with a host.

    Returns:
        The stripped URL, unchanged otherwise.

    Raises:
        ValidationError: If the URL is malformed, or not https when required.
    """
    candidate = url.strip()
    try:
        parsed = _URL_ADAPTER.validate_python(candidate)
    except PydanticValidationError as e:
        raise ValidationError("url", f"malformed URL: {candidate!r}") from e
    if not parsed.host:
        raise ValidationError("url", "URL must include a host")
    if require_https and parsed.scheme != "https":
        raise ValidationError("url", "https:// is required")
    return candidate


def validate_events(events: set[str]) -> set[str]:
    cleaned = {event.strip() for event in events if event.strip()}
    if not cleaned:
        raise ValidationError("subscribed_events", "at least one event type is required")
    return cleaned


def validate_headers(headers: Mapping[str, str]) -> dict[str, str]:
    for name in headers:
        if not _HEADER_NAME.match(name):
            raise ValidationError("custom_headers", f"invalid header name: {name!r}")
        if name.lower() in RESERVED_HEADERS:
            raise ValidationError("custom_headers", f"header {name} is set by Courier")
    return dict(headers)


class EndpointRegistry:
    """Registered endpoints and their lifecycle.

    Args:
        storage: Backing store.
        settings: Supplies defaults, the HTTPS requirement and the
            auto-disable threshold.
    """

    def __init__(self, storage: CourierStorage, settings: Settings) -> None:
        self.storage = storage
        self.settings = settings

    async def register(self, config: EndpointRegistration) -> WebhookEndpoint:
        """Validate and store a new endpoint.

        Raises:
            ValidationError: On malformed input or a duplicate id.
        """
        endpoint = WebhookEndpoint(
            name=config.name,
            description=config.description,
            url=validate_url(config.url, self.settings.require_https),
            secret=(config.secret or "").strip() or generate_secret(),
            subscribed_events=validate_events(config.subscribed_events),
            timeout=config.timeout or self.settings.default_timeout_seconds,
            max_retries=(
                config.max_retries
                if config.max_retries is not None
                else self.settings.default_max_retries
            ),
            custom_headers=validate_headers(config.custom_headers),
            rate_limit_per_hour=config.rate_limit_per_hour,
        )
        if config.id is not None:
            if not config.id.strip():
                raise ValidationError("id", "must not be blank")
            endpoint.id = config.id.strip()

        await self.storage.create_endpoint(endpoint)
        logger.info(
            "Endpoint registered",
            endpoint_id=endpoint.id,
            url=endpoint.url,
            events=sorted(endpoint.subscribed_events),
        )
        return endpoint

    async def update(self, endpoint_id: str, patch: EndpointPatch) -> WebhookEndpoint:
        """Apply a partial update. Status is changed only via enable/disable.

        Raises:
            NotFoundError: If the endpoint does not exist.
            ValidationError: If the patched values are invalid.
        """
        endpoint = await self.get(endpoint_id)
        changes = patch.model_dump(exclude_unset=True)

        if "url" in changes and changes["url"] is not None:
            changes["url"] = validate_url(changes["url"], self.settings.require_https)
        if "subscribed_events" in changes and changes["subscribed_events"] is not None:
            changes["subscribed_events"] = validate_events(changes["subscribed_events"])
        if "custom_headers" in changes and changes["custom_headers"] is not None:
            changes["custom_headers"] = validate_headers(changes["custom_headers"])
        if "secret" in changes:
            changes["secret"] = (changes["secret"] or "").strip() or generate_secret()

        # Only these may be cleared with an explicit null
        nullable = {"description", "rate_limit_per_hour"}
        updates = {k: v for k, v in changes.items() if v is not None or k in nullable}

        # Status and failure counter are re-read from storage, not taken from the copy
        updated = await self.storage.save_endpoint(
            endpoint.model_copy(update={**updates, "updated_at": utc_now()})
        )
        logger.info("Endpoint updated", endpoint_id=endpoint_id, fields=sorted(updates))
        return updated

    async def disable(self, endpoint_id: str) -> WebhookEndpoint:
        """Operator disable. Historical deliveries are kept."""
        endpoint = await self.storage.set_endpoint_status(endpoint_id, EndpointStatus.DISABLED)
        logger.info("Endpoint disabled", endpoint_id=endpoint_id)
        return endpoint

    async def enable(self, endpoint_id: str) -> WebhookEndpoint:
        """Operator enable; also resets the consecutive-failure counter."""
        endpoint = await self.storage.set_endpoint_status(
            endpoint_id, EndpointStatus.ACTIVE, reset_failures=True
        )
        logger.info("Endpoint enabled", endpoint_id=endpoint_id)
        return endpoint

    async def get(self, endpoint_id: str) -> WebhookEndpoint:
        endpoint = await self.storage.get_endpoint(endpoint_id)
        if endpoint is None:
            raise NotFoundError("endpoint", endpoint_id)
        return endpoint

    async def list(self, status: EndpointStatus | None = None) -> list[WebhookEndpoint]:
        return await self.storage.list_endpoints(status=status)

    async def record_outcome(self, endpoint_id: str, success: bool) -> tuple[WebhookEndpoint, bool]:
        """Update the failure counter after a completed attempt.

        Returns:
            The endpoint and whether it was auto-disabled by this outcome.
        """
        endpoint, auto_disabled = await self.storage.record_endpoint_outcome(
            endpoint_id, success, self.settings.auto_disable_threshold
        )
        if auto_disabled:
            logger.warning(
                "Endpoint auto-disabled",
                endpoint_id=endpoint_id,
                consecutive_failures=endpoint.consecutive_failures,
                threshold=self.settings.auto_disable_threshold,
            )
        return endpoint, auto_disabled
