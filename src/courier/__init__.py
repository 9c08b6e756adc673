"""Courier: webhook dispatch and retry engine.

Delivers domain events to registered HTTP endpoints with HMAC signatures,
per-endpoint ordering, exponential backoff, rate limiting, auto-disable of
failing endpoints and an append-only delivery log.

Quick Start:
    from courier.models import EndpointRegistration
    from courier.service import WebhookService

    async with WebhookService.create() as courier:
        await courier.register_endpoint(
            EndpointRegistration(
                url="https://example.com/hooks",
                subscribed_events={"user.created"},
            )
        )
        await courier.publish("user.created", {"id": 42})

Delivery States:
    - Pending: created, waiting for its endpoint's worker
    - InFlight: HTTP request in progress (at most one per endpoint)
    - RetryWait: failed with a retryable outcome, waiting out its backoff
    - Succeeded / DeadLettered: terminal
"""

__version__ = "0.1.0"

# Configuration
from .config import BackoffSettings, Settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    CourierError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryAttempt,
    DeliveryLogEntry,
    DeliveryStatus,
    EndpointPatch,
    EndpointRegistration,
    EndpointStats,
    EndpointStatus,
    Outcome,
    OutcomeKind,
    WebhookEndpoint,
)

# Service
from .service import PublishResult, WebhookService

# Receivers
from .webhooks.signer import sign, verify_signature

__all__ = [
    "__version__",
    # Configuration
    "BackoffSettings",
    "Settings",
    # Exceptions
    "ConfigurationError",
    "CourierError",
    "InvalidTransitionError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    # Logging
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
    # Models
    "DeliveryAttempt",
    "DeliveryLogEntry",
    "DeliveryStatus",
    "EndpointPatch",
    "EndpointRegistration",
    "EndpointStats",
    "EndpointStatus",
    "Outcome",
    "OutcomeKind",
    "WebhookEndpoint",
    # Service
    "PublishResult",
    "WebhookService",
    # Signatures
    "sign",
    "verify_signature",
]
