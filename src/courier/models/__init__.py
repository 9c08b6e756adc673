"""Data models for Courier.

Endpoints:
    - WebhookEndpoint: Registered endpoint configuration and status
    - EndpointRegistration / EndpointPatch: Management inputs
    - EndpointStatus: Active, Disabled, AutoDisabled

Deliveries:
    - DeliveryAttempt: One event delivered to one endpoint
    - DeliveryStatus: Closed state machine for deliveries
    - Outcome / OutcomeKind: Classified result of one dispatch attempt

Audit:
    - DeliveryLogEntry: Append-only transition record
    - EndpointStats: Counters derived from the log
"""

from .base import ensure_utc, generate_id, utc_now
from .delivery import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    DeliveryAttempt,
    DeliveryStatus,
    Outcome,
    OutcomeKind,
)
from .endpoint import (
    TEST_EVENT_TYPE,
    EndpointPatch,
    EndpointRegistration,
    EndpointStatus,
    WebhookEndpoint,
    generate_secret,
)
from .log import DeliveryLogEntry, EndpointStats

__all__ = [
    # Helpers
    "ensure_utc",
    "generate_id",
    "generate_secret",
    "utc_now",
    # Endpoints
    "TEST_EVENT_TYPE",
    "EndpointPatch",
    "EndpointRegistration",
    "EndpointStatus",
    "WebhookEndpoint",
    # Deliveries
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "DeliveryAttempt",
    "DeliveryStatus",
    "Outcome",
    "OutcomeKind",
    # Audit
    "DeliveryLogEntry",
    "EndpointStats",
]
