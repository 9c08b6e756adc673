"""Webhook dispatch components.

- EndpointRegistry: endpoint validation, lifecycle and auto-disable
- EventRouter: fans published events out into delivery records
- Dispatcher: signed HTTP POST and outcome classification
- RetryScheduler: state machine transitions, backoff and replay
- DeliveryLog: audit trail queries and retention
- RateLimiter: per-endpoint token buckets
- DeliveryEngine: worker pool serving per-endpoint FIFOs
"""

from .backoff import base_delay, compute_backoff
from .delivery_log import DeliveryLog
from .dispatcher import Dispatcher, classify_status
from .engine import DeliveryEngine
from .rate_limit import RateLimit, RateLimiter, TokenBucket
from .registry import EndpointRegistry, validate_url
from .router import EventRouter, encode_payload
from .scheduler import RetryScheduler
from .signer import build_headers, sign, verify_signature

__all__ = [
    "DeliveryEngine",
    "DeliveryLog",
    "Dispatcher",
    "EndpointRegistry",
    "EventRouter",
    "RateLimit",
    "RateLimiter",
    "RetryScheduler",
    "TokenBucket",
    "base_delay",
    "build_headers",
    "classify_status",
    "compute_backoff",
    "encode_payload",
    "sign",
    "validate_url",
    "verify_signature",
]
