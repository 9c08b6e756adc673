"""HMAC-SHA256 delivery signatures.

The signature covers the decimal unix timestamp immediately followed by the
raw request body, so receivers can reject replays by checking the
timestamp. Courier itself never enforces a tolerance window.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_ID_HEADER = "X-Webhook-Delivery-Id"

RESERVED_HEADERS = frozenset(
    name.lower()
    for name in (
        "Content-Type",
        "Content-Length",
        "Host",
        SIGNATURE_HEADER,
        TIMESTAMP_HEADER,
        EVENT_HEADER,
        DELIVERY_ID_HEADER,
    )
)


def sign(secret: str, timestamp: int, payload: bytes) -> str:
    """Compute the hex HMAC-SHA256 signature of a delivery.

    Args:
        secret: Endpoint signing secret.
        timestamp: Unix seconds sent in the timestamp header.
        payload: Raw request body.

    Returns:
        Lowercase hex digest.
    """
    message = str(timestamp).encode("ascii") + payload
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, timestamp: int, payload: bytes, signature: str) -> bool:
    """Verify a delivery signature using a constant-time comparison."""
    return hmac.compare_digest(sign(secret, timestamp, payload), signature)


def build_headers(
    *,
    secret: str,
    timestamp: int,
    payload: bytes,
    event_type: str,
    delivery_id: str,
    custom_headers: Mapping[str, str] | None = None,
    include_signature: bool = True,
) -> dict[str, str]:
    """Assemble the outbound headers for one attempt.

    Custom headers come first; the protocol headers are applied last and
    cannot be overridden.
    """
    headers: dict[str, str] = {}
    for name, value in (custom_headers or {}).items():
        if name.lower() not in RESERVED_HEADERS:
            headers[name] = value
    headers["Content-Type"] = "application/json"
    headers[TIMESTAMP_HEADER] = str(timestamp)
    headers[EVENT_HEADER] = event_type
    headers[DELIVERY_ID_HEADER] = delivery_id
    if include_signature:
        headers[SIGNATURE_HEADER] = sign(secret, timestamp, payload)
    return headers
