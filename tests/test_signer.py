"""Tests for delivery signatures and outbound headers."""

from __future__ import annotations

import hashlib
import hmac

from courier.webhooks.signer import (
    DELIVERY_ID_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    build_headers,
    sign,
    verify_signature,
)

SECRET = "whsec_test_secret"
PAYLOAD = b'{"id":42,"email":"a@example.com"}'


class TestSign:
    """Tests for sign()."""

    def test_deterministic(self) -> None:
        """Same inputs always produce the same signature."""
        assert sign(SECRET, 1700000000, PAYLOAD) == sign(SECRET, 1700000000, PAYLOAD)

    def test_matches_hmac_over_timestamp_then_body(self) -> None:
        """Signature is HMAC-SHA256 of the decimal timestamp followed by the body."""
        expected = hmac.new(
            SECRET.encode(), b"1700000000" + PAYLOAD, hashlib.sha256
        ).hexdigest()
        assert sign(SECRET, 1700000000, PAYLOAD) == expected

    def test_hex_digest_format(self) -> None:
        signature = sign(SECRET, 1, PAYLOAD)
        assert len(signature) == 64
        assert all(c in "0123456789abcdef" for c in signature)

    def test_timestamp_changes_signature(self) -> None:
        assert sign(SECRET, 1700000000, PAYLOAD) != sign(SECRET, 1700000001, PAYLOAD)

    def test_secret_changes_signature(self) -> None:
        assert sign(SECRET, 1, PAYLOAD) != sign("whsec_other", 1, PAYLOAD)

    def test_payload_changes_signature(self) -> None:
        assert sign(SECRET, 1, PAYLOAD) != sign(SECRET, 1, PAYLOAD + b" ")


class TestVerifySignature:
    """Tests for verify_signature()."""

    def test_accepts_valid_signature(self) -> None:
        signature = sign(SECRET, 1700000000, PAYLOAD)
        assert verify_signature(SECRET, 1700000000, PAYLOAD, signature) is True

    def test_rejects_tampered_body(self) -> None:
        signature = sign(SECRET, 1700000000, PAYLOAD)
        assert verify_signature(SECRET, 1700000000, b'{"id":43}', signature) is False

    def test_rejects_wrong_secret(self) -> None:
        signature = sign(SECRET, 1700000000, PAYLOAD)
        assert verify_signature("whsec_wrong", 1700000000, PAYLOAD, signature) is False


class TestBuildHeaders:
    """Tests for build_headers()."""

    def _headers(self, **overrides) -> dict[str, str]:
        kwargs = {
            "secret": SECRET,
            "timestamp": 1700000000,
            "payload": PAYLOAD,
            "event_type": "user.created",
            "delivery_id": "dlv_abc",
        }
        kwargs.update(overrides)
        return build_headers(**kwargs)

    def test_protocol_headers(self) -> None:
        headers = self._headers()
        assert headers["Content-Type"] == "application/json"
        assert headers[TIMESTAMP_HEADER] == "1700000000"
        assert headers[EVENT_HEADER] == "user.created"
        assert headers[DELIVERY_ID_HEADER] == "dlv_abc"
        assert headers[SIGNATURE_HEADER] == sign(SECRET, 1700000000, PAYLOAD)

    def test_custom_headers_included(self) -> None:
        headers = self._headers(custom_headers={"Authorization": "Bearer t", "X-Tenant": "7"})
        assert headers["Authorization"] == "Bearer t"
        assert headers["X-Tenant"] == "7"

    def test_custom_headers_cannot_override_protocol_headers(self) -> None:
        headers = self._headers(
            custom_headers={"x-webhook-signature": "forged", "Content-Type": "text/plain"}
        )
        assert "x-webhook-signature" not in headers
        assert headers[SIGNATURE_HEADER] == sign(SECRET, 1700000000, PAYLOAD)
        assert headers["Content-Type"] == "application/json"

    def test_signature_omitted_when_disabled(self) -> None:
        headers = self._headers(include_signature=False)
        assert SIGNATURE_HEADER not in headers
        assert headers[TIMESTAMP_HEADER] == "1700000000"
