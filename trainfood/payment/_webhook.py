"""
Webhook signature verification (Stripe scheme).

Header format:

    Stripe-Signature: t=1700000000,v1=5257a869e7...

where ``v1`` is HMAC-SHA256(secret, f"{t}.{payload}") in hex. Several
``v1`` entries may be present (secret rotation); any match is accepted.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time

from trainfood.errors import ConfigurationError, GatewayError
from trainfood.payment._types import WebhookEvent

DEFAULT_TOLERANCE_SECONDS = 300


def _compute(payload: bytes, secret: str, timestamp: int) -> str:
    signed = str(timestamp).encode() + b"." + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def sign_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a signature header for ``payload``."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={_compute(payload, secret, ts)}"


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise GatewayError("SIGNATURE_INVALID", "malformed signature timestamp")
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise GatewayError("SIGNATURE_INVALID", "signature header has no timestamp or v1 entry")
    return timestamp, signatures


def _parse_event(payload: bytes) -> WebhookEvent:
    try:
        body = json.loads(payload)
        obj = body["data"]["object"]
        return WebhookEvent(
            id=str(body.get("id", "")),
            type=str(body["type"]),
            intent_id=str(obj["id"]),
            amount_cents=obj.get("amount"),
            created=body.get("created"),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise GatewayError("PAYLOAD_INVALID", f"unreadable webhook payload: {e}")


def verify_signature(
    payload: bytes,
    header: str | None,
    secret: str | None,
    *,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> WebhookEvent:
    """
    Verify and parse a webhook delivery.

    Raises:
        ConfigurationError: no secret configured
        GatewayError: missing/invalid/expired signature, unreadable payload.
            Always terminal.
    """
    if not secret:
        raise ConfigurationError("WEBHOOK_NOT_CONFIGURED", "webhook secret is not configured")
    if not header:
        raise GatewayError("SIGNATURE_MISSING", "missing signature header")

    timestamp, signatures = _parse_header(header)
    expected = _compute(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, s) for s in signatures):
        raise GatewayError("SIGNATURE_INVALID", "signature does not match payload")

    current = time.time() if now is None else now
    if tolerance > 0 and abs(current - timestamp) > tolerance:
        raise GatewayError("SIGNATURE_EXPIRED", "signature timestamp outside tolerance")

    return _parse_event(payload)


__all__ = ("sign_payload", "verify_signature", "DEFAULT_TOLERANCE_SECONDS")
