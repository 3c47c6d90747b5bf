"""
Stripe gateway — PaymentIntents REST API via httpx.

Features:
- Async HTTP via httpx with a bounded timeout per call
- Form-encoded requests (Stripe's wire format), Idempotency-Key passthrough
- Error classification: network/timeout/429/5xx retryable, other 4xx terminal
- Webhook verification with the shared Stripe signature scheme

Usage::

    gateway = StripeGateway(api_key="sk_test_...", timeout=10.0)
    intent = await gateway.create_intent(27200, "inr", {"userId": "u1"})
    await gateway.aclose()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from trainfood.errors import GatewayError
from trainfood.payment._types import PaymentIntent, Refund, WebhookEvent
from trainfood.payment._webhook import DEFAULT_TOLERANCE_SECONDS, verify_signature

logger = logging.getLogger("trainfood.payment.stripe")

_STRIPE_API_BASE = "https://api.stripe.com"
_INTENTS_ENDPOINT = "/v1/payment_intents"
_REFUNDS_ENDPOINT = "/v1/refunds"

_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


class StripeGateway:
    """PaymentGateway backed by the Stripe API."""

    def __init__(
        self,
        api_key: str,
        *,
        api_base_url: str = _STRIPE_API_BASE,
        timeout: float = 10.0,
        tolerance: int = DEFAULT_TOLERANCE_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout
        self.tolerance = tolerance
        self._client = httpx.AsyncClient(
            base_url=self.api_base_url,
            auth=(api_key, ""),
            headers={"User-Agent": "trainfood/0.1"},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Transport ───────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        data: Mapping[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            response = await self._client.request(method, path, data=data, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("stripe %s %s timed out: %s", method, path, e)
            raise GatewayError("GATEWAY_TIMEOUT", f"stripe timed out: {e}", retryable=True)
        except httpx.TransportError as e:
            logger.warning("stripe %s %s transport error: %s", method, path, e)
            raise GatewayError("GATEWAY_UNAVAILABLE", f"stripe unreachable: {e}", retryable=True)

        if response.is_success:
            return response.json()
        raise self._classify(response)

    @staticmethod
    def _classify(response: httpx.Response) -> GatewayError:
        status = response.status_code
        try:
            err = response.json().get("error", {})
        except ValueError:
            err = {}
        code = err.get("code") or err.get("type") or f"http_{status}"
        message = err.get("message") or response.text or f"HTTP {status}"

        retryable = status == 429 or status >= 500
        logger.warning(
            "stripe error: HTTP %s %s (%s, retryable=%s)", status, code, message, retryable
        )
        return GatewayError(code, message, retryable=retryable, status_code=status)

    @staticmethod
    def _to_intent(body: dict[str, Any]) -> PaymentIntent:
        return PaymentIntent(
            id=body["id"],
            client_secret=body.get("client_secret"),
            status=body["status"],
            amount_cents=int(body["amount"]),
            currency=body.get("currency", ""),
            metadata=dict(body.get("metadata") or {}),
        )

    # ── PaymentGateway ──────────────────────────────────────────────

    async def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: Mapping[str, str],
        *,
        method_types: Sequence[str] = ("card",),
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        data: dict[str, Any] = {
            "amount": str(amount_cents),
            "currency": currency,
            "payment_method_types[]": list(method_types),
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = value

        body = await self._request(
            "POST", _INTENTS_ENDPOINT, data=data, idempotency_key=idempotency_key
        )
        intent = self._to_intent(body)
        logger.info("stripe intent created: %s amount=%s %s", intent.id, amount_cents, currency)
        return intent

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        return self._to_intent(await self._request("GET", f"{_INTENTS_ENDPOINT}/{intent_id}"))

    async def cancel_intent(self, intent_id: str) -> PaymentIntent:
        body = await self._request("POST", f"{_INTENTS_ENDPOINT}/{intent_id}/cancel")
        return self._to_intent(body)

    async def refund(
        self, intent_id: str, reason: str, amount_cents: int | None = None
    ) -> Refund:
        data: dict[str, Any] = {"payment_intent": intent_id, "metadata[reason]": reason}
        # Stripe only accepts a fixed reason vocabulary; free text goes to metadata
        data["reason"] = reason if reason in _REFUND_REASONS else "requested_by_customer"
        if amount_cents is not None:
            data["amount"] = str(amount_cents)

        body = await self._request("POST", _REFUNDS_ENDPOINT, data=data)
        logger.info("stripe refund %s for %s: %s", body.get("id"), intent_id, body.get("status"))
        return Refund(
            id=body["id"],
            intent_id=intent_id,
            amount_cents=int(body.get("amount", amount_cents or 0)),
            status=body.get("status", "pending"),
        )

    def verify_webhook_signature(
        self, payload: bytes, signature: str | None, secret: str | None
    ) -> WebhookEvent:
        return verify_signature(payload, signature, secret, tolerance=self.tolerance)


__all__ = ("StripeGateway",)
