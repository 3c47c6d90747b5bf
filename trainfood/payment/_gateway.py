"""
Payment gateway — protocol, in-memory fake, disabled stand-in.
"""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
from collections import defaultdict, deque
from collections.abc import Mapping, Sequence
from typing import Protocol

from trainfood.errors import ConfigurationError, GatewayError
from trainfood.payment._types import IntentStatus, PaymentIntent, Refund, WebhookEvent
from trainfood.payment._webhook import DEFAULT_TOLERANCE_SECONDS, verify_signature


# ═══════════════════════════════════════════════════════════════════════════════
# Protocol
# ═══════════════════════════════════════════════════════════════════════════════

class PaymentGateway(Protocol):
    """
    External payment processor.

    Methods raise GatewayError (classified retryable/terminal) on failure.
    """

    async def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: Mapping[str, str],
        *,
        method_types: Sequence[str] = ("card",),
        idempotency_key: str | None = None,
    ) -> PaymentIntent: ...

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent: ...

    async def cancel_intent(self, intent_id: str) -> PaymentIntent: ...

    async def refund(
        self, intent_id: str, reason: str, amount_cents: int | None = None
    ) -> Refund: ...

    def verify_webhook_signature(
        self, payload: bytes, signature: str | None, secret: str | None
    ) -> WebhookEvent: ...


# ═══════════════════════════════════════════════════════════════════════════════
# FakeGateway — in-memory processor
# ═══════════════════════════════════════════════════════════════════════════════

class FakeGateway:
    """
    Deterministic in-memory processor for tests and local runs.

    Failures are scripted per operation:

        gateway.fail_next("refund", GatewayError("card_declined", "...", retryable=False))
    """

    def __init__(self, tolerance: int = DEFAULT_TOLERANCE_SECONDS) -> None:
        self.tolerance = tolerance
        self.intents: dict[str, PaymentIntent] = {}
        self.refunds: list[Refund] = []
        self.cancelled: list[str] = []
        self._ids = itertools.count(1)
        self._failures: dict[str, deque[Exception]] = defaultdict(deque)
        self._latency = 0.0

    # ── scripting ───────────────────────────────────────────────────

    def fail_next(self, operation: str, error: Exception, times: int = 1) -> None:
        for _ in range(times):
            self._failures[operation].append(error)

    def set_latency(self, seconds: float) -> None:
        self._latency = seconds

    def set_status(self, intent_id: str, status: str) -> None:
        self.intents[intent_id] = dataclasses.replace(self.intents[intent_id], status=status)

    def succeed(self, intent_id: str) -> None:
        self.set_status(intent_id, IntentStatus.SUCCEEDED)

    def set_amount(self, intent_id: str, amount_cents: int) -> None:
        self.intents[intent_id] = dataclasses.replace(
            self.intents[intent_id], amount_cents=amount_cents
        )

    async def _enter(self, operation: str) -> None:
        if self._latency:
            await asyncio.sleep(self._latency)
        pending = self._failures.get(operation)
        if pending:
            raise pending.popleft()

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
        await self._enter("create_intent")
        intent_id = f"pi_fake_{next(self._ids)}"
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            status=IntentStatus.REQUIRES_PAYMENT_METHOD,
            amount_cents=amount_cents,
            currency=currency,
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        await self._enter("retrieve_intent")
        intent = self.intents.get(intent_id)
        if intent is None:
            raise GatewayError("resource_missing", f"no such payment_intent: {intent_id}")
        return intent

    async def cancel_intent(self, intent_id: str) -> PaymentIntent:
        await self._enter("cancel_intent")
        if intent_id not in self.intents:
            raise GatewayError("resource_missing", f"no such payment_intent: {intent_id}")
        self.set_status(intent_id, IntentStatus.CANCELED)
        self.cancelled.append(intent_id)
        return self.intents[intent_id]

    async def refund(
        self, intent_id: str, reason: str, amount_cents: int | None = None
    ) -> Refund:
        await self._enter("refund")
        intent = self.intents.get(intent_id)
        if intent is None:
            raise GatewayError("resource_missing", f"no such payment_intent: {intent_id}")
        refund = Refund(
            id=f"re_fake_{next(self._ids)}",
            intent_id=intent_id,
            amount_cents=intent.amount_cents if amount_cents is None else amount_cents,
            status="succeeded",
        )
        self.refunds.append(refund)
        return refund

    def verify_webhook_signature(
        self, payload: bytes, signature: str | None, secret: str | None
    ) -> WebhookEvent:
        return verify_signature(payload, signature, secret, tolerance=self.tolerance)


# ═══════════════════════════════════════════════════════════════════════════════
# DisabledGateway — no processor configured
# ═══════════════════════════════════════════════════════════════════════════════

class DisabledGateway:
    """Every charge operation fails with ConfigurationError; COD still works."""

    def __init__(self, tolerance: int = DEFAULT_TOLERANCE_SECONDS) -> None:
        self.tolerance = tolerance

    def _fail(self) -> ConfigurationError:
        return ConfigurationError("GATEWAY_NOT_CONFIGURED", "payment gateway is not configured")

    async def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: Mapping[str, str],
        *,
        method_types: Sequence[str] = ("card",),
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        raise self._fail()

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        raise self._fail()

    async def cancel_intent(self, intent_id: str) -> PaymentIntent:
        raise self._fail()

    async def refund(
        self, intent_id: str, reason: str, amount_cents: int | None = None
    ) -> Refund:
        raise self._fail()

    def verify_webhook_signature(
        self, payload: bytes, signature: str | None, secret: str | None
    ) -> WebhookEvent:
        return verify_signature(payload, signature, secret, tolerance=self.tolerance)


__all__ = ("PaymentGateway", "FakeGateway", "DisabledGateway")
