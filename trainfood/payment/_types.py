"""
Payment types — intents, refunds, webhook events.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class IntentStatus:
    """Gateway intent status strings (Stripe vocabulary)."""
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"


class WebhookEventType:
    SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    CANCELED = "payment_intent.canceled"


@dataclass(frozen=True, slots=True)
class PaymentIntent:
    id: str
    client_secret: str | None
    status: str
    amount_cents: int
    currency: str
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == IntentStatus.SUCCEEDED


@dataclass(frozen=True, slots=True)
class Refund:
    id: str
    intent_id: str
    amount_cents: int
    status: str


@dataclass(frozen=True, slots=True)
class WebhookEvent:
    """A verified gateway event about one payment intent."""

    id: str
    type: str
    intent_id: str
    amount_cents: int | None
    created: int | None = None


__all__ = (
    "IntentStatus",
    "WebhookEventType",
    "PaymentIntent",
    "Refund",
    "WebhookEvent",
)
