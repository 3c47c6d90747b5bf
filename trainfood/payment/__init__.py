"""
Payment — gateway adapters and webhook verification.

    from trainfood import payment

    gateway = payment.StripeGateway(api_key)           # production
    gateway = payment.FakeGateway()                    # tests
    event = gateway.verify_webhook_signature(body, header, secret)
"""

from trainfood.payment._types import (
    IntentStatus,
    WebhookEventType,
    PaymentIntent,
    Refund,
    WebhookEvent,
)
from trainfood.payment._webhook import sign_payload, verify_signature
from trainfood.payment._gateway import PaymentGateway, FakeGateway, DisabledGateway
from trainfood.payment._stripe import StripeGateway

__all__ = (
    "IntentStatus",
    "WebhookEventType",
    "PaymentIntent",
    "Refund",
    "WebhookEvent",
    "sign_payload",
    "verify_signature",
    "PaymentGateway",
    "FakeGateway",
    "DisabledGateway",
    "StripeGateway",
)
