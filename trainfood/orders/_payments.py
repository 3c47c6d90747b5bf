"""
Payment reconciliation — webhook deliveries and client confirmations.

Both paths converge on the same completion: payment COMPLETED, order
CONFIRMED when the table allows it. Whichever arrives second finds the
payment already settled and does nothing.
"""

from __future__ import annotations

import dataclasses
import logging

from kungfu import Result, Ok, Error

from trainfood.errors import AuthorizationError, ConflictError, GatewayError, OrderError
from trainfood.events import EventName
from trainfood.lift import gateway_call, guarded
from trainfood.orders._engine import OrderEngine
from trainfood.orders._machine import can_transition, transition
from trainfood.orders._store import Mutation, mutate_order
from trainfood.orders._types import (
    Order,
    OrderStatus,
    PaymentConfirmation,
    PaymentStatus,
    Principal,
    WebhookAck,
)
from trainfood.payment import WebhookEvent, WebhookEventType

logger = logging.getLogger("trainfood.orders.payments")

# Payment outcomes no later gateway event may overwrite
SETTLED: frozenset[PaymentStatus] = frozenset(
    {PaymentStatus.COMPLETED, PaymentStatus.REFUNDED, PaymentStatus.REFUND_FAILED}
)

PAYMENT_CANCELED_REASON = "Payment canceled"
LATE_PAYMENT_REASON = "Payment received after cancellation"


class PaymentReconciler:
    def __init__(self, engine: OrderEngine, webhook_secret: str | None) -> None:
        self._engine = engine
        self._webhook_secret = webhook_secret

    # ═══════════════════════════════════════════════════════════════════════
    # Webhook
    # ═══════════════════════════════════════════════════════════════════════

    async def handle_webhook(
        self, payload: bytes, signature: str | None
    ) -> Result[WebhookAck, OrderError]:
        """
        Verify and apply one gateway delivery.

        Unknown orders and event types are acknowledged (``applied=False``)
        so the gateway stops redelivering them.
        """
        return await guarded(lambda: self._handle(payload, signature))

    async def _handle(self, payload: bytes, signature: str | None) -> WebhookAck:
        try:
            event = self._engine.gateway.verify_webhook_signature(
                payload, signature, self._webhook_secret
            )
        except GatewayError as e:
            logger.warning("rejected webhook: %s", e)
            raise

        order = await self._engine.store.get_by_gateway_id(event.intent_id)
        if order is None:
            logger.warning("webhook %s for unknown intent %s", event.type, event.intent_id)
            return WebhookAck(received=True, event_type=event.type)

        match event.type:
            case WebhookEventType.SUCCEEDED:
                mutation = await self.complete(order.id, by="gateway")
            case WebhookEventType.PAYMENT_FAILED:
                mutation = await self._failed(order.id)
            case WebhookEventType.CANCELED:
                mutation = await self._canceled(order.id)
            case _:
                logger.info("ignoring webhook %s for order %s", event.type, order.order_number)
                return WebhookAck(received=True, event_type=event.type, order_id=order.id)

        self._log_applied(event, mutation)
        return WebhookAck(
            received=True,
            event_type=event.type,
            order_id=order.id,
            applied=mutation.changed,
        )

    def _log_applied(self, event: WebhookEvent, mutation: Mutation) -> None:
        after = mutation.after
        if mutation.changed:
            logger.info(
                "webhook %s applied to order %s: status=%s payment=%s",
                event.type, after.order_number, after.status.value, after.payment.status.value,
            )
        else:
            logger.info("webhook %s for order %s was a no-op", event.type, after.order_number)

    # ═══════════════════════════════════════════════════════════════════════
    # Transitions
    # ═══════════════════════════════════════════════════════════════════════

    async def complete(self, order_id: str, *, by: str) -> Mutation:
        """
        Mark payment COMPLETED and confirm the order.

        An order already CANCELLED stays cancelled; the payment is refunded.
        """
        now = self._engine.now()

        def pay(order: Order) -> Order | None:
            if order.payment.status in SETTLED:
                return None
            paid = dataclasses.replace(
                order,
                updated_at=now,
                payment=dataclasses.replace(
                    order.payment, status=PaymentStatus.COMPLETED, paid_at=now
                ),
            )
            if can_transition(order.status, OrderStatus.CONFIRMED):
                return transition(paid, OrderStatus.CONFIRMED, at=now, by=by, note="Payment confirmed")
            return paid

        mutation = await mutate_order(self._engine.store, order_id, pay)
        after = mutation.after
        if mutation.changed and after.status is OrderStatus.CANCELLED:
            logger.warning("payment arrived for cancelled order %s, refunding", after.order_number)
            refunded = await self._engine.refund_payment(after, LATE_PAYMENT_REASON)
            return dataclasses.replace(mutation, after=refunded)
        return mutation

    async def _failed(self, order_id: str) -> Mutation:
        now = self._engine.now()

        def fail(order: Order) -> Order | None:
            if order.payment.status in SETTLED:
                return None
            moves = can_transition(order.status, OrderStatus.FAILED_PAYMENT)
            if not moves and order.payment.status is PaymentStatus.FAILED:
                return None
            failed = dataclasses.replace(
                order,
                updated_at=now,
                payment=dataclasses.replace(order.payment, status=PaymentStatus.FAILED),
            )
            if moves:
                return transition(
                    failed, OrderStatus.FAILED_PAYMENT, at=now, by="gateway", note="Payment failed"
                )
            return failed

        return await mutate_order(self._engine.store, order_id, fail)

    async def _canceled(self, order_id: str) -> Mutation:
        now = self._engine.now()

        def cancel(order: Order) -> Order | None:
            if order.payment.status in SETTLED:
                return None
            moves = can_transition(order.status, OrderStatus.CANCELLED)
            if not moves and order.payment.status is PaymentStatus.FAILED:
                return None
            failed = dataclasses.replace(
                order,
                updated_at=now,
                payment=dataclasses.replace(order.payment, status=PaymentStatus.FAILED),
            )
            if moves:
                return transition(
                    failed,
                    OrderStatus.CANCELLED,
                    at=now,
                    by="gateway",
                    note=PAYMENT_CANCELED_REASON,
                    cancellation_reason=PAYMENT_CANCELED_REASON,
                )
            return failed

        mutation = await mutate_order(self._engine.store, order_id, cancel)
        if (
            mutation.changed
            and mutation.before.status is not OrderStatus.CANCELLED
            and mutation.after.status is OrderStatus.CANCELLED
        ):
            await self._engine.restore_stock(mutation.after)
            self._engine.emitter.emit(EventName.CANCELLED, order_id)
        return mutation

    # ═══════════════════════════════════════════════════════════════════════
    # Client confirmation
    # ═══════════════════════════════════════════════════════════════════════

    async def confirm_payment(
        self, principal: Principal, order_id: str, payment_intent_id: str
    ) -> Result[PaymentConfirmation, OrderError]:
        """Client-side confirmation, checked against the gateway's view of the intent."""
        return await guarded(lambda: self._confirm(principal, order_id, payment_intent_id))

    async def _confirm(
        self, principal: Principal, order_id: str, payment_intent_id: str
    ) -> PaymentConfirmation:
        order = await self._engine.load_order(order_id)
        if not (order.is_owned_by(principal) or principal.is_admin):
            raise AuthorizationError("FORBIDDEN", "not allowed to confirm this order")
        if not order.payment.method.online:
            raise ConflictError("NOT_ONLINE_PAYMENT", "order is cash on delivery")
        if order.payment.gateway_id != payment_intent_id:
            raise ConflictError("INTENT_MISMATCH", "payment intent does not belong to this order")
        if order.payment.status in SETTLED:
            return PaymentConfirmation(order=order, already_completed=True)

        match await gateway_call(
            lambda: self._engine.gateway.retrieve_intent(payment_intent_id),
            self._engine.gateway_timeout,
        ):
            case Ok(intent):
                pass
            case Error(e):
                raise e

        if not intent.succeeded:
            raise ConflictError(
                "PAYMENT_NOT_SUCCEEDED", f"payment intent status is {intent.status}"
            )
        if intent.amount_cents != order.totals.final_cents:
            logger.warning(
                "amount mismatch on order %s: intent=%d order=%d",
                order.order_number, intent.amount_cents, order.totals.final_cents,
            )
            raise ConflictError("AMOUNT_MISMATCH", "paid amount does not match order total")

        mutation = await self.complete(order.id, by=principal.user_id)
        return PaymentConfirmation(order=mutation.after, already_completed=not mutation.changed)


__all__ = ("PaymentReconciler", "SETTLED")
