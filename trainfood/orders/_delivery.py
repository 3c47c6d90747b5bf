"""
Delivery desk — what a delivery agent does with an order once it is ready.

Agents accept (self-assign), decline or report problems with an order; the
handover is closed with a one-time code the customer reads out. Only the
SHA-256 digest of that code is stored, and only until it is used or expires.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import timedelta

from kungfu import Result

from trainfood.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    OrderError,
    ValidationError,
)
from trainfood.events import EventName
from trainfood.lift import guarded
from trainfood.orders._engine import OrderEngine
from trainfood.orders._machine import annotate, transition
from trainfood.orders._store import mutate_order
from trainfood.orders._types import DeliveryOtp, Order, OrderStatus, Principal, Role

logger = logging.getLogger("trainfood.orders.delivery")

DELIVERY_OTP_TTL_MINUTES = 10
DECLINED = "DECLINED"
ISSUE_REPORTED = "ISSUE_REPORTED"
OTP_GENERATED = "OTP_GENERATED"
DEFAULT_DECLINE_NOTE = "Order declined by driver"


def otp_digest(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


def new_otp() -> str:
    return str(secrets.randbelow(900000) + 100000)


class DeliveryDesk:
    def __init__(self, engine: OrderEngine, otp_ttl_minutes: int = DELIVERY_OTP_TTL_MINUTES) -> None:
        self._engine = engine
        self.otp_ttl = timedelta(minutes=otp_ttl_minutes)

    async def _require_agent(self, principal: Principal) -> None:
        known = await self._engine.agents.is_delivery_agent(principal.user_id)
        if principal.role is not Role.DELIVERY_AGENT or not known:
            raise AuthorizationError("FORBIDDEN", "only registered delivery agents can do this")

    # ═══════════════════════════════════════════════════════════════════════
    # Accept / decline / report
    # ═══════════════════════════════════════════════════════════════════════

    async def accept_order(self, principal: Principal, order_id: str) -> Result[Order, OrderError]:
        """Self-assign a READY_FOR_PICKUP order. Accepting your own order again is a no-op."""
        return await guarded(lambda: self._accept(principal, order_id))

    async def _accept(self, principal: Principal, order_id: str) -> Order:
        await self._require_agent(principal)
        agent_id = principal.user_id
        now = self._engine.now()

        def accept(order: Order) -> Order | None:
            if order.assigned_driver is not None and order.assigned_driver != agent_id:
                raise ConflictError(
                    "ALREADY_ASSIGNED", "order already assigned to another driver"
                )
            if order.assigned_driver == agent_id and order.status is OrderStatus.OUT_FOR_DELIVERY:
                return None
            if order.status is not OrderStatus.READY_FOR_PICKUP:
                raise ConflictError(
                    "NOT_READY_FOR_PICKUP",
                    f"order is {order.status.value}, expected READY_FOR_PICKUP",
                )
            return transition(
                order,
                OrderStatus.OUT_FOR_DELIVERY,
                at=now,
                by=agent_id,
                note=f"Accepted by {agent_id}",
                assigned_driver=agent_id,
                estimated_delivery_time=now + self._engine.assignment_eta,
            )

        mutation = await mutate_order(self._engine.store, order_id, accept)
        order = mutation.after
        if mutation.changed:
            logger.info("order %s accepted by %s", order.order_number, agent_id)
            self._engine.emitter.emit(EventName.ASSIGNED, order.id)
            self._engine.emitter.emit(EventName.PICKED_UP, order.id)
        return order

    async def decline_order(
        self, principal: Principal, order_id: str, reason: str | None = None
    ) -> Result[Order, OrderError]:
        """Record that an agent passed on an order. Status and assignment stay as they are."""
        return await guarded(lambda: self._decline(principal, order_id, reason))

    async def _decline(self, principal: Principal, order_id: str, reason: str | None) -> Order:
        await self._require_agent(principal)
        now = self._engine.now()
        order = (await mutate_order(
            self._engine.store,
            order_id,
            lambda o: annotate(
                o, DECLINED, at=now, by=principal.user_id, note=reason or DEFAULT_DECLINE_NOTE
            ),
        )).after
        logger.info("order %s declined by %s", order.order_number, principal.user_id)
        return order

    async def report_issue(
        self, principal: Principal, order_id: str, issue_type: str, description: str
    ) -> Result[Order, OrderError]:
        return await guarded(
            lambda: self._report(principal, order_id, issue_type, description)
        )

    async def _report(
        self, principal: Principal, order_id: str, issue_type: str, description: str
    ) -> Order:
        await self._require_agent(principal)
        issue_type = (issue_type or "").strip()
        if not issue_type:
            raise ValidationError("ISSUE_TYPE_REQUIRED", "issue type is required", field="issue_type")
        now = self._engine.now()

        def report(order: Order) -> Order:
            if order.assigned_driver != principal.user_id:
                raise NotFoundError("ORDER_NOT_FOUND", "order not found or not assigned to you")
            return annotate(
                order, ISSUE_REPORTED, at=now, by=principal.user_id,
                note=f"{issue_type}: {description}",
            )

        order = (await mutate_order(self._engine.store, order_id, report)).after
        logger.warning(
            "issue reported on order %s by %s: %s", order.order_number, principal.user_id, issue_type
        )
        return order

    # ═══════════════════════════════════════════════════════════════════════
    # Handover code
    # ═══════════════════════════════════════════════════════════════════════

    async def generate_delivery_otp(
        self, principal: Principal, order_id: str
    ) -> Result[DeliveryOtp, OrderError]:
        """
        Issue a fresh 6-digit code for an order out for delivery.

        The owner (or an admin) receives the plain code; a new code replaces
        any earlier one.
        """
        return await guarded(lambda: self._generate(principal, order_id))

    async def _generate(self, principal: Principal, order_id: str) -> DeliveryOtp:
        order = await self._engine.load_order(order_id)
        if not (order.is_owned_by(principal) or principal.is_admin):
            raise AuthorizationError("FORBIDDEN", "not allowed to request a code for this order")

        code = new_otp()
        now = self._engine.now()
        expires_at = now + self.otp_ttl

        def store_code(order: Order) -> Order:
            if order.status is not OrderStatus.OUT_FOR_DELIVERY:
                raise ConflictError(
                    "NOT_OUT_FOR_DELIVERY",
                    f"order is {order.status.value}, expected OUT_FOR_DELIVERY",
                )
            return annotate(
                order, OTP_GENERATED, at=now, by=principal.user_id,
                delivery_otp_hash=otp_digest(code), otp_expires_at=expires_at,
            )

        order = (await mutate_order(self._engine.store, order_id, store_code)).after
        logger.info("delivery code issued for order %s", order.order_number)
        return DeliveryOtp(
            code=code, expires_at=expires_at, expires_in=int(self.otp_ttl.total_seconds())
        )

    async def confirm_delivery(
        self, principal: Principal, order_id: str, otp: str
    ) -> Result[Order, OrderError]:
        """Assigned agent closes the handover with the customer's code → DELIVERED."""
        return await guarded(lambda: self._confirm(principal, order_id, otp))

    async def _confirm(self, principal: Principal, order_id: str, otp: str) -> Order:
        await self._require_agent(principal)
        now = self._engine.now()
        submitted = otp_digest(str(otp).strip())

        def deliver(order: Order) -> Order:
            if order.assigned_driver != principal.user_id:
                raise NotFoundError("ORDER_NOT_FOUND", "order not found or not assigned to you")
            if (
                order.delivery_otp_hash is None
                or order.otp_expires_at is None
                or order.otp_expires_at <= now
            ):
                raise ValidationError("OTP_EXPIRED", "OTP expired or not generated", field="otp")
            if not hmac.compare_digest(order.delivery_otp_hash, submitted):
                raise ValidationError("INVALID_OTP", "invalid OTP", field="otp")
            return transition(
                order, OrderStatus.DELIVERED, at=now, by=principal.user_id,
                note="Delivered with customer code",
                delivery_otp_hash=None, otp_expires_at=None,
            )

        order = (await mutate_order(self._engine.store, order_id, deliver)).after
        logger.info("order %s delivered by %s", order.order_number, principal.user_id)
        self._engine.emitter.emit(EventName.DELIVERED, order.id)
        return order


__all__ = (
    "DELIVERY_OTP_TTL_MINUTES",
    "DeliveryDesk",
    "otp_digest",
)
