"""
OrderEngine — checkout, lifecycle transitions, cancellation, reads.

Every public method returns ``Result[T, OrderError]``:

    match await engine.create_order(principal, request):
        case Ok(receipt):
            ...
        case Error(ConflictError(code="INSUFFICIENT_STOCK")):
            ...

Checkout is a saga over three side effects (stock reservation, payment
intent, order insert); a failure at any step rolls back the ones before it.
Status writes go through compare-and-set so concurrent actors never lose
an update or compensate twice.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import secrets
import string
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import partial

from kungfu import Result, Ok, Error, LazyCoroResult

from trainfood import graph as G
from trainfood import saga as S
from trainfood._types import Clock, utcnow
from trainfood.catalog import CatalogStore, Reservation, StockError, StockErrorKind
from trainfood.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    OrderError,
    StorageError,
    ValidationError,
)
from trainfood.events import EventEmitter, EventName
from trainfood.lift import from_result, gateway_call, guarded
from trainfood.orders._checkout import CheckoutDeps, CheckoutDraft, Quote, QuoteNode
from trainfood.orders._machine import (
    NON_CANCELLABLE,
    STATUS_EVENTS,
    display_label,
    enter,
    parse_status,
    transition,
)
from trainfood.orders._pricing import PricingRules
from trainfood.orders._store import (
    AgentDirectory,
    CheckoutClaims,
    OrderStore,
    mutate_order,
)
from trainfood.orders._types import (
    CheckoutReceipt,
    CheckoutRequest,
    Location,
    Order,
    OrderItem,
    OrderPage,
    OrderQuery,
    OrderStats,
    OrderStatus,
    Payment,
    PaymentStatus,
    Principal,
    Role,
    TrackingView,
)
from trainfood.payment import PaymentGateway, PaymentIntent, Refund
from trainfood.schedule import (
    ReadinessCalculator,
    ReadinessRules,
    ScheduleProvider,
    TrackedStop,
    annotate_stops,
    upcoming_stops,
)

logger = logging.getLogger("trainfood.orders.engine")

MAX_PAGE_SIZE = 100
UPCOMING_STOPS = 5
DEFAULT_CANCEL_REASON = "User requested cancellation"
_ORDER_NUMBER_CHARS = string.ascii_uppercase + string.digits


def new_order_id() -> str:
    return f"ord_{uuid.uuid4().hex[:16]}"


def new_order_number(now: datetime) -> str:
    """``TF`` + epoch milliseconds + 5 random uppercase alphanumerics."""
    suffix = "".join(secrets.choice(_ORDER_NUMBER_CHARS) for _ in range(5))
    return f"TF{int(now.timestamp() * 1000)}{suffix}"


def _stock_error(e: StockError) -> OrderError:
    match e.kind:
        case StockErrorKind.INSUFFICIENT:
            return ConflictError("INSUFFICIENT_STOCK", e.message)
        case StockErrorKind.NOT_FOUND:
            return NotFoundError("PRODUCT_NOT_FOUND", e.message)
        case _:
            return StorageError("STOCK_BACKEND_FAILURE", e.message)


# ═══════════════════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════════════════

class OrderEngine:
    def __init__(
        self,
        *,
        catalog: CatalogStore,
        schedules: ScheduleProvider,
        gateway: PaymentGateway,
        store: OrderStore,
        emitter: EventEmitter,
        agents: AgentDirectory,
        pricing: PricingRules = PricingRules(),
        readiness_rules: ReadinessRules = ReadinessRules(),
        currency: str = "inr",
        gateway_timeout: float = 10.0,
        assignment_eta_minutes: int = 45,
        clock: Clock = utcnow,
    ) -> None:
        self.catalog = catalog
        self.schedules = schedules
        self.gateway = gateway
        self.store = store
        self.emitter = emitter
        self.agents = agents
        self.pricing = pricing
        self.currency = currency
        self.gateway_timeout = gateway_timeout
        self.assignment_eta = timedelta(minutes=assignment_eta_minutes)
        self.clock = clock
        self.readiness = ReadinessCalculator(schedules, clock, readiness_rules)

        self._deps = CheckoutDeps(catalog=catalog, readiness=self.readiness, pricing=pricing)
        self._quote = G.pipeline(QuoteNode)
        self._claims = CheckoutClaims()

    def now(self) -> datetime:
        return self.clock()

    async def load_order(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if order is None:
            raise NotFoundError("ORDER_NOT_FOUND", f"order {order_id} not found")
        return order

    # ═══════════════════════════════════════════════════════════════════════
    # Checkout
    # ═══════════════════════════════════════════════════════════════════════

    async def create_order(
        self, principal: Principal, request: CheckoutRequest
    ) -> Result[CheckoutReceipt, OrderError]:
        return await guarded(lambda: self._checkout(principal, request))

    async def _checkout(self, principal: Principal, request: CheckoutRequest) -> CheckoutReceipt:
        key = request.idempotency_key
        if not key:
            return await self._place(principal, request)

        async with self._claims.claim(key):
            existing = await self.store.get_by_idempotency_key(key)
            if existing is not None:
                return self._replay(principal, existing)
            try:
                return await self._place(principal, request)
            except OrderError:
                # another process may have won the key while this one was failing
                winner = await self.store.get_by_idempotency_key(key)
                if winner is None:
                    raise
                return self._replay(principal, winner)

    async def _place(self, principal: Principal, request: CheckoutRequest) -> CheckoutReceipt:
        quote = (await self._quote(CheckoutDraft(request, principal), self._deps)).data
        order_id = new_order_id()

        saga = (
            S.sequence(*(
                self._reserve(product_id, qty)
                for product_id, qty in quote.checkout.quantities().items()
            ))
            .then(lambda _: self._open_payment(order_id, principal, quote))
            .then(lambda intent: self._persist(self._new_order(order_id, principal, quote, intent), intent))
        )

        match await S.run(saga):
            case Ok(done):
                order, intent = done.value
            case Error(failure):
                if not failure.rollback_complete:
                    logger.error(
                        "checkout rollback incomplete: %d of %d compensations failed",
                        failure.compensators_failed,
                        failure.compensators_failed + failure.compensators_run,
                    )
                raise failure.error

        logger.info(
            "order %s placed: user=%s total=%d method=%s status=%s",
            order.order_number, order.user_id, order.totals.final_cents,
            order.payment.method.value, order.status.value,
        )
        self.emitter.emit(EventName.CREATED, order.id)

        return CheckoutReceipt(
            order_id=order.id,
            order_number=order.order_number,
            total_cents=order.totals.final_cents,
            status=order.status,
            client_secret=intent.client_secret if intent is not None else None,
        )

    def _replay(self, principal: Principal, order: Order) -> CheckoutReceipt:
        if order.user_id != principal.user_id:
            raise ConflictError(
                "IDEMPOTENCY_KEY_REUSED", "idempotency key was already used for another order"
            )
        logger.info("checkout replayed for order %s", order.order_number)
        return CheckoutReceipt(
            order_id=order.id,
            order_number=order.order_number,
            total_cents=order.totals.final_cents,
            status=order.status,
            replayed=True,
        )

    # ── saga steps ──────────────────────────────────────────────────

    def _reserve(self, product_id: str, qty: int) -> S.SagaStep[Reservation, OrderError]:
        async def reserve() -> Result[Reservation, OrderError]:
            match await self.catalog.reserve_stock(product_id, qty):
                case Ok(reservation):
                    return Ok(reservation)
                case Error(e):
                    return Error(_stock_error(e))

        async def release(reservation: Reservation) -> None:
            match await self.catalog.adjust_stock(reservation.product_id, reservation.qty):
                case Error(e):
                    raise _stock_error(e)
                case Ok(_):
                    pass

        return S.step(LazyCoroResult(reserve), compensate=release)

    def _open_payment(
        self, order_id: str, principal: Principal, quote: Quote
    ) -> S.SagaStep[PaymentIntent | None, OrderError]:
        checkout = quote.checkout
        if not checkout.method.online:
            return S.step(from_result(Ok(None)))

        metadata = {
            "orderId": order_id,
            "userId": principal.user_id,
            "orderType": checkout.delivery.type.value,
        }

        async def void(intent: PaymentIntent | None) -> None:
            if intent is not None:
                await self.gateway.cancel_intent(intent.id)

        return S.step(
            gateway_call(
                lambda: self.gateway.create_intent(
                    quote.totals.final_cents,
                    self.currency,
                    metadata,
                    method_types=checkout.method.gateway_method_types,
                    idempotency_key=f"checkout-{order_id}",
                ),
                self.gateway_timeout,
            ),
            compensate=void,
        )

    def _persist(
        self, order: Order, intent: PaymentIntent | None
    ) -> S.SagaStep[tuple[Order, PaymentIntent | None], OrderError]:
        async def insert() -> tuple[Order, PaymentIntent | None]:
            match await self.store.insert(order):
                case Ok(stored):
                    return stored, intent
                case Error(e):
                    raise e

        return S.step(guarded(insert))

    def _new_order(
        self,
        order_id: str,
        principal: Principal,
        quote: Quote,
        intent: PaymentIntent | None,
    ) -> Order:
        checkout = quote.checkout
        now = self.now()
        draft = Order(
            id=order_id,
            order_number=new_order_number(now),
            user_id=principal.user_id,
            items=quote.items,
            delivery=checkout.delivery,
            totals=quote.totals,
            payment=Payment(
                method=checkout.method,
                gateway_id=intent.id if intent is not None else None,
            ),
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
            schedule=quote.schedule,
            idempotency_key=checkout.idempotency_key,
            special_instructions=checkout.special_instructions,
        )
        initial = OrderStatus.PENDING if checkout.method.online else OrderStatus.CONFIRMED
        return enter(draft, initial, at=now, by=principal.user_id, note="Order placed")

    # ═══════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════════

    async def update_status(
        self,
        principal: Principal,
        order_id: str,
        status: OrderStatus | str,
        *,
        note: str | None = None,
        driver_location: Location | None = None,
    ) -> Result[Order, OrderError]:
        """Staff-driven transition. Accepts canonical names or display labels."""
        return await guarded(
            lambda: self._update_status(principal, order_id, status, note, driver_location)
        )

    async def _update_status(
        self,
        principal: Principal,
        order_id: str,
        status: OrderStatus | str,
        note: str | None,
        driver_location: Location | None,
    ) -> Order:
        if not principal.is_staff:
            raise AuthorizationError("FORBIDDEN", "only staff can change order status")

        target = parse_status(status)
        if target is OrderStatus.CANCELLED:
            return await self._cancel(order_id, principal.user_id, note)

        now = self.now()
        changes: dict[str, object] = {}
        if target is OrderStatus.OUT_FOR_DELIVERY and driver_location is not None:
            changes["driver_location"] = driver_location
        if target is OrderStatus.DELIVERED:
            changes.update(delivery_otp_hash=None, otp_expires_at=None)

        def move(order: Order) -> Order:
            if (
                target is OrderStatus.DELIVERED
                and order.delivery_otp_hash is not None
                and not principal.is_admin
            ):
                raise ConflictError(
                    "DELIVERY_OTP_REQUIRED", "a delivery code is pending; confirm it to deliver"
                )
            return transition(order, target, at=now, by=principal.user_id, note=note, **changes)

        mutation = await mutate_order(self.store, order_id, move)
        order = mutation.after
        logger.info(
            "order %s: %s -> %s by %s",
            order.order_number, mutation.before.status.value, target.value, principal.user_id,
        )
        if event := STATUS_EVENTS.get(target):
            self.emitter.emit(event, order.id)
        return order

    async def assign_order(
        self, principal: Principal, order_id: str, agent_id: str
    ) -> Result[Order, OrderError]:
        return await guarded(lambda: self._assign(principal, order_id, agent_id))

    async def _assign(self, principal: Principal, order_id: str, agent_id: str) -> Order:
        if not principal.is_admin:
            raise AuthorizationError("FORBIDDEN", "only admins can assign orders")
        if not await self.agents.is_delivery_agent(agent_id):
            raise NotFoundError("AGENT_NOT_FOUND", f"delivery agent {agent_id} not found")

        now = self.now()

        def assign(order: Order) -> Order:
            if order.status is not OrderStatus.READY_FOR_PICKUP:
                raise ConflictError(
                    "NOT_READY_FOR_PICKUP",
                    f"order is {order.status.value}, expected READY_FOR_PICKUP",
                )
            return transition(
                order,
                OrderStatus.OUT_FOR_DELIVERY,
                at=now,
                by=principal.user_id,
                note=f"Assigned to {agent_id}",
                assigned_driver=agent_id,
                estimated_delivery_time=now + self.assignment_eta,
            )

        order = (await mutate_order(self.store, order_id, assign)).after
        logger.info("order %s assigned to %s", order.order_number, agent_id)
        self.emitter.emit(EventName.ASSIGNED, order.id)
        self.emitter.emit(EventName.PICKED_UP, order.id)
        return order

    # ═══════════════════════════════════════════════════════════════════════
    # Cancellation
    # ═══════════════════════════════════════════════════════════════════════

    async def cancel_order(
        self, principal: Principal, order_id: str, reason: str | None = None
    ) -> Result[Order, OrderError]:
        return await guarded(lambda: self._cancel_as(principal, order_id, reason))

    async def _cancel_as(self, principal: Principal, order_id: str, reason: str | None) -> Order:
        order = await self.load_order(order_id)
        if not (order.is_owned_by(principal) or principal.is_admin):
            raise AuthorizationError("FORBIDDEN", "not allowed to cancel this order")
        return await self._cancel(order_id, principal.user_id, reason)

    async def _cancel(self, order_id: str, by: str, reason: str | None) -> Order:
        reason = reason or DEFAULT_CANCEL_REASON
        now = self.now()

        def cancel(order: Order) -> Order:
            if order.status in NON_CANCELLABLE:
                raise ConflictError(
                    "NOT_CANCELLABLE", f"order in {order.status.value} cannot be cancelled"
                )
            return transition(
                order, OrderStatus.CANCELLED, at=now, by=by, note=reason,
                cancellation_reason=reason,
            )

        # The status write wins first; only the winner compensates
        order = (await mutate_order(self.store, order_id, cancel)).after
        logger.info("order %s cancelled by %s: %s", order.order_number, by, reason)

        await self.restore_stock(order)
        if order.payment.status is PaymentStatus.COMPLETED:
            order = await self.refund_payment(order, reason)

        self.emitter.emit(EventName.CANCELLED, order.id)
        return order

    async def restore_stock(self, order: Order) -> tuple[S.Compensation, ...]:
        """Give every line's quantity back. Failures are logged per item."""
        return await S.compensate_all(
            (f"restore {item.product_id}", partial(self._restore_item, item))
            for item in order.items
        )

    async def _restore_item(self, item: OrderItem) -> int | None:
        match await self.catalog.adjust_stock(item.product_id, item.qty):
            case Ok(stock):
                return stock
            case Error(e):
                raise _stock_error(e)

    async def refund_payment(self, order: Order, reason: str) -> Order:
        """
        Refund the full final amount and record the outcome on the order.

        A failed refund leaves payment REFUND_FAILED; it never raises.
        """
        gateway_id = order.payment.gateway_id
        if gateway_id is None:
            return order

        (outcome,) = await S.compensate_all([(
            f"refund {gateway_id}",
            lambda: asyncio.wait_for(
                self.gateway.refund(gateway_id, reason, amount_cents=order.totals.final_cents),
                self.gateway_timeout,
            ),
        )])
        now = self.now()
        record: Callable[[Order], Order]

        match outcome.result:
            case Ok(refund):
                logger.info(
                    "order %s refunded %d (%s)", order.order_number, refund.amount_cents, refund.id
                )
                record = partial(_refunded, refund=refund, reason=reason, at=now)
            case Error(e):
                logger.error("refund failed for order %s: %s", order.order_number, e)
                record = partial(_refund_failed, reason=reason, at=now)

        return (await mutate_order(self.store, order.id, record)).after

    # ═══════════════════════════════════════════════════════════════════════
    # Rating
    # ═══════════════════════════════════════════════════════════════════════

    async def rate_order(
        self, principal: Principal, order_id: str, rating: int, review: str | None = None
    ) -> Result[Order, OrderError]:
        return await guarded(lambda: self._rate(principal, order_id, rating, review))

    async def _rate(
        self, principal: Principal, order_id: str, rating: int, review: str | None
    ) -> Order:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("INVALID_RATING", "rating must be an integer 1..5", field="rating")

        now = self.now()

        def rate(order: Order) -> Order:
            if not order.is_owned_by(principal):
                raise AuthorizationError("FORBIDDEN", "only the customer can rate this order")
            if order.status is not OrderStatus.DELIVERED:
                raise ConflictError("NOT_DELIVERED", "only delivered orders can be rated")
            return dataclasses.replace(order, rating=rating, review=review, updated_at=now)

        return (await mutate_order(self.store, order_id, rate)).after

    # ═══════════════════════════════════════════════════════════════════════
    # Reads
    # ═══════════════════════════════════════════════════════════════════════

    async def get_order(self, principal: Principal, order_id: str) -> Result[Order, OrderError]:
        return await guarded(lambda: self._get_visible(principal, order_id))

    async def _get_visible(self, principal: Principal, order_id: str) -> Order:
        order = await self.load_order(order_id)
        if not (
            order.is_owned_by(principal)
            or principal.role in (Role.ADMIN, Role.DELIVERY_AGENT)
        ):
            raise AuthorizationError("FORBIDDEN", "not allowed to view this order")
        return order

    async def list_orders(
        self,
        principal: Principal,
        *,
        status: OrderStatus | str | None = None,
        train_no: str | None = None,
        page: int = 1,
        limit: int = 20,
        all_orders: bool = False,
    ) -> Result[OrderPage, OrderError]:
        """Newest first. ``all_orders`` (admin only) drops the owner filter."""
        return await guarded(
            lambda: self._list(principal, status, train_no, page, limit, all_orders)
        )

    async def _list(
        self,
        principal: Principal,
        status: OrderStatus | str | None,
        train_no: str | None,
        page: int,
        limit: int,
        all_orders: bool,
    ) -> OrderPage:
        if all_orders and not principal.is_admin:
            raise AuthorizationError("FORBIDDEN", "only admins can list all orders")
        if page < 1:
            raise ValidationError("INVALID_PAGE", "page must be >= 1", field="page")
        if limit < 1:
            raise ValidationError("INVALID_LIMIT", "limit must be >= 1", field="limit")

        query = OrderQuery(
            user_id=None if all_orders else principal.user_id,
            status=parse_status(status) if status is not None else None,
            train_no=train_no,
            page=page,
            limit=min(limit, MAX_PAGE_SIZE),
        )
        items, total = await self.store.list(query)
        return OrderPage(items=tuple(items), total=total, page=query.page, limit=query.limit)

    async def order_stats(self, principal: Principal) -> Result[OrderStats, OrderError]:
        return await guarded(lambda: self._stats(principal))

    async def _stats(self, principal: Principal) -> OrderStats:
        if not principal.is_admin:
            raise AuthorizationError("FORBIDDEN", "only admins can view order stats")
        by_status = await self.store.stats()
        delivered = by_status.get(OrderStatus.DELIVERED)
        return OrderStats(
            total_orders=sum(s.count for s in by_status.values()),
            by_status=by_status,
            delivered_revenue_cents=delivered.revenue_cents if delivered else 0,
        )

    async def tracking(self, principal: Principal, order_id: str) -> Result[TrackingView, OrderError]:
        return await guarded(lambda: self._tracking(principal, order_id))

    async def _tracking(self, principal: Principal, order_id: str) -> TrackingView:
        order = await self._get_visible(principal, order_id)

        stops: tuple[TrackedStop, ...] = ()
        if order.schedule is not None:
            try:
                schedule = await self.schedules.find_schedule(
                    order.schedule.train_no, order.schedule.schedule_date
                )
            except Exception:
                logger.exception("schedule lookup failed for order %s", order.order_number)
                schedule = None
            if schedule is not None:
                stops = annotate_stops(schedule, order.schedule.station_index)

        return TrackingView(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            status_label=display_label(order.status),
            history=order.history,
            schedule=order.schedule,
            stops=stops,
            assigned_driver=order.assigned_driver,
            estimated_delivery_time=order.estimated_delivery_time,
            driver_location=order.driver_location,
        )

    async def train_schedule(
        self, train_no: str, date: str | None = None
    ) -> Result[tuple[TrackedStop, ...], OrderError]:
        """Next stops from now on the given day's run (today by default)."""
        return await guarded(lambda: self._train_schedule(train_no, date))

    async def _train_schedule(self, train_no: str, date: str | None) -> tuple[TrackedStop, ...]:
        day = date or self.readiness.today()
        schedule = await self.schedules.find_schedule(train_no, day)
        if schedule is None:
            raise NotFoundError("SCHEDULE_NOT_FOUND", f"no schedule for train {train_no} on {day}")
        return upcoming_stops(schedule, self.now(), limit=UPCOMING_STOPS)


# ═══════════════════════════════════════════════════════════════════════════════
# Refund bookkeeping
# ═══════════════════════════════════════════════════════════════════════════════

def _refunded(order: Order, *, refund: Refund, reason: str, at: datetime) -> Order:
    return dataclasses.replace(
        order,
        updated_at=at,
        payment=dataclasses.replace(
            order.payment,
            status=PaymentStatus.REFUNDED,
            refund_id=refund.id,
            refund_amount_cents=refund.amount_cents,
            refund_reason=reason,
            refunded_at=at,
        ),
    )


def _refund_failed(order: Order, *, reason: str, at: datetime) -> Order:
    return dataclasses.replace(
        order,
        updated_at=at,
        payment=dataclasses.replace(
            order.payment, status=PaymentStatus.REFUND_FAILED, refund_reason=reason
        ),
    )


__all__ = (
    "OrderEngine",
    "MAX_PAGE_SIZE",
    "DEFAULT_CANCEL_REASON",
    "new_order_id",
    "new_order_number",
)
