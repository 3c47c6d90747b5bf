"""Tests for status updates, assignment, cancellation, rating and reads."""

import asyncio
from datetime import timedelta

import pytest
from kungfu import Ok

from trainfood.errors import AuthorizationError, ConflictError, GatewayError, NotFoundError, ValidationError
from trainfood.events import EventName
from trainfood.orders import (
    DEFAULT_CANCEL_REASON,
    MAX_PAGE_SIZE,
    Location,
    OrderStatus,
    PaymentStatus,
)
from trainfood.schedule import StopState

from .conftest import NOW, TRAIN, checkout, err, ok, station_delivery, train_delivery

S = OrderStatus


async def place(engine, principal, *items, **kwargs):
    receipt = ok(await engine.create_order(principal, checkout(*(items or (("biryani", 2),)), **kwargs)))
    return receipt.order_id


async def walk(engine, staff, order_id, *statuses):
    for status in statuses:
        ok(await engine.update_status(staff, order_id, status))


class TestUpdateStatus:
    async def test_kitchen_flow(self, engine, seller, customer):
        order_id = await place(engine, customer)

        order = ok(await engine.update_status(seller, order_id, "PREPARING", note="on the stove"))
        assert order.status is S.PREPARING
        assert order.history[-1].by == "seller-1"
        assert order.history[-1].note == "on the stove"

        order = ok(await engine.update_status(seller, order_id, "Ready"))
        assert order.status is S.READY_FOR_PICKUP
        assert order.version == 3

    async def test_customer_cannot_change_status(self, engine, customer):
        order_id = await place(engine, customer)
        error = err(await engine.update_status(customer, order_id, "PREPARING"))
        assert isinstance(error, AuthorizationError)

    async def test_illegal_transition(self, engine, seller, customer):
        order_id = await place(engine, customer)
        error = err(await engine.update_status(seller, order_id, "DELIVERED"))
        assert isinstance(error, ConflictError)
        assert error.code == "ILLEGAL_TRANSITION"

    async def test_unknown_status(self, engine, seller, customer):
        order_id = await place(engine, customer)
        error = err(await engine.update_status(seller, order_id, "LOST"))
        assert isinstance(error, ValidationError)
        assert error.code == "INVALID_STATUS"

    async def test_unknown_order(self, engine, seller):
        error = err(await engine.update_status(seller, "ord_missing", "PREPARING"))
        assert isinstance(error, NotFoundError)
        assert error.code == "ORDER_NOT_FOUND"

    async def test_pickup_records_driver_location(self, engine, seller, agent, customer, emitter, recorder):
        order_id = await place(engine, customer)
        await walk(engine, seller, order_id, "PREPARING", "READY_FOR_PICKUP")

        order = ok(await engine.update_status(
            agent, order_id, "PickedUp", driver_location=Location(25.18, 75.83)
        ))
        assert order.status is S.OUT_FOR_DELIVERY
        assert order.driver_location == Location(25.18, 75.83)

        ok(await engine.update_status(agent, order_id, "DELIVERED"))
        await emitter.drain()
        assert recorder.names(order_id) == [
            EventName.CREATED, EventName.PICKED_UP, EventName.DELIVERED,
        ]

    async def test_cancel_through_status_compensates(self, engine, seller, customer, catalog):
        order_id = await place(engine, customer, ("thali", 2))
        order = ok(await engine.update_status(seller, order_id, "CANCELLED", note="kitchen closed"))

        assert order.status is S.CANCELLED
        assert order.cancellation_reason == "kitchen closed"
        assert catalog.get("thali").stock == 3


class TestAssign:
    async def test_assigns_ready_order(self, engine, admin, seller, customer, clock, emitter, recorder):
        order_id = await place(engine, customer)
        await walk(engine, seller, order_id, "PREPARING", "READY_FOR_PICKUP")

        order = ok(await engine.assign_order(admin, order_id, "agent-7"))
        assert order.status is S.OUT_FOR_DELIVERY
        assert order.assigned_driver == "agent-7"
        assert order.estimated_delivery_time == NOW + timedelta(minutes=45)

        await emitter.drain()
        assert recorder.names(order_id)[-2:] == [EventName.ASSIGNED, EventName.PICKED_UP]

    async def test_admin_only(self, engine, seller, customer):
        order_id = await place(engine, customer)
        error = err(await engine.assign_order(seller, order_id, "agent-7"))
        assert isinstance(error, AuthorizationError)

    async def test_unknown_agent(self, engine, admin, customer):
        order_id = await place(engine, customer)
        error = err(await engine.assign_order(admin, order_id, "agent-404"))
        assert isinstance(error, NotFoundError)
        assert error.code == "AGENT_NOT_FOUND"

    async def test_order_not_ready(self, engine, admin, customer):
        order_id = await place(engine, customer)
        error = err(await engine.assign_order(admin, order_id, "agent-7"))
        assert isinstance(error, ConflictError)
        assert error.code == "NOT_READY_FOR_PICKUP"


class TestCancel:
    async def test_owner_cancels_cod_order(self, engine, customer, catalog, emitter, recorder):
        order_id = await place(engine, customer, ("biryani", 2), ("thali", 1))
        assert catalog.get("biryani").stock == 8

        order = ok(await engine.cancel_order(customer, order_id))
        assert order.status is S.CANCELLED
        assert order.cancellation_reason == DEFAULT_CANCEL_REASON
        assert order.payment.status is PaymentStatus.PENDING
        assert catalog.get("biryani").stock == 10
        assert catalog.get("thali").stock == 3

        await emitter.drain()
        assert recorder.names(order_id) == [EventName.CREATED, EventName.CANCELLED]

    async def test_stranger_cannot_cancel(self, engine, customer, stranger):
        order_id = await place(engine, customer)
        error = err(await engine.cancel_order(stranger, order_id))
        assert isinstance(error, AuthorizationError)

    async def test_admin_can_cancel(self, engine, customer, admin):
        order_id = await place(engine, customer)
        order = ok(await engine.cancel_order(admin, order_id, "duplicate order"))
        assert order.cancellation_reason == "duplicate order"
        assert order.history[-1].by == "admin-1"

    async def test_too_late_once_picked_up(self, engine, customer, seller, catalog):
        order_id = await place(engine, customer)
        await walk(engine, seller, order_id, "PREPARING", "READY_FOR_PICKUP", "OUT_FOR_DELIVERY")

        error = err(await engine.cancel_order(customer, order_id))
        assert isinstance(error, ConflictError)
        assert error.code == "NOT_CANCELLABLE"
        assert catalog.get("biryani").stock == 8

    async def test_second_cancel_restores_nothing(self, engine, customer, catalog):
        order_id = await place(engine, customer)
        ok(await engine.cancel_order(customer, order_id))

        error = err(await engine.cancel_order(customer, order_id))
        assert error.code == "NOT_CANCELLABLE"
        assert catalog.get("biryani").stock == 10

    async def test_concurrent_cancels_compensate_once(self, engine, customer, admin, catalog):
        order_id = await place(engine, customer, ("thali", 2))
        results = await asyncio.gather(
            engine.cancel_order(customer, order_id),
            engine.cancel_order(admin, order_id),
        )
        assert sum(isinstance(r, Ok) for r in results) == 1
        assert catalog.get("thali").stock == 3

    async def test_paid_order_is_refunded(self, engine, reconciler, gateway, customer):
        order_id = await place(engine, customer, method="UPI")
        await reconciler.complete(order_id, by="gateway")

        order = ok(await engine.cancel_order(customer, order_id, "train delayed"))
        assert order.status is S.CANCELLED
        assert order.payment.status is PaymentStatus.REFUNDED
        assert order.payment.refund_amount_cents == order.totals.final_cents
        assert order.payment.refund_reason == "train delayed"
        assert order.payment.refund_id == gateway.refunds[0].id
        assert order.payment.refunded_at == NOW

    async def test_refund_failure_is_recorded(self, engine, reconciler, gateway, customer, catalog):
        order_id = await place(engine, customer, method="CARD")
        await reconciler.complete(order_id, by="gateway")
        gateway.fail_next("refund", GatewayError("card_declined", "refund declined"))

        order = ok(await engine.cancel_order(customer, order_id))
        assert order.status is S.CANCELLED
        assert order.payment.status is PaymentStatus.REFUND_FAILED
        assert catalog.get("biryani").stock == 10

    async def test_unpaid_online_order_is_not_refunded(self, engine, gateway, customer):
        order_id = await place(engine, customer, method="UPI")
        order = ok(await engine.cancel_order(customer, order_id))
        assert order.payment.status is PaymentStatus.PENDING
        assert gateway.refunds == []


class TestRating:
    async def delivered(self, engine, seller, customer):
        order_id = await place(engine, customer)
        await walk(engine, seller, order_id, "PREPARING", "READY_FOR_PICKUP", "OUT_FOR_DELIVERY", "DELIVERED")
        return order_id

    async def test_rate_delivered_order(self, engine, seller, customer):
        order_id = await self.delivered(engine, seller, customer)
        order = ok(await engine.rate_order(customer, order_id, 5, "hot and on time"))
        assert order.rating == 5
        assert order.review == "hot and on time"

    @pytest.mark.parametrize("rating", [0, 6, True, "5"])
    async def test_invalid_rating(self, engine, seller, customer, rating):
        order_id = await self.delivered(engine, seller, customer)
        error = err(await engine.rate_order(customer, order_id, rating))
        assert isinstance(error, ValidationError)
        assert error.code == "INVALID_RATING"

    async def test_not_delivered(self, engine, customer):
        order_id = await place(engine, customer)
        error = err(await engine.rate_order(customer, order_id, 4))
        assert error.code == "NOT_DELIVERED"

    async def test_only_owner_rates(self, engine, seller, customer, stranger):
        order_id = await self.delivered(engine, seller, customer)
        error = err(await engine.rate_order(stranger, order_id, 1))
        assert isinstance(error, AuthorizationError)


class TestReads:
    async def test_visibility(self, engine, customer, stranger, admin, agent, seller):
        order_id = await place(engine, customer)
        assert ok(await engine.get_order(customer, order_id)).id == order_id
        assert ok(await engine.get_order(admin, order_id)).id == order_id
        assert ok(await engine.get_order(agent, order_id)).id == order_id
        assert isinstance(err(await engine.get_order(stranger, order_id)), AuthorizationError)
        assert isinstance(err(await engine.get_order(seller, order_id)), AuthorizationError)

    async def test_missing_order(self, engine, customer):
        error = err(await engine.get_order(customer, "ord_missing"))
        assert error.code == "ORDER_NOT_FOUND"

    async def test_list_own_orders_newest_first(self, engine, customer, stranger, clock):
        first = await place(engine, customer, ("chai", 1))
        clock.advance(minutes=1)
        second = await place(engine, customer, ("chai", 2))
        clock.advance(minutes=1)
        await place(engine, stranger, ("chai", 1))

        page = ok(await engine.list_orders(customer))
        assert [o.id for o in page.items] == [second, first]
        assert page.total == 2
        assert page.pages == 1

    async def test_list_same_timestamp_orders_by_id(self, engine, customer):
        placed = [await place(engine, customer, ("chai", 1)) for _ in range(4)]

        page = ok(await engine.list_orders(customer))
        assert [o.id for o in page.items] == sorted(placed, reverse=True)

    async def test_list_filters(self, engine, customer, seller, clock):
        kept = await place(engine, customer, ("chai", 1))
        clock.advance(minutes=1)
        await place(engine, customer, ("chai", 1), delivery=station_delivery())
        await walk(engine, seller, kept, "PREPARING")

        by_status = ok(await engine.list_orders(customer, status="PREPARING"))
        assert [o.id for o in by_status.items] == [kept]

        by_train = ok(await engine.list_orders(customer, train_no=TRAIN))
        assert [o.id for o in by_train.items] == [kept]

    async def test_pagination(self, engine, customer, clock):
        for _ in range(5):
            await place(engine, customer, ("chai", 1))
            clock.advance(seconds=1)

        page = ok(await engine.list_orders(customer, page=2, limit=2))
        assert len(page.items) == 2
        assert page.total == 5
        assert page.pages == 3

        last = ok(await engine.list_orders(customer, page=3, limit=2))
        assert len(last.items) == 1

    async def test_limit_is_capped(self, engine, customer):
        page = ok(await engine.list_orders(customer, limit=500))
        assert page.limit == MAX_PAGE_SIZE

    @pytest.mark.parametrize(("page", "limit", "code"), [(0, 20, "INVALID_PAGE"), (1, 0, "INVALID_LIMIT")])
    async def test_invalid_paging(self, engine, customer, page, limit, code):
        error = err(await engine.list_orders(customer, page=page, limit=limit))
        assert error.code == code

    async def test_all_orders_admin_only(self, engine, customer, stranger, admin):
        await place(engine, customer, ("chai", 1))
        await place(engine, stranger, ("chai", 1))

        assert ok(await engine.list_orders(admin, all_orders=True)).total == 2
        error = err(await engine.list_orders(customer, all_orders=True))
        assert isinstance(error, AuthorizationError)

    async def test_stats(self, engine, customer, seller, admin):
        delivered = await place(engine, customer, ("chai", 1))
        await walk(engine, seller, delivered, "PREPARING", "READY_FOR_PICKUP", "OUT_FOR_DELIVERY", "DELIVERED")
        await place(engine, customer, ("chai", 2))
        cancelled = await place(engine, customer, ("chai", 3))
        ok(await engine.cancel_order(customer, cancelled))

        stats = ok(await engine.order_stats(admin))
        assert stats.total_orders == 3
        assert stats.by_status[S.DELIVERED].count == 1
        assert stats.by_status[S.CONFIRMED].count == 1
        assert stats.by_status[S.CANCELLED].count == 1
        assert stats.delivered_revenue_cents == stats.by_status[S.DELIVERED].revenue_cents > 0

        assert isinstance(err(await engine.order_stats(customer)), AuthorizationError)


class TestTracking:
    async def test_train_order_stops(self, engine, customer, seller):
        order_id = await place(engine, customer, ("chai", 1))
        await walk(engine, seller, order_id, "PREPARING")

        view = ok(await engine.tracking(customer, order_id))
        assert view.status is S.PREPARING
        assert view.status_label == "Preparing"
        assert [h.status for h in view.history] == [S.CONFIRMED, S.PREPARING]
        assert view.schedule.station == "KOTA"
        assert [s.state for s in view.stops[:3]] == [
            StopState.PASSED, StopState.PASSED, StopState.UPCOMING,
        ]
        assert len(view.stops) == 7

    async def test_station_order_has_no_stops(self, engine, customer):
        order_id = await place(engine, customer, ("chai", 1), delivery=station_delivery())
        view = ok(await engine.tracking(customer, order_id))
        assert view.schedule is None
        assert view.stops == ()

    async def test_hidden_from_strangers(self, engine, customer, stranger):
        order_id = await place(engine, customer, ("chai", 1), delivery=train_delivery())
        assert isinstance(err(await engine.tracking(stranger, order_id)), AuthorizationError)


class TestTrainSchedule:
    async def test_upcoming_stops_today(self, engine):
        stops = ok(await engine.train_schedule(TRAIN))
        assert [s.station for s in stops] == ["KOTA", "RTM", "BRC", "ST", "BVI"]

    async def test_unknown_train(self, engine):
        error = err(await engine.train_schedule("00000"))
        assert isinstance(error, NotFoundError)
        assert error.code == "SCHEDULE_NOT_FOUND"

    async def test_other_day(self, engine):
        error = err(await engine.train_schedule(TRAIN, "2026-03-15"))
        assert error.code == "SCHEDULE_NOT_FOUND"
