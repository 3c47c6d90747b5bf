"""Tests for checkout: validation, stock, payment intent, idempotency."""

import asyncio
import dataclasses
import re

import pytest
from kungfu import Ok

from trainfood.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from trainfood.events import EventName
from trainfood.orders import (
    CheckoutItem,
    CheckoutRequest,
    DeliveryRequest,
    MemoryOrderStore,
    OrderEngine,
    OrderQuery,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    SelectedOption,
)

from .conftest import TRAIN, at, checkout, err, ok, station_delivery, train_delivery


class BrokenInsertStore(MemoryOrderStore):
    async def insert(self, order):
        raise RuntimeError("disk full")


class TestCashOnDelivery:
    async def test_places_confirmed_order(self, engine, store, catalog, customer):
        receipt = ok(await engine.create_order(customer, checkout(("biryani", 2))))

        assert receipt.status is OrderStatus.CONFIRMED
        assert receipt.client_secret is None
        assert receipt.replayed is False
        assert receipt.total_cents == 55500
        assert re.fullmatch(r"TF\d{13}[A-Z0-9]{5}", receipt.order_number)
        assert catalog.get("biryani").stock == 8

        order = await store.get(receipt.order_id)
        assert order.user_id == "user-1"
        assert order.version == 1
        assert order.payment.method is PaymentMethod.COD
        assert order.payment.status is PaymentStatus.PENDING
        assert order.items[0].price_cents == 25000
        assert order.history[0].note == "Order placed"
        assert OrderStatus.CONFIRMED in order.stage_times

    async def test_price_change_does_not_touch_placed_order(self, engine, store, catalog, customer):
        receipt = ok(await engine.create_order(customer, checkout(("biryani", 2), ("chai", 1))))
        before = await store.get(receipt.order_id)

        catalog.put(dataclasses.replace(catalog.get("biryani"), price_cents=99000))
        catalog.put(dataclasses.replace(catalog.get("chai"), price_cents=1))

        order = await store.get(receipt.order_id)
        assert order.totals == before.totals
        assert order.totals.final_cents == receipt.total_cents
        assert [i.price_cents for i in order.items] == [25000, 2000]

    async def test_emits_created(self, engine, emitter, recorder, customer):
        receipt = ok(await engine.create_order(customer, checkout(("chai", 1))))
        await emitter.drain()
        assert recorder.names(receipt.order_id) == [EventName.CREATED]

    async def test_snapshots_readiness(self, engine, store, customer):
        receipt = ok(await engine.create_order(customer, checkout(("chai", 1))))
        schedule = (await store.get(receipt.order_id)).schedule

        assert schedule is not None
        assert schedule.train_no == TRAIN
        assert schedule.station == "KOTA"
        assert schedule.station_index == 2
        assert schedule.scheduled_arrival == at(12, 0)
        assert schedule.expected_ready_at == at(11, 32)
        assert schedule.prep_time_minutes == 20

    async def test_unknown_train_still_places_order(self, engine, store, customer):
        request = checkout(("chai", 1), delivery=train_delivery(train_no="99999"))
        receipt = ok(await engine.create_order(customer, request))
        assert (await store.get(receipt.order_id)).schedule is None

    async def test_station_delivery_has_no_schedule(self, engine, store, customer):
        request = checkout(("chai", 1), delivery=station_delivery())
        receipt = ok(await engine.create_order(customer, request))
        order = await store.get(receipt.order_id)
        assert order.schedule is None
        assert order.totals.delivery_cents == 2000

    async def test_option_prices_join_unit_price(self, engine, store, customer):
        request = CheckoutRequest(
            items=(CheckoutItem(
                "biryani", 2, options=(SelectedOption("raita", "large", 1500),)
            ),),
            delivery=train_delivery(),
            payment_method="cod",
        )
        receipt = ok(await engine.create_order(customer, request))
        order = await store.get(receipt.order_id)
        assert order.items[0].price_cents == 26500
        assert order.totals.subtotal_cents == 53000

    async def test_unlimited_stock_never_blocks(self, engine, catalog, customer):
        ok(await engine.create_order(customer, checkout(("chai", 99))))
        assert catalog.get("chai").stock is None


class TestOnlinePayment:
    async def test_opens_intent_for_final_total(self, engine, gateway, store, customer):
        receipt = ok(await engine.create_order(
            customer, checkout(("biryani", 2), method="UPI", coupon="FIRST10")
        ))

        assert receipt.status is OrderStatus.PENDING
        assert receipt.client_secret == "pi_fake_1_secret"

        intent = gateway.intents["pi_fake_1"]
        assert intent.amount_cents == receipt.total_cents == 54450
        assert intent.currency == "inr"
        assert intent.metadata == {
            "orderId": receipt.order_id,
            "userId": "user-1",
            "orderType": "train",
        }
        order = await store.get(receipt.order_id)
        assert order.payment.gateway_id == "pi_fake_1"
        assert order.totals.coupon_code == "FIRST10"

    async def test_gateway_failure_releases_stock(self, engine, gateway, store, catalog, customer):
        gateway.fail_next(
            "create_intent", GatewayError("GATEWAY_UNAVAILABLE", "down", retryable=True)
        )
        error = err(await engine.create_order(
            customer, checkout(("biryani", 2), ("thali", 1), method="CARD")
        ))

        assert isinstance(error, GatewayError)
        assert error.retryable
        assert catalog.get("biryani").stock == 10
        assert catalog.get("thali").stock == 3
        assert (await store.list(OrderQuery()))[1] == 0

    async def test_gateway_timeout_is_retryable(self, engine, gateway, customer):
        engine.gateway_timeout = 0.01
        gateway.set_latency(0.2)
        error = err(await engine.create_order(customer, checkout(("chai", 1), method="CARD")))
        assert isinstance(error, GatewayError)
        assert error.code == "GATEWAY_TIMEOUT"
        assert error.retryable

    async def test_persist_failure_rolls_back_stock_and_intent(
        self, catalog, schedules, gateway, emitter, agents, clock, customer
    ):
        engine = OrderEngine(
            catalog=catalog,
            schedules=schedules,
            gateway=gateway,
            store=BrokenInsertStore(),
            emitter=emitter,
            agents=agents,
            clock=clock,
        )
        error = err(await engine.create_order(customer, checkout(("thali", 2), method="UPI")))

        assert isinstance(error, StorageError)
        assert catalog.get("thali").stock == 3
        assert gateway.cancelled == ["pi_fake_1"]


class TestValidation:
    @pytest.mark.parametrize(
        ("request_", "code"),
        [
            (CheckoutRequest((), train_delivery(), "COD"), "ITEMS_REQUIRED"),
            (checkout(("biryani", 0)), "INVALID_QUANTITY"),
            (checkout(("biryani", 100)), "INVALID_QUANTITY"),
            (CheckoutRequest((CheckoutItem("biryani", True),), train_delivery(), "COD"), "INVALID_QUANTITY"),
            (CheckoutRequest((CheckoutItem("biryani", "2"),), train_delivery(), "COD"), "INVALID_QUANTITY"),
            (CheckoutRequest((CheckoutItem("", 1),), train_delivery(), "COD"), "INVALID_PRODUCT"),
            (CheckoutRequest((CheckoutItem(42, 1),), train_delivery(), "COD"), "INVALID_PRODUCT"),
            (checkout(("biryani", 1), method="BITCOIN"), "INVALID_PAYMENT_METHOD"),
            (checkout(("biryani", 1), delivery=DeliveryRequest(type="drone")), "INVALID_DELIVERY_TYPE"),
            (checkout(("biryani", 1), delivery=DeliveryRequest(type="train", train_no=TRAIN, coach="B2")), "DELIVERY_FIELD_REQUIRED"),
            (checkout(("biryani", 1), delivery=DeliveryRequest(type="home", address="  ")), "DELIVERY_FIELD_REQUIRED"),
            (checkout(("biryani", 1), key=""), "INVALID_IDEMPOTENCY_KEY"),
            (checkout(("biryani", 1), key="k" * 256), "INVALID_IDEMPOTENCY_KEY"),
            (
                CheckoutRequest(
                    (CheckoutItem("biryani", 1, options=(SelectedOption("extra", None, -100),)),),
                    train_delivery(),
                    "COD",
                ),
                "INVALID_OPTION",
            ),
        ],
    )
    async def test_rejected_before_side_effects(
        self, engine, catalog, gateway, store, customer, request_, code
    ):
        error = err(await engine.create_order(customer, request_))

        assert isinstance(error, ValidationError)
        assert error.code == code
        assert catalog.get("biryani").stock == 10
        assert gateway.intents == {}
        assert (await store.list(OrderQuery()))[1] == 0

    async def test_reports_field(self, engine, customer):
        error = err(await engine.create_order(customer, checkout(("biryani", 1), ("thali", 0))))
        assert error.field == "items[1].qty"


class TestCatalogChecks:
    async def test_unknown_product(self, engine, catalog, customer):
        error = err(await engine.create_order(customer, checkout(("biryani", 1), ("ghost", 1))))
        assert isinstance(error, NotFoundError)
        assert error.code == "PRODUCT_NOT_FOUND"
        assert catalog.get("biryani").stock == 10

    @pytest.mark.parametrize("product_id", ["retired", "soldout"])
    async def test_unorderable_product(self, engine, product_id, customer):
        error = err(await engine.create_order(customer, checkout((product_id, 1))))
        assert isinstance(error, ConflictError)
        assert error.code == "PRODUCT_UNAVAILABLE"

    async def test_insufficient_stock(self, engine, catalog, customer):
        error = err(await engine.create_order(customer, checkout(("thali", 4))))
        assert error.code == "INSUFFICIENT_STOCK"
        assert catalog.get("thali").stock == 3

    async def test_quantities_aggregate_per_product(self, engine, catalog, customer):
        error = err(await engine.create_order(customer, checkout(("thali", 2), ("thali", 2))))
        assert error.code == "INSUFFICIENT_STOCK"
        assert catalog.get("thali").stock == 3

    async def test_later_line_failure_releases_earlier_reservations(self, engine, catalog, customer):
        # Stock drops between the quote and the reservation
        orig_reserve = catalog.reserve_stock

        async def reserve(product_id, qty):
            if product_id == "thali":
                await catalog.adjust_stock("thali", -3)
            return await orig_reserve(product_id, qty)

        catalog.reserve_stock = reserve
        error = err(await engine.create_order(customer, checkout(("biryani", 2), ("thali", 1))))

        assert error.code == "INSUFFICIENT_STOCK"
        assert catalog.get("biryani").stock == 10


class TestConcurrency:
    async def test_no_oversell(self, engine, catalog, store, customer):
        results = await asyncio.gather(*(
            engine.create_order(customer, checkout(("thali", 1))) for _ in range(5)
        ))
        placed = [r for r in results if isinstance(r, Ok)]
        rejected = [err(r) for r in results if not isinstance(r, Ok)]

        assert len(placed) == 3
        assert {e.code for e in rejected} == {"INSUFFICIENT_STOCK"}
        assert catalog.get("thali").stock == 0


class TestIdempotency:
    async def test_replay_returns_same_order(self, engine, catalog, customer):
        first = ok(await engine.create_order(customer, checkout(("biryani", 1), key="k-1")))
        second = ok(await engine.create_order(customer, checkout(("biryani", 1), key="k-1")))

        assert second.order_id == first.order_id
        assert second.order_number == first.order_number
        assert second.replayed is True
        assert catalog.get("biryani").stock == 9

    async def test_replay_carries_no_client_secret(self, engine, gateway, customer):
        first = ok(await engine.create_order(customer, checkout(("chai", 1), method="UPI", key="k-2")))
        second = ok(await engine.create_order(customer, checkout(("chai", 1), method="UPI", key="k-2")))

        assert first.client_secret is not None
        assert second.client_secret is None
        assert len(gateway.intents) == 1

    async def test_key_of_another_user(self, engine, customer, stranger):
        ok(await engine.create_order(customer, checkout(("chai", 1), key="k-3")))
        error = err(await engine.create_order(stranger, checkout(("chai", 1), key="k-3")))
        assert isinstance(error, ConflictError)
        assert error.code == "IDEMPOTENCY_KEY_REUSED"

    async def test_concurrent_duplicates_converge(self, engine, catalog, gateway, store, customer):
        gateway.set_latency(0.01)
        results = await asyncio.gather(*(
            engine.create_order(customer, checkout(("biryani", 1), method="UPI", key="k-4"))
            for _ in range(2)
        ))
        receipts = [ok(r) for r in results]

        assert receipts[0].order_id == receipts[1].order_id
        assert catalog.get("biryani").stock == 9
        assert sum(r.replayed for r in receipts) == 1
        # The loser's intent is voided
        assert len(gateway.cancelled) == len(gateway.intents) - 1

    async def test_duplicate_replays_when_stock_runs_out(self, engine, catalog, gateway, customer):
        gateway.set_latency(0.01)
        results = await asyncio.gather(*(
            engine.create_order(customer, checkout(("thali", 3), method="UPI", key="k-dup"))
            for _ in range(2)
        ))
        receipts = [ok(r) for r in results]

        assert receipts[0].order_id == receipts[1].order_id
        assert sorted(r.replayed for r in receipts) == [False, True]
        assert catalog.get("thali").stock == 0
        assert len(gateway.intents) == 1
        assert len(engine._claims) == 0

    async def test_failed_keyed_checkout_releases_claim(self, engine, catalog, customer):
        error = err(await engine.create_order(customer, checkout(("thali", 4), key="k-big")))
        assert error.code == "INSUFFICIENT_STOCK"
        assert len(engine._claims) == 0

        receipt = ok(await engine.create_order(customer, checkout(("thali", 3), key="k-big")))
        assert not receipt.replayed
