"""Pytest fixtures for trainfood tests."""

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from kungfu import Error, Ok, Result

from trainfood.catalog import MemoryCatalog, Product, Restaurant
from trainfood.events import OrderEvent, QueueEmitter
from trainfood.orders import (
    CheckoutItem,
    CheckoutRequest,
    DeliveryDesk,
    DeliveryRequest,
    MemoryAgents,
    MemoryOrderStore,
    OrderEngine,
    PaymentReconciler,
    PricingRules,
    Principal,
    Role,
)
from trainfood.payment import FakeGateway
from trainfood.schedule import MemorySchedules, Stop, TrainSchedule

NOW = datetime(2026, 3, 14, 9, 0, tzinfo=UTC)
TODAY = "2026-03-14"
TRAIN = "12951"
WEBHOOK_SECRET = "whsec_test_secret"


def at(hour: int, minute: int = 0) -> datetime:
    return NOW.replace(hour=hour, minute=minute)


# --- Helpers ---


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[OrderEvent] = []

    async def __call__(self, event: OrderEvent) -> None:
        self.events.append(event)

    def names(self, order_id: str | None = None) -> list[str]:
        return [e.name for e in self.events if order_id is None or e.order_id == order_id]


def ok(result: Result[Any, Any]) -> Any:
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise AssertionError(f"expected Ok, got Error({e!r})")


def err(result: Result[Any, Any]) -> Any:
    match result:
        case Ok(value):
            raise AssertionError(f"expected Error, got Ok({value!r})")
        case Error(e):
            return e


def train_delivery(station: str = "KOTA", train_no: str = TRAIN) -> DeliveryRequest:
    return DeliveryRequest(
        type="train", train_no=train_no, coach="B2", seat="34", station_name=station
    )


def station_delivery(station: str = "KOTA") -> DeliveryRequest:
    return DeliveryRequest(type="station", station_name=station)


def checkout(
    *items: tuple[str, int],
    delivery: DeliveryRequest | None = None,
    method: str = "COD",
    coupon: str | None = None,
    key: str | None = None,
) -> CheckoutRequest:
    return CheckoutRequest(
        items=tuple(CheckoutItem(product_id=pid, qty=qty) for pid, qty in items),
        delivery=delivery or train_delivery(),
        payment_method=method,
        coupon_code=coupon,
        idempotency_key=key,
    )


def timetable(date: str = TODAY) -> TrainSchedule:
    return TrainSchedule(
        train_no=TRAIN,
        date=date,
        stops=(
            Stop("NDLS", at(6, 0), at(6, 15)),
            Stop("MTJ", at(8, 0), at(8, 5)),
            Stop("KOTA", at(12, 0), at(12, 10)),
            Stop("RTM", at(15, 0), at(15, 5)),
            Stop("BRC", at(18, 0), at(18, 10)),
            Stop("ST", at(19, 30), at(19, 35)),
            Stop("BVI", at(22, 0), at(22, 5)),
        ),
    )


# --- Fixtures ---


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def catalog():
    return MemoryCatalog(
        products=[
            Product("biryani", "Veg Biryani", 25000, "r1", stock=10),
            Product("thali", "Rajasthani Thali", 18000, "r1", stock=3),
            Product("chai", "Masala Chai", 2000, "r1"),
            Product("samosa", "Samosa", 1500, "r1", stock=5),
            Product("retired", "Old Special", 9900, "r1", stock=5, is_active=False),
            Product("soldout", "Kachori", 3000, "r1", stock=5, available=False),
        ],
        restaurants=[Restaurant("r1", "Spice Route", station="KOTA")],
    )


@pytest.fixture
def schedules():
    return MemorySchedules([timetable()])


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store():
    return MemoryOrderStore()


@pytest.fixture
def agents():
    return MemoryAgents(["agent-7"])


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
async def emitter(recorder):
    emitter = QueueEmitter([recorder], delay=0, retry_backoff=0)
    yield emitter
    await emitter.aclose()


@pytest.fixture
def engine(catalog, schedules, gateway, store, emitter, agents, clock):
    return OrderEngine(
        catalog=catalog,
        schedules=schedules,
        gateway=gateway,
        store=store,
        emitter=emitter,
        agents=agents,
        pricing=PricingRules(),
        clock=clock,
    )


@pytest.fixture
def reconciler(engine):
    return PaymentReconciler(engine, WEBHOOK_SECRET)


@pytest.fixture
def desk(engine):
    return DeliveryDesk(engine)


@pytest.fixture
def customer():
    return Principal("user-1")


@pytest.fixture
def stranger():
    return Principal("user-2")


@pytest.fixture
def admin():
    return Principal("admin-1", Role.ADMIN)


@pytest.fixture
def seller():
    return Principal("seller-1", Role.SELLER)


@pytest.fixture
def agent():
    return Principal("agent-7", Role.DELIVERY_AGENT)
