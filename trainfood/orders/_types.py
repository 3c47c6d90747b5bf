"""
Order domain — the Order aggregate and everything it snapshots.

Orders are immutable values: every mutation produces a new Order via
``dataclasses.replace`` and is written back with compare-and-set on
``version``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from trainfood.schedule import TrackedStop


# ═══════════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStatus(Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    RETURNED = "RETURNED"
    FAILED_PAYMENT = "FAILED_PAYMENT"


class PaymentMethod(Enum):
    COD = "COD"
    UPI = "UPI"
    CARD = "CARD"
    WALLET = "WALLET"

    @property
    def online(self) -> bool:
        return self is not PaymentMethod.COD

    @property
    def gateway_method_types(self) -> tuple[str, ...]:
        return ("upi",) if self is PaymentMethod.UPI else ("card",)


class PaymentStatus(Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    REFUND_FAILED = "REFUND_FAILED"


class DeliveryType(Enum):
    TRAIN = "train"
    STATION = "station"
    HOME = "home"


class Role(Enum):
    CUSTOMER = "customer"
    SELLER = "seller"
    DELIVERY_AGENT = "delivery_agent"
    ADMIN = "admin"


# ═══════════════════════════════════════════════════════════════════════════════
# Principal
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as verified upstream."""

    user_id: str
    role: Role = Role.CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.ADMIN, Role.SELLER, Role.DELIVERY_AGENT)


# ═══════════════════════════════════════════════════════════════════════════════
# Order parts
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class DeliveryInfo:
    type: DeliveryType
    train_no: str | None = None
    coach: str | None = None
    seat: str | None = None
    station_name: str | None = None
    address: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None


@dataclass(frozen=True)
class SelectedOption:
    name: str
    value: str | None = None
    price_cents: int = 0


@dataclass(frozen=True)
class OrderItem:
    """Line snapshot. ``price_cents`` is the unit price at purchase time."""

    product_id: str
    name: str
    qty: int
    price_cents: int
    restaurant_id: str
    note: str | None = None
    options: tuple[SelectedOption, ...] = ()

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.qty


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    tax_cents: int
    delivery_cents: int
    discount_cents: int
    coupon_code: str | None
    final_cents: int


@dataclass(frozen=True)
class Payment:
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    gateway_id: str | None = None
    paid_at: datetime | None = None
    refund_id: str | None = None
    refund_amount_cents: int | None = None
    refund_reason: str | None = None
    refunded_at: datetime | None = None


@dataclass(frozen=True)
class HistoryEntry:
    status: OrderStatus
    at: datetime
    by: str | None = None
    note: str | None = None
    event: str | None = None


@dataclass(frozen=True)
class ScheduleInfo:
    """Readiness snapshot taken at checkout; never refreshed."""

    train_no: str
    station: str
    schedule_date: str
    station_index: int
    scheduled_arrival: datetime
    scheduled_depart: datetime
    expected_ready_at: datetime
    prep_time_minutes: int


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float


# ═══════════════════════════════════════════════════════════════════════════════
# Order
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Order:
    id: str
    order_number: str
    user_id: str
    items: tuple[OrderItem, ...]
    delivery: DeliveryInfo
    totals: Totals
    payment: Payment
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    history: tuple[HistoryEntry, ...] = ()
    stage_times: dict[OrderStatus, datetime] = field(default_factory=dict)
    schedule: ScheduleInfo | None = None
    idempotency_key: str | None = None
    special_instructions: str | None = None
    assigned_driver: str | None = None
    estimated_delivery_time: datetime | None = None
    driver_location: Location | None = None
    cancellation_reason: str | None = None
    rating: int | None = None
    review: str | None = None
    delivery_otp_hash: str | None = None
    otp_expires_at: datetime | None = None
    version: int = 0

    def is_owned_by(self, principal: Principal) -> bool:
        return self.user_id == principal.user_id

    @property
    def train_no(self) -> str | None:
        return self.delivery.train_no


# ═══════════════════════════════════════════════════════════════════════════════
# Checkout input / output
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CheckoutItem:
    """Client-submitted line. Untrusted: validated before use."""

    product_id: Any
    qty: Any
    note: str | None = None
    options: tuple[SelectedOption, ...] = ()


@dataclass(frozen=True)
class DeliveryRequest:
    type: Any
    train_no: str | None = None
    coach: str | None = None
    seat: str | None = None
    station_name: str | None = None
    address: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None


@dataclass(frozen=True)
class CheckoutRequest:
    items: tuple[CheckoutItem, ...]
    delivery: DeliveryRequest
    payment_method: Any
    coupon_code: str | None = None
    special_instructions: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class CheckoutReceipt:
    order_id: str
    order_number: str
    total_cents: int
    status: OrderStatus
    client_secret: str | None = None
    replayed: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class OrderQuery:
    user_id: str | None = None
    status: OrderStatus | None = None
    train_no: str | None = None
    page: int = 1
    limit: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class OrderPage:
    items: tuple[Order, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass(frozen=True)
class StatusStats:
    count: int
    revenue_cents: int


@dataclass(frozen=True)
class OrderStats:
    total_orders: int
    by_status: dict[OrderStatus, StatusStats]
    delivered_revenue_cents: int


@dataclass(frozen=True)
class TrackingView:
    order_id: str
    order_number: str
    status: OrderStatus
    status_label: str
    history: tuple[HistoryEntry, ...]
    schedule: ScheduleInfo | None
    stops: tuple[TrackedStop, ...]
    assigned_driver: str | None
    estimated_delivery_time: datetime | None
    driver_location: Location | None


@dataclass(frozen=True)
class PaymentConfirmation:
    order: Order
    already_completed: bool


@dataclass(frozen=True)
class WebhookAck:
    received: bool
    event_type: str
    order_id: str | None = None
    applied: bool = False


@dataclass(frozen=True)
class DeliveryOtp:
    """Handover code shown to the customer once; only its digest is stored."""

    code: str
    expires_at: datetime
    expires_in: int


__all__ = (
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "DeliveryType",
    "Role",
    "Principal",
    "DeliveryInfo",
    "SelectedOption",
    "OrderItem",
    "Totals",
    "Payment",
    "HistoryEntry",
    "ScheduleInfo",
    "Location",
    "Order",
    "CheckoutItem",
    "DeliveryRequest",
    "CheckoutRequest",
    "CheckoutReceipt",
    "OrderQuery",
    "OrderPage",
    "StatusStats",
    "OrderStats",
    "TrackingView",
    "PaymentConfirmation",
    "WebhookAck",
    "DeliveryOtp",
)
