"""
HTTP codecs — pydantic bodies translated to and from domain values.

Request bodies implement ``to_domain()``; response bodies implement
``from_domain()``. JSON keys are camelCase on the wire.

Checkout fields that the engine validates itself (product ids, quantities,
delivery type, payment method, rating) are typed loosely here so that a bad
value reaches the engine and comes back as a coded 400, not a schema error.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, TypeVar

from pydantic import AliasGenerator, BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from trainfood.errors import OrderError, ValidationError
from trainfood.orders import (
    CheckoutItem,
    CheckoutReceipt,
    CheckoutRequest,
    DeliveryOtp,
    DeliveryRequest,
    DeliveryType,
    Location,
    Order,
    OrderPage,
    OrderStats,
    OrderStatus,
    PaymentConfirmation,
    PaymentMethod,
    PaymentStatus,
    SelectedOption,
    TrackingView,
    WebhookAck,
    display_label,
)
from trainfood.schedule import StopState, TrackedStop

DomainT_co = TypeVar("DomainT_co", covariant=True)
DomainT_contra = TypeVar("DomainT_contra", contravariant=True)


class ToDomain(Protocol[DomainT_co]):
    def to_domain(self) -> DomainT_co: ...


class FromDomain(Protocol[DomainT_contra]):
    @classmethod
    def from_domain(cls, dom: DomainT_contra) -> FromDomain[DomainT_contra]: ...


class _In(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Out(BaseModel):
    model_config = ConfigDict(
        alias_generator=AliasGenerator(serialization_alias=to_camel),
        from_attributes=True,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════════

class OptionIn(_In):
    name: str
    value: str | None = None
    price_cents: int = 0

    def to_domain(self) -> SelectedOption:
        return SelectedOption(name=self.name, value=self.value, price_cents=self.price_cents)


class ItemIn(_In):
    product_id: Any = None
    qty: Any = None
    note: str | None = None
    options: list[OptionIn] = Field(default_factory=list)

    def to_domain(self) -> CheckoutItem:
        return CheckoutItem(
            product_id=self.product_id,
            qty=self.qty,
            note=self.note,
            options=tuple(o.to_domain() for o in self.options),
        )


class DeliveryIn(_In):
    type: Any = None
    train_no: str | None = None
    coach: str | None = None
    seat: str | None = None
    station_name: str | None = None
    address: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None

    def to_domain(self) -> DeliveryRequest:
        return DeliveryRequest(**self.model_dump())


class CheckoutIn(_In):
    items: list[ItemIn] = Field(default_factory=list)
    delivery_info: DeliveryIn = Field(default_factory=DeliveryIn)
    payment_method: Any = None
    coupon_code: str | None = None
    special_instructions: str | None = None
    idempotency_key: str | None = None

    def to_domain(self, idempotency_key: str | None = None) -> CheckoutRequest:
        """``idempotency_key`` (from the header) wins over the body field."""
        return CheckoutRequest(
            items=tuple(i.to_domain() for i in self.items),
            delivery=self.delivery_info.to_domain(),
            payment_method=self.payment_method,
            coupon_code=self.coupon_code,
            special_instructions=self.special_instructions,
            idempotency_key=idempotency_key if idempotency_key is not None else self.idempotency_key,
        )


class LocationIn(_In):
    lat: float
    lng: float

    def to_domain(self) -> Location:
        return Location(lat=self.lat, lng=self.lng)


class StatusIn(_In):
    status: str
    note: str | None = None
    driver_location: LocationIn | None = None

    def location(self) -> Location | None:
        return self.driver_location.to_domain() if self.driver_location else None


class AssignIn(_In):
    agent_id: str


class CancelIn(_In):
    reason: str | None = None


class RateIn(_In):
    rating: Any = None
    review: str | None = None

    def to_domain(self) -> int:
        if isinstance(self.rating, bool) or not isinstance(self.rating, int):
            raise ValidationError("INVALID_RATING", "rating must be an integer 1..5", field="rating")
        return self.rating


class ConfirmPaymentIn(_In):
    order_id: str
    payment_intent_id: str


class DeclineIn(_In):
    reason: str | None = None


class IssueIn(_In):
    issue_type: str
    description: str = ""


class DeliverIn(_In):
    otp: str


# ═══════════════════════════════════════════════════════════════════════════════
# Responses
# ═══════════════════════════════════════════════════════════════════════════════

class ReceiptOut(_Out):
    order_id: str
    order_number: str
    total_cents: int
    status: OrderStatus
    client_secret: str | None = None
    replayed: bool = False

    @classmethod
    def from_domain(cls, dom: CheckoutReceipt) -> ReceiptOut:
        return cls.model_validate(dom)


class OptionOut(_Out):
    name: str
    value: str | None
    price_cents: int


class ItemOut(_Out):
    product_id: str
    name: str
    qty: int
    price_cents: int
    restaurant_id: str
    note: str | None
    options: list[OptionOut]


class DeliveryOut(_Out):
    type: DeliveryType
    train_no: str | None
    coach: str | None
    seat: str | None
    station_name: str | None
    address: str | None
    contact_name: str | None
    contact_phone: str | None


class TotalsOut(_Out):
    subtotal_cents: int
    tax_cents: int
    delivery_cents: int
    discount_cents: int
    coupon_code: str | None
    final_cents: int


class PaymentOut(_Out):
    method: PaymentMethod
    status: PaymentStatus
    gateway_id: str | None
    paid_at: datetime | None
    refund_id: str | None
    refund_amount_cents: int | None
    refund_reason: str | None
    refunded_at: datetime | None


class HistoryOut(_Out):
    status: OrderStatus
    at: datetime
    by: str | None
    note: str | None
    event: str | None = None


class ScheduleOut(_Out):
    train_no: str
    station: str
    schedule_date: str
    station_index: int
    scheduled_arrival: datetime
    scheduled_depart: datetime
    expected_ready_at: datetime
    prep_time_minutes: int


class LocationOut(_Out):
    lat: float
    lng: float


class OrderOut(_Out):
    id: str
    order_number: str
    user_id: str
    items: list[ItemOut]
    delivery_info: DeliveryOut = Field(validation_alias="delivery", serialization_alias="deliveryInfo")
    totals: TotalsOut
    payment: PaymentOut
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    history: list[HistoryOut]
    stage_times: dict[OrderStatus, datetime]
    schedule: ScheduleOut | None
    special_instructions: str | None
    assigned_driver: str | None
    estimated_delivery_time: datetime | None
    driver_location: LocationOut | None
    cancellation_reason: str | None
    rating: int | None
    review: str | None

    @computed_field(alias="statusLabel")  # type: ignore[prop-decorator]
    @property
    def status_label(self) -> str:
        return display_label(self.status)

    @classmethod
    def from_domain(cls, dom: Order) -> OrderOut:
        return cls.model_validate(dom)


class OrderPageOut(_Out):
    orders: list[OrderOut]
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def from_domain(cls, dom: OrderPage) -> OrderPageOut:
        return cls(
            orders=[OrderOut.from_domain(o) for o in dom.items],
            total=dom.total,
            page=dom.page,
            limit=dom.limit,
            pages=dom.pages,
        )


class StatusStatsOut(_Out):
    count: int
    revenue_cents: int


class StatsOut(_Out):
    total_orders: int
    by_status: dict[OrderStatus, StatusStatsOut]
    delivered_revenue_cents: int

    @classmethod
    def from_domain(cls, dom: OrderStats) -> StatsOut:
        return cls.model_validate(dom)


class StopOut(_Out):
    index: int
    station: str
    arrival: datetime
    departure: datetime
    state: StopState


class StopsOut(_Out):
    train_no: str
    date: str
    stops: list[StopOut]

    @classmethod
    def from_domain(cls, train_no: str, date: str, dom: tuple[TrackedStop, ...]) -> StopsOut:
        return cls(
            train_no=train_no,
            date=date,
            stops=[StopOut.model_validate(s) for s in dom],
        )


class TrackingOut(_Out):
    order_id: str
    order_number: str
    status: OrderStatus
    status_label: str
    history: list[HistoryOut]
    schedule: ScheduleOut | None
    stops: list[StopOut]
    assigned_driver: str | None
    estimated_delivery_time: datetime | None
    driver_location: LocationOut | None

    @classmethod
    def from_domain(cls, dom: TrackingView) -> TrackingOut:
        return cls.model_validate(dom)


class ConfirmationOut(_Out):
    order: OrderOut
    already_completed: bool

    @classmethod
    def from_domain(cls, dom: PaymentConfirmation) -> ConfirmationOut:
        return cls(order=OrderOut.from_domain(dom.order), already_completed=dom.already_completed)


class WebhookAckOut(_Out):
    received: bool
    event_type: str | None = None
    applied: bool = False

    @classmethod
    def from_domain(cls, dom: WebhookAck) -> WebhookAckOut:
        return cls(received=dom.received, event_type=dom.event_type, applied=dom.applied)


class OtpOut(_Out):
    otp: str
    expires_at: datetime
    expires_in: int

    @classmethod
    def from_domain(cls, dom: DeliveryOtp) -> OtpOut:
        return cls(otp=dom.code, expires_at=dom.expires_at, expires_in=dom.expires_in)


class ErrorOut(_Out):
    code: str
    message: str
    field: str | None = None
    retryable: bool | None = None

    @classmethod
    def from_domain(cls, dom: OrderError) -> ErrorOut:
        return cls(
            code=dom.code,
            message=dom.message,
            field=getattr(dom, "field", None),
            retryable=getattr(dom, "retryable", None),
        )


__all__ = (
    "ToDomain",
    "FromDomain",
    "OptionIn",
    "ItemIn",
    "DeliveryIn",
    "CheckoutIn",
    "LocationIn",
    "StatusIn",
    "AssignIn",
    "CancelIn",
    "RateIn",
    "ConfirmPaymentIn",
    "DeclineIn",
    "IssueIn",
    "DeliverIn",
    "ReceiptOut",
    "OrderOut",
    "OrderPageOut",
    "StatsOut",
    "StopsOut",
    "TrackingOut",
    "ConfirmationOut",
    "WebhookAckOut",
    "OtpOut",
    "ErrorOut",
)
