"""
Structural validation of checkout input.

Runs before any stock or payment side effect. The first violation wins.
"""

from __future__ import annotations

from dataclasses import dataclass

from trainfood.errors import ValidationError
from trainfood.orders._types import (
    CheckoutRequest,
    DeliveryInfo,
    DeliveryRequest,
    DeliveryType,
    PaymentMethod,
    SelectedOption,
)

MIN_QTY = 1
MAX_QTY = 99
MAX_IDEMPOTENCY_KEY = 255

# type → fields that must be present and non-blank
REQUIRED_DELIVERY_FIELDS: dict[DeliveryType, tuple[str, ...]] = {
    DeliveryType.TRAIN: ("train_no", "coach", "seat"),
    DeliveryType.STATION: ("station_name",),
    DeliveryType.HOME: ("address",),
}


@dataclass(frozen=True)
class CheckoutLine:
    product_id: str
    qty: int
    note: str | None
    options: tuple[SelectedOption, ...]


@dataclass(frozen=True)
class ValidCheckout:
    lines: tuple[CheckoutLine, ...]
    delivery: DeliveryInfo
    method: PaymentMethod
    coupon_code: str | None
    special_instructions: str | None
    idempotency_key: str | None

    @property
    def product_ids(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(line.product_id for line in self.lines))

    def quantities(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for line in self.lines:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.qty
        return totals


def _blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _validate_option(index: int, j: int, option: SelectedOption) -> SelectedOption:
    where = f"items[{index}].options[{j}]"
    if _blank(option.name):
        raise ValidationError("INVALID_OPTION", "option name is required", field=where)
    if isinstance(option.price_cents, bool) or not isinstance(option.price_cents, int):
        raise ValidationError("INVALID_OPTION", "option price must be an integer", field=where)
    if option.price_cents < 0:
        raise ValidationError("INVALID_OPTION", "option price cannot be negative", field=where)
    return option


def validate_lines(request: CheckoutRequest) -> tuple[CheckoutLine, ...]:
    if not request.items:
        raise ValidationError("ITEMS_REQUIRED", "order must contain at least one item", field="items")

    lines: list[CheckoutLine] = []
    for i, item in enumerate(request.items):
        if not isinstance(item.product_id, str) or not item.product_id.strip():
            raise ValidationError(
                "INVALID_PRODUCT", "product id must be a non-empty string", field=f"items[{i}].productId"
            )
        qty = item.qty
        if isinstance(qty, bool) or not isinstance(qty, int) or not MIN_QTY <= qty <= MAX_QTY:
            raise ValidationError(
                "INVALID_QUANTITY",
                f"quantity must be an integer between {MIN_QTY} and {MAX_QTY}",
                field=f"items[{i}].qty",
            )
        options = tuple(_validate_option(i, j, o) for j, o in enumerate(item.options))
        lines.append(CheckoutLine(item.product_id.strip(), qty, item.note, options))
    return tuple(lines)


def validate_delivery(delivery: DeliveryRequest) -> DeliveryInfo:
    try:
        kind = DeliveryType(str(delivery.type).strip().lower())
    except ValueError:
        raise ValidationError(
            "INVALID_DELIVERY_TYPE",
            "delivery type must be one of: train, station, home",
            field="deliveryInfo.type",
        )

    for name in REQUIRED_DELIVERY_FIELDS[kind]:
        if _blank(getattr(delivery, name)):
            raise ValidationError(
                "DELIVERY_FIELD_REQUIRED",
                f"{name} is required for {kind.value} delivery",
                field=f"deliveryInfo.{name}",
            )

    return DeliveryInfo(
        type=kind,
        train_no=delivery.train_no,
        coach=delivery.coach,
        seat=delivery.seat,
        station_name=delivery.station_name,
        address=delivery.address,
        contact_name=delivery.contact_name,
        contact_phone=delivery.contact_phone,
    )


def validate_method(value: object) -> PaymentMethod:
    try:
        return PaymentMethod(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            "INVALID_PAYMENT_METHOD",
            "payment method must be one of: COD, UPI, CARD, WALLET",
            field="paymentMethod",
        )


def validate_checkout(request: CheckoutRequest) -> ValidCheckout:
    lines = validate_lines(request)
    delivery = validate_delivery(request.delivery)
    method = validate_method(request.payment_method)

    key = request.idempotency_key
    if key is not None and (not key.strip() or len(key) > MAX_IDEMPOTENCY_KEY):
        raise ValidationError(
            "INVALID_IDEMPOTENCY_KEY",
            f"idempotency key must be 1..{MAX_IDEMPOTENCY_KEY} characters",
            field="idempotencyKey",
        )

    return ValidCheckout(
        lines=lines,
        delivery=delivery,
        method=method,
        coupon_code=request.coupon_code or None,
        special_instructions=request.special_instructions,
        idempotency_key=key,
    )


__all__ = (
    "CheckoutLine",
    "ValidCheckout",
    "REQUIRED_DELIVERY_FIELDS",
    "validate_lines",
    "validate_delivery",
    "validate_method",
    "validate_checkout",
)
