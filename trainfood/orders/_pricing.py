"""
Pricing — delivery fee, coupons, tax, final total.

All amounts are integer minor units. Percentages are applied with
half-up rounding to whole units.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from trainfood.orders._types import DeliveryType, OrderItem, Totals

logger = logging.getLogger("trainfood.orders.pricing")


@dataclass(frozen=True, slots=True)
class CouponRule:
    code: str
    percent: int
    cap_cents: int

    def discount(self, subtotal_cents: int) -> int:
        raw = round_half_up(Decimal(subtotal_cents) * Decimal(self.percent) / 100)
        return min(raw, self.cap_cents, subtotal_cents)


@dataclass(frozen=True, slots=True)
class PricingRules:
    tax_rate: float = 0.05
    delivery_fee_default_cents: int = 2000
    delivery_fee_train_cents: int = 3000
    delivery_fee_home_cents: int = 4000
    coupons: tuple[CouponRule, ...] = (CouponRule("FIRST10", 10, 1000),)

    def delivery_fee(self, delivery_type: DeliveryType) -> int:
        match delivery_type:
            case DeliveryType.TRAIN:
                return self.delivery_fee_train_cents
            case DeliveryType.HOME:
                return self.delivery_fee_home_cents
            case _:
                return self.delivery_fee_default_cents

    def find_coupon(self, code: str | None) -> CouponRule | None:
        if not code:
            return None
        wanted = code.strip().upper()
        for rule in self.coupons:
            if rule.code == wanted:
                return rule
        return None


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def price_totals(
    items: Sequence[OrderItem],
    delivery_type: DeliveryType,
    coupon_code: str | None,
    rules: PricingRules,
) -> Totals:
    """
    subtotal = Σ unit × qty
    discount = coupon % of subtotal, capped (unknown codes: no discount)
    tax      = round((subtotal − discount) × rate)
    final    = subtotal − discount + tax + delivery
    """
    subtotal = sum(item.line_total_cents for item in items)

    coupon = rules.find_coupon(coupon_code)
    if coupon_code and coupon is None:
        logger.warning("ignoring unknown coupon code %r", coupon_code)
    discount = coupon.discount(subtotal) if coupon else 0

    tax = round_half_up(Decimal(subtotal - discount) * Decimal(str(rules.tax_rate)))
    delivery = rules.delivery_fee(delivery_type)

    return Totals(
        subtotal_cents=subtotal,
        tax_cents=tax,
        delivery_cents=delivery,
        discount_cents=discount,
        coupon_code=coupon.code if coupon else None,
        final_cents=subtotal - discount + tax + delivery,
    )


__all__ = ("CouponRule", "PricingRules", "round_half_up", "price_totals")
