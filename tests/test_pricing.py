"""Tests for totals computation."""

from trainfood.orders import (
    CouponRule,
    DeliveryType,
    OrderItem,
    PricingRules,
    price_totals,
)


def line(price: int, qty: int = 1) -> OrderItem:
    return OrderItem(product_id="p", name="P", qty=qty, price_cents=price, restaurant_id="r1")


class TestTotals:
    def test_train_delivery_without_coupon(self):
        totals = price_totals([line(25000, 2)], DeliveryType.TRAIN, None, PricingRules())
        assert totals.subtotal_cents == 50000
        assert totals.discount_cents == 0
        assert totals.tax_cents == 2500
        assert totals.delivery_cents == 3000
        assert totals.final_cents == 55500
        assert totals.coupon_code is None

    def test_delivery_fee_by_type(self):
        rules = PricingRules()
        assert price_totals([line(1000)], DeliveryType.STATION, None, rules).delivery_cents == 2000
        assert price_totals([line(1000)], DeliveryType.HOME, None, rules).delivery_cents == 4000

    def test_tax_rounds_half_up(self):
        totals = price_totals([line(1010)], DeliveryType.STATION, None, PricingRules())
        assert totals.tax_cents == 51

    def test_final_is_sum_of_parts(self):
        totals = price_totals(
            [line(12345, 3), line(999)], DeliveryType.TRAIN, "first10", PricingRules()
        )
        assert totals.final_cents == (
            totals.subtotal_cents - totals.discount_cents + totals.tax_cents + totals.delivery_cents
        )


class TestCoupons:
    def test_coupon_is_capped(self):
        totals = price_totals([line(25000, 2)], DeliveryType.TRAIN, "FIRST10", PricingRules())
        assert totals.discount_cents == 1000
        assert totals.tax_cents == 2450
        assert totals.final_cents == 54450
        assert totals.coupon_code == "FIRST10"

    def test_two_lines_station_delivery_capped_coupon(self):
        items = [
            OrderItem(product_id="a", name="A", qty=2, price_cents=10000, restaurant_id="r1"),
            OrderItem(product_id="b", name="B", qty=1, price_cents=5000, restaurant_id="r1"),
        ]
        totals = price_totals(items, DeliveryType.STATION, "FIRST10", PricingRules())
        assert totals.subtotal_cents == 25000
        assert totals.discount_cents == 1000
        assert totals.tax_cents == 1200
        assert totals.delivery_cents == 2000
        assert totals.final_cents == 27200

    def test_coupon_below_cap(self):
        totals = price_totals([line(5000)], DeliveryType.STATION, "FIRST10", PricingRules())
        assert totals.discount_cents == 500

    def test_coupon_code_is_case_insensitive(self):
        totals = price_totals([line(5000)], DeliveryType.STATION, " first10 ", PricingRules())
        assert totals.coupon_code == "FIRST10"

    def test_unknown_coupon_is_ignored(self, caplog):
        totals = price_totals([line(5000)], DeliveryType.STATION, "BOGUS", PricingRules())
        assert totals.discount_cents == 0
        assert totals.coupon_code is None
        assert "BOGUS" in caplog.text

    def test_custom_rules(self):
        rules = PricingRules(tax_rate=0.0, coupons=(CouponRule("HALF", 50, 100_000),))
        totals = price_totals([line(4000)], DeliveryType.STATION, "HALF", rules)
        assert totals.discount_cents == 2000
        assert totals.tax_cents == 0
        assert totals.final_cents == 2000 + 2000
