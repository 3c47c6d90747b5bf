"""
Checkout quote — the side-effect-free half of checkout as a node graph.

    DraftNode → ValidatedNode ─┬→ ProductsNode → LinesNode → TotalsNode ─┐
                               └→ ReadinessNode ─────────────────────────┴→ QuoteNode

Product loading and the schedule lookup run concurrently. Any node may
raise an OrderError; it propagates out of the pipeline call.

Note: no ``from __future__ import annotations`` here, nodnod reads the
``__compose__`` signatures at runtime.
"""

from dataclasses import dataclass

from trainfood import graph as G
from trainfood.catalog import CatalogStore, Product
from trainfood.errors import ConflictError, NotFoundError, as_order_error
from trainfood.orders._pricing import PricingRules, price_totals
from trainfood.orders._types import (
    CheckoutRequest,
    DeliveryType,
    OrderItem,
    Principal,
    ScheduleInfo,
    Totals,
)
from trainfood.orders._validate import ValidCheckout, validate_checkout
from trainfood.schedule import ReadinessCalculator


# ═══════════════════════════════════════════════════════════════════════════════
# Inputs
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class CheckoutDraft:
    request: CheckoutRequest
    principal: Principal


@dataclass(frozen=True, slots=True)
class CheckoutDeps:
    catalog: CatalogStore
    readiness: ReadinessCalculator
    pricing: PricingRules


@dataclass(frozen=True, slots=True)
class Quote:
    """Everything checkout needs before touching stock or the gateway."""

    checkout: ValidCheckout
    items: tuple[OrderItem, ...]
    totals: Totals
    schedule: ScheduleInfo | None


# ═══════════════════════════════════════════════════════════════════════════════
# Nodes
# ═══════════════════════════════════════════════════════════════════════════════

@G.node
class DraftNode:
    """Entry point: wraps the submitted request."""

    def __init__(self, data: CheckoutDraft) -> None:
        self.data = data

    @classmethod
    def __compose__(cls, draft: CheckoutDraft) -> "DraftNode":
        return cls(draft)


@G.node
class ValidatedNode:
    def __init__(self, data: ValidCheckout) -> None:
        self.data = data

    @classmethod
    def __compose__(cls, draft: DraftNode) -> "ValidatedNode":
        return cls(validate_checkout(draft.data.request))


@G.node
class ProductsNode:
    """Batch-load products; reject missing, unorderable, or short-stocked ones."""

    def __init__(self, by_id: dict[str, Product]) -> None:
        self.by_id = by_id

    @classmethod
    async def __compose__(cls, valid: ValidatedNode, deps: CheckoutDeps) -> "ProductsNode":
        checkout = valid.data
        try:
            products = await deps.catalog.find_products_by_ids(checkout.product_ids)
        except Exception as e:
            raise as_order_error(e)
        by_id = {p.id: p for p in products}

        missing = [pid for pid in checkout.product_ids if pid not in by_id]
        if missing:
            raise NotFoundError("PRODUCT_NOT_FOUND", f"products not found: {', '.join(missing)}")

        for pid, qty in checkout.quantities().items():
            product = by_id[pid]
            if not product.orderable:
                raise ConflictError("PRODUCT_UNAVAILABLE", f"{product.name} is not available")
            if not product.has_stock_for(qty):
                raise ConflictError(
                    "INSUFFICIENT_STOCK",
                    f"only {product.stock} of {product.name} left, requested {qty}",
                )
        return cls(by_id)


@G.node
class LinesNode:
    """Price snapshot: unit = current price + selected option prices."""

    def __init__(self, items: tuple[OrderItem, ...]) -> None:
        self.items = items

    @classmethod
    def __compose__(cls, valid: ValidatedNode, products: ProductsNode) -> "LinesNode":
        items = []
        for line in valid.data.lines:
            product = products.by_id[line.product_id]
            unit = product.price_cents + sum(o.price_cents for o in line.options)
            items.append(OrderItem(
                product_id=product.id,
                name=product.name,
                qty=line.qty,
                price_cents=unit,
                restaurant_id=product.restaurant_id,
                note=line.note,
                options=line.options,
            ))
        return cls(tuple(items))


@G.node
class TotalsNode:
    def __init__(self, data: Totals) -> None:
        self.data = data

    @classmethod
    def __compose__(
        cls, valid: ValidatedNode, lines: LinesNode, deps: CheckoutDeps
    ) -> "TotalsNode":
        checkout = valid.data
        return cls(price_totals(
            lines.items, checkout.delivery.type, checkout.coupon_code, deps.pricing
        ))


@G.node
class ReadinessNode:
    """Train deliveries only. Unknown schedule → None, checkout continues."""

    def __init__(self, data: ScheduleInfo | None) -> None:
        self.data = data

    @classmethod
    async def __compose__(cls, valid: ValidatedNode, deps: CheckoutDeps) -> "ReadinessNode":
        delivery = valid.data.delivery
        if delivery.type is not DeliveryType.TRAIN or not delivery.train_no or not delivery.station_name:
            return cls(None)

        calc = deps.readiness
        prep = calc.rules.prep_time_minutes
        readiness = await calc.compute(delivery.train_no, delivery.station_name, prep)
        if readiness is None:
            return cls(None)

        return cls(ScheduleInfo(
            train_no=delivery.train_no,
            station=delivery.station_name,
            schedule_date=calc.today(),
            station_index=readiness.station_index,
            scheduled_arrival=readiness.scheduled_arrival,
            scheduled_depart=readiness.scheduled_depart,
            expected_ready_at=readiness.expected_ready_at,
            prep_time_minutes=prep,
        ))


@G.node
class QuoteNode:
    def __init__(self, data: Quote) -> None:
        self.data = data

    @classmethod
    def __compose__(
        cls,
        valid: ValidatedNode,
        lines: LinesNode,
        totals: TotalsNode,
        readiness: ReadinessNode,
    ) -> "QuoteNode":
        return cls(Quote(
            checkout=valid.data,
            items=lines.items,
            totals=totals.data,
            schedule=readiness.data,
        ))


__all__ = (
    "CheckoutDraft",
    "CheckoutDeps",
    "Quote",
    "DraftNode",
    "ValidatedNode",
    "ProductsNode",
    "LinesNode",
    "TotalsNode",
    "ReadinessNode",
    "QuoteNode",
)
