"""
Catalog store — protocol and in-memory implementation.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Iterable, Sequence
from typing import Protocol

from kungfu import Result, Ok, Error

from trainfood.catalog._types import (
    Product,
    Restaurant,
    Reservation,
    StockError,
    StockErrorKind,
)

logger = logging.getLogger("trainfood.catalog")


# ═══════════════════════════════════════════════════════════════════════════════
# Store Protocol
# ═══════════════════════════════════════════════════════════════════════════════

class CatalogStore(Protocol):
    """
    Product + restaurant storage.

    ``reserve_stock`` must be a conditional atomic decrement: it either
    takes ``qty`` units or changes nothing.
    """

    async def find_products_by_ids(self, ids: Sequence[str]) -> list[Product]:
        """Batch load. Missing ids are absent from the result."""
        ...

    async def reserve_stock(
        self, product_id: str, qty: int
    ) -> Result[Reservation, StockError]:
        """Decrement only if current stock >= qty. Unlimited stock always succeeds."""
        ...

    async def adjust_stock(
        self, product_id: str, delta: int
    ) -> Result[int | None, StockError]:
        """Blind adjustment (restores). Returns new stock, None if unlimited."""
        ...

    async def find_restaurant(self, restaurant_id: str) -> Restaurant | None: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Store
# ═══════════════════════════════════════════════════════════════════════════════

class MemoryCatalog:
    """
    In-memory catalog for single-process deployments and tests.

    One lock guards every stock mutation, which makes reserve_stock's
    check-then-decrement atomic.
    """

    def __init__(
        self,
        products: Iterable[Product] = (),
        restaurants: Iterable[Restaurant] = (),
    ) -> None:
        self._products: dict[str, Product] = {p.id: p for p in products}
        self._restaurants: dict[str, Restaurant] = {r.id: r for r in restaurants}
        self._lock = asyncio.Lock()

    # ── seeding / admin ─────────────────────────────────────────────

    def put(self, product: Product) -> None:
        """Insert or replace a product (price changes, restocks)."""
        self._products[product.id] = product

    def put_restaurant(self, restaurant: Restaurant) -> None:
        self._restaurants[restaurant.id] = restaurant

    def get(self, product_id: str) -> Product | None:
        return self._products.get(product_id)

    # ── CatalogStore ────────────────────────────────────────────────

    async def find_products_by_ids(self, ids: Sequence[str]) -> list[Product]:
        return [self._products[i] for i in dict.fromkeys(ids) if i in self._products]

    async def reserve_stock(
        self, product_id: str, qty: int
    ) -> Result[Reservation, StockError]:
        async with self._lock:
            product = self._products.get(product_id)
            if product is None:
                return Error(StockError(
                    StockErrorKind.NOT_FOUND, product_id, f"product {product_id} not found"
                ))
            if product.stock is None:
                return Ok(Reservation(product_id, qty, None))
            if product.stock < qty:
                return Error(StockError(
                    StockErrorKind.INSUFFICIENT,
                    product_id,
                    f"only {product.stock} of {product.name} left, requested {qty}",
                ))
            remaining = product.stock - qty
            self._products[product_id] = dataclasses.replace(product, stock=remaining)
            return Ok(Reservation(product_id, qty, remaining))

    async def adjust_stock(
        self, product_id: str, delta: int
    ) -> Result[int | None, StockError]:
        async with self._lock:
            product = self._products.get(product_id)
            if product is None:
                return Error(StockError(
                    StockErrorKind.NOT_FOUND, product_id, f"product {product_id} not found"
                ))
            if product.stock is None:
                return Ok(None)
            new_stock = max(product.stock + delta, 0)
            if product.stock + delta < 0:
                logger.warning(
                    "stock adjustment clamped at zero: product=%s stock=%s delta=%s",
                    product_id, product.stock, delta,
                )
            self._products[product_id] = dataclasses.replace(product, stock=new_stock)
            return Ok(new_stock)

    async def find_restaurant(self, restaurant_id: str) -> Restaurant | None:
        return self._restaurants.get(restaurant_id)


__all__ = ("CatalogStore", "MemoryCatalog")
