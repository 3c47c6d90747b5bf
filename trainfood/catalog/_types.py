"""
Catalog types — products, restaurants, stock outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# ═══════════════════════════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Product:
    """
    Sellable item.

    ``stock=None`` means unlimited: never blocks checkout and is never
    decremented.
    """

    id: str
    name: str
    price_cents: int
    restaurant_id: str
    stock: int | None = None
    available: bool = True
    is_active: bool = True
    category: str | None = None
    station: str | None = None

    @property
    def orderable(self) -> bool:
        return self.available and self.is_active

    def has_stock_for(self, qty: int) -> bool:
        return self.stock is None or self.stock >= qty


@dataclass(frozen=True, slots=True)
class Restaurant:
    id: str
    name: str
    station: str | None = None


@dataclass(frozen=True, slots=True)
class Reservation:
    """Stock taken from a product by a successful reserve."""

    product_id: str
    qty: int
    remaining: int | None


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════

class StockErrorKind(Enum):
    INSUFFICIENT = "insufficient"
    NOT_FOUND = "not_found"
    BACKEND = "backend"


@dataclass(frozen=True, slots=True)
class StockError:
    kind: StockErrorKind
    product_id: str
    message: str


__all__ = (
    "Product",
    "Restaurant",
    "Reservation",
    "StockErrorKind",
    "StockError",
)
