"""
Catalog — products, restaurants, stock.

    from trainfood import catalog

    store = catalog.MemoryCatalog([catalog.Product("p1", "Masala Dosa", 12000, "r1", stock=10)])
    match await store.reserve_stock("p1", 2):
        case Ok(reservation):
            ...
"""

from trainfood.catalog._types import (
    Product,
    Restaurant,
    Reservation,
    StockErrorKind,
    StockError,
)
from trainfood.catalog._store import CatalogStore, MemoryCatalog
from trainfood.catalog._sqlalchemy import ProductTable, RestaurantTable, SQLAlchemyCatalog

__all__ = (
    "Product",
    "Restaurant",
    "Reservation",
    "StockErrorKind",
    "StockError",
    "CatalogStore",
    "MemoryCatalog",
    "ProductTable",
    "RestaurantTable",
    "SQLAlchemyCatalog",
)
