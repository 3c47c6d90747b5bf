"""
SQLAlchemy catalog — products and restaurants tables.

Stock reservation is a single conditional UPDATE:

    UPDATE products SET stock = stock - :qty
    WHERE id = :id AND (stock IS NULL OR stock >= :qty)

so two concurrent checkouts can never both take the last unit.
"""

from collections.abc import Sequence
from typing import Any, cast

from sqlalchemy import Boolean, Integer, String, case, or_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from kungfu import Result, Ok, Error

from trainfood.catalog._types import (
    Product,
    Restaurant,
    Reservation,
    StockError,
    StockErrorKind,
)
from trainfood.db import Base


# ═══════════════════════════════════════════════════════════════════════════════
# Tables
# ═══════════════════════════════════════════════════════════════════════════════

class RestaurantTable(Base):
    __tablename__ = "restaurants"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    station: Mapped[str | None] = mapped_column(String(200), nullable=True)


class ProductTable(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    restaurant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # NULL = unlimited
    stock: Mapped[int | None] = mapped_column(Integer, nullable=True)

    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    station: Mapped[str | None] = mapped_column(String(200), nullable=True)


def _to_product(row: ProductTable) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        price_cents=row.price_cents,
        restaurant_id=row.restaurant_id,
        stock=row.stock,
        available=row.available,
        is_active=row.is_active,
        category=row.category,
        station=row.station,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════════

class SQLAlchemyCatalog:
    """CatalogStore over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def put(self, product: Product) -> None:
        """Insert or replace a product row."""
        async with self._session_factory() as session:
            await session.merge(ProductTable(
                id=product.id,
                name=product.name,
                price_cents=product.price_cents,
                restaurant_id=product.restaurant_id,
                stock=product.stock,
                available=product.available,
                is_active=product.is_active,
                category=product.category,
                station=product.station,
            ))
            await session.commit()

    async def put_restaurant(self, restaurant: Restaurant) -> None:
        async with self._session_factory() as session:
            await session.merge(RestaurantTable(
                id=restaurant.id, name=restaurant.name, station=restaurant.station,
            ))
            await session.commit()

    async def find_products_by_ids(self, ids: Sequence[str]) -> list[Product]:
        if not ids:
            return []
        async with self._session_factory() as session:
            stmt = select(ProductTable).where(ProductTable.id.in_(set(ids)))
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_product(r) for r in rows]

    async def reserve_stock(
        self, product_id: str, qty: int
    ) -> Result[Reservation, StockError]:
        try:
            async with self._session_factory() as session:
                stmt = (
                    update(ProductTable)
                    .where(ProductTable.id == product_id)
                    .where(or_(ProductTable.stock.is_(None), ProductTable.stock >= qty))
                    .values(stock=ProductTable.stock - qty)
                    .execution_options(synchronize_session=False)
                )
                cursor = cast(CursorResult[Any], await session.execute(stmt))

                current = (await session.execute(
                    select(ProductTable.id, ProductTable.stock, ProductTable.name)
                    .where(ProductTable.id == product_id)
                )).one_or_none()
                await session.commit()

        except Exception as e:
            return Error(StockError(StockErrorKind.BACKEND, product_id, f"reserve failed: {e}"))

        if current is None:
            return Error(StockError(
                StockErrorKind.NOT_FOUND, product_id, f"product {product_id} not found"
            ))
        if cursor.rowcount == 0:
            return Error(StockError(
                StockErrorKind.INSUFFICIENT,
                product_id,
                f"only {current.stock} of {current.name} left, requested {qty}",
            ))
        return Ok(Reservation(product_id, qty, current.stock))

    async def adjust_stock(
        self, product_id: str, delta: int
    ) -> Result[int | None, StockError]:
        try:
            async with self._session_factory() as session:
                new_stock = ProductTable.stock + delta
                await session.execute(
                    update(ProductTable)
                    .where(ProductTable.id == product_id)
                    .where(ProductTable.stock.is_not(None))
                    .values(stock=case((new_stock < 0, 0), else_=new_stock))
                    .execution_options(synchronize_session=False)
                )
                current = (await session.execute(
                    select(ProductTable.id, ProductTable.stock)
                    .where(ProductTable.id == product_id)
                )).one_or_none()
                await session.commit()

        except Exception as e:
            return Error(StockError(StockErrorKind.BACKEND, product_id, f"adjust failed: {e}"))

        if current is None:
            return Error(StockError(
                StockErrorKind.NOT_FOUND, product_id, f"product {product_id} not found"
            ))
        return Ok(current.stock)

    async def find_restaurant(self, restaurant_id: str) -> Restaurant | None:
        async with self._session_factory() as session:
            row = await session.get(RestaurantTable, restaurant_id)
            if row is None:
                return None
            return Restaurant(id=row.id, name=row.name, station=row.station)


__all__ = ("ProductTable", "RestaurantTable", "SQLAlchemyCatalog")
