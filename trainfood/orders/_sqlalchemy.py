"""
SQLAlchemy order store.

The order aggregate is stored as a JSON document next to the columns that
are queried or constrained (status, user, train, gateway id, idempotency
key). Two statements carry the concurrency guarantees:

    INSERT ... ON CONFLICT (idempotency_key) DO NOTHING
    UPDATE orders SET ..., version = :v + 1 WHERE id = :id AND version = :v
"""

import dataclasses
from datetime import datetime
from typing import Any, cast

from pydantic import TypeAdapter
from sqlalchemy import JSON, DateTime, Integer, String, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from kungfu import Result, Ok, Error

from trainfood.db import Base
from trainfood.orders._store import DuplicateOrderError
from trainfood.orders._types import Order, OrderQuery, OrderStatus, StatusStats


# ═══════════════════════════════════════════════════════════════════════════════
# Table
# ═══════════════════════════════════════════════════════════════════════════════

class OrderTable(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    order_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    train_no: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    gateway_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    # NULLs never collide, so keyless checkouts are unconstrained
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    final_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)


_ORDER = TypeAdapter(Order)


def _columns(order: Order) -> dict[str, Any]:
    return {
        "user_id": order.user_id,
        "status": order.status.value,
        "train_no": order.train_no,
        "gateway_id": order.payment.gateway_id,
        "final_cents": order.totals.final_cents,
        "updated_at": order.updated_at,
        "document": _ORDER.dump_python(order, mode="json"),
    }


def _to_order(row: OrderTable) -> Order:
    return _ORDER.validate_python({**row.document, "version": row.version})


# ═══════════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════════

class SQLAlchemyOrderStore:
    """OrderStore over an async SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dialect: str = "sqlite",
    ) -> None:
        self._session_factory = session_factory
        self._dialect = dialect

    def _insert(self) -> Any:
        match self._dialect:
            case "sqlite":
                return sqlite.insert(OrderTable).on_conflict_do_nothing(
                    index_elements=["idempotency_key"]
                )
            case "postgresql":
                return postgresql.insert(OrderTable).on_conflict_do_nothing(
                    index_elements=["idempotency_key"]
                )
            case _:
                return insert(OrderTable)

    async def insert(self, order: Order) -> Result[Order, DuplicateOrderError]:
        stored = dataclasses.replace(order, version=1)
        values = {
            "id": stored.id,
            "order_number": stored.order_number,
            "idempotency_key": stored.idempotency_key,
            "version": 1,
            "created_at": stored.created_at,
            **_columns(stored),
        }
        cursor: CursorResult[Any] | None
        async with self._session_factory() as session:
            try:
                cursor = cast(CursorResult[Any], await session.execute(self._insert().values(**values)))
                await session.commit()
            except IntegrityError:
                await session.rollback()
                if stored.idempotency_key is None:
                    raise
                cursor = None

        if cursor is None or cursor.rowcount == 0:
            key = cast(str, stored.idempotency_key)
            existing = await self.get_by_idempotency_key(key)
            return Error(DuplicateOrderError(key, existing.id if existing else None))
        return Ok(stored)

    async def get(self, order_id: str) -> Order | None:
        async with self._session_factory() as session:
            row = await session.get(OrderTable, order_id)
            return _to_order(row) if row is not None else None

    async def _find_one(self, *where: Any) -> Order | None:
        async with self._session_factory() as session:
            row = (await session.execute(select(OrderTable).where(*where))).scalars().first()
            return _to_order(row) if row is not None else None

    async def get_by_idempotency_key(self, key: str) -> Order | None:
        return await self._find_one(OrderTable.idempotency_key == key)

    async def get_by_gateway_id(self, gateway_id: str) -> Order | None:
        return await self._find_one(OrderTable.gateway_id == gateway_id)

    async def replace(self, order: Order, expected_version: int) -> Order | None:
        async with self._session_factory() as session:
            stmt = (
                update(OrderTable)
                .where(OrderTable.id == order.id)
                .where(OrderTable.version == expected_version)
                .values(version=expected_version + 1, **_columns(order))
                .execution_options(synchronize_session=False)
            )
            cursor = cast(CursorResult[Any], await session.execute(stmt))
            await session.commit()

        if cursor.rowcount == 0:
            return None
        return dataclasses.replace(order, version=expected_version + 1)

    async def list(self, query: OrderQuery) -> tuple[list[Order], int]:
        filters: list[Any] = []
        if query.user_id is not None:
            filters.append(OrderTable.user_id == query.user_id)
        if query.status is not None:
            filters.append(OrderTable.status == query.status.value)
        if query.train_no is not None:
            filters.append(OrderTable.train_no == query.train_no)

        async with self._session_factory() as session:
            total = (await session.execute(
                select(func.count()).select_from(OrderTable).where(*filters)
            )).scalar_one()
            rows = (await session.execute(
                select(OrderTable)
                .where(*filters)
                .order_by(OrderTable.created_at.desc(), OrderTable.id.desc())
                .offset(query.offset)
                .limit(query.limit)
            )).scalars().all()
            return [_to_order(r) for r in rows], total

    async def stats(self) -> dict[OrderStatus, StatusStats]:
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(OrderTable.status, func.count(), func.coalesce(func.sum(OrderTable.final_cents), 0))
                .group_by(OrderTable.status)
            )).all()
            return {
                OrderStatus(status): StatusStats(count=count, revenue_cents=revenue)
                for status, count, revenue in rows
            }


__all__ = ("OrderTable", "SQLAlchemyOrderStore")
