"""
Order store — protocol, in-memory implementation, compare-and-set helper.

Two storage-level guarantees the engine relies on:

- ``insert`` enforces a unique idempotency key (check and insert are one
  atomic step, never a separate lookup).
- ``replace`` is compare-and-set on ``version``; a stale writer loses and
  must re-read.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

from kungfu import Result, Ok, Error

from trainfood.errors import ConflictError, NotFoundError
from trainfood.orders._types import Order, OrderQuery, OrderStatus, StatusStats

logger = logging.getLogger("trainfood.orders.store")


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════

class DuplicateOrderError(ConflictError):
    """Another order already holds this idempotency key."""

    def __init__(self, idempotency_key: str, existing_order_id: str | None) -> None:
        super().__init__("DUPLICATE_IDEMPOTENCY_KEY", f"idempotency key {idempotency_key!r} already used")
        self.idempotency_key = idempotency_key
        self.existing_order_id = existing_order_id


# ═══════════════════════════════════════════════════════════════════════════════
# Store Protocol
# ═══════════════════════════════════════════════════════════════════════════════

class OrderStore(Protocol):
    async def insert(self, order: Order) -> Result[Order, DuplicateOrderError]:
        """Persist a new order (version 1). Duplicate idempotency key → Error."""
        ...

    async def get(self, order_id: str) -> Order | None: ...

    async def get_by_idempotency_key(self, key: str) -> Order | None: ...

    async def get_by_gateway_id(self, gateway_id: str) -> Order | None: ...

    async def replace(self, order: Order, expected_version: int) -> Order | None:
        """Write ``order`` iff stored version == expected_version. Returns stored order or None."""
        ...

    async def list(self, query: OrderQuery) -> tuple[list[Order], int]:
        """Newest first. Returns (page, total matching)."""
        ...

    async def stats(self) -> dict[OrderStatus, StatusStats]: ...


class AgentDirectory(Protocol):
    async def is_delivery_agent(self, agent_id: str) -> bool: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Store
# ═══════════════════════════════════════════════════════════════════════════════

class MemoryOrderStore:
    """Lock-guarded maps. Single-process only."""

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._by_key: dict[str, str] = {}
        self._by_gateway: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def _index(self, order: Order) -> None:
        if order.idempotency_key:
            self._by_key[order.idempotency_key] = order.id
        if order.payment.gateway_id:
            self._by_gateway[order.payment.gateway_id] = order.id

    async def insert(self, order: Order) -> Result[Order, DuplicateOrderError]:
        async with self._lock:
            key = order.idempotency_key
            if key and key in self._by_key:
                return Error(DuplicateOrderError(key, self._by_key[key]))
            stored = dataclasses.replace(order, version=1)
            self._orders[stored.id] = stored
            self._index(stored)
            return Ok(stored)

    async def get(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    async def get_by_idempotency_key(self, key: str) -> Order | None:
        order_id = self._by_key.get(key)
        return self._orders.get(order_id) if order_id else None

    async def get_by_gateway_id(self, gateway_id: str) -> Order | None:
        order_id = self._by_gateway.get(gateway_id)
        return self._orders.get(order_id) if order_id else None

    async def replace(self, order: Order, expected_version: int) -> Order | None:
        async with self._lock:
            current = self._orders.get(order.id)
            if current is None or current.version != expected_version:
                return None
            stored = dataclasses.replace(order, version=expected_version + 1)
            self._orders[stored.id] = stored
            self._index(stored)
            return stored

    def _matching(self, query: OrderQuery) -> Iterable[Order]:
        for order in self._orders.values():
            if query.user_id is not None and order.user_id != query.user_id:
                continue
            if query.status is not None and order.status is not query.status:
                continue
            if query.train_no is not None and order.train_no != query.train_no:
                continue
            yield order

    async def list(self, query: OrderQuery) -> tuple[list[Order], int]:
        matching = sorted(
            self._matching(query), key=lambda o: (o.created_at, o.id), reverse=True
        )
        return matching[query.offset:query.offset + query.limit], len(matching)

    async def stats(self) -> dict[OrderStatus, StatusStats]:
        counts: dict[OrderStatus, StatusStats] = {}
        for order in self._orders.values():
            prev = counts.get(order.status, StatusStats(0, 0))
            counts[order.status] = StatusStats(
                prev.count + 1, prev.revenue_cents + order.totals.final_cents
            )
        return counts


class MemoryAgents:
    def __init__(self, agent_ids: Iterable[str] = ()) -> None:
        self._agents = set(agent_ids)

    def add(self, agent_id: str) -> None:
        self._agents.add(agent_id)

    async def is_delivery_agent(self, agent_id: str) -> bool:
        return agent_id in self._agents


# ═══════════════════════════════════════════════════════════════════════════════
# Checkout claims
# ═══════════════════════════════════════════════════════════════════════════════

class CheckoutClaims:
    """
    Per-idempotency-key claim held for the whole of a checkout.

    A second submission with a claimed key waits for the first to finish and
    then finds its order instead of racing it for stock. Entries are dropped
    once nobody holds or waits on them. In-process only; across processes the
    unique key in ``insert`` is still the final arbiter.
    """

    def __init__(self) -> None:
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def claim(self, key: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(key, (asyncio.Lock(), 0))
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)


# ═══════════════════════════════════════════════════════════════════════════════
# Compare-and-set mutation
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Mutation:
    before: Order
    after: Order
    changed: bool


type Mutator = Callable[[Order], Order | None]
"""Returns the new order, None for "nothing to do", or raises OrderError."""


async def mutate_order(
    store: OrderStore,
    order_id: str,
    mutator: Mutator,
    *,
    attempts: int = 5,
) -> Mutation:
    """
    Read-modify-write with optimistic concurrency.

    The mutator is re-run against the fresh order after every lost race, so
    guards inside it ("already COMPLETED") are evaluated atomically with
    the write.
    """
    for attempt in range(1, attempts + 1):
        current = await store.get(order_id)
        if current is None:
            raise NotFoundError("ORDER_NOT_FOUND", f"order {order_id} not found")

        updated = mutator(current)
        if updated is None:
            return Mutation(before=current, after=current, changed=False)

        stored = await store.replace(updated, expected_version=current.version)
        if stored is not None:
            return Mutation(before=current, after=stored, changed=True)

        logger.debug("version conflict on order %s (attempt %d)", order_id, attempt)

    raise ConflictError("CONCURRENT_UPDATE", f"order {order_id} is being modified concurrently")


__all__ = (
    "DuplicateOrderError",
    "OrderStore",
    "AgentDirectory",
    "MemoryOrderStore",
    "MemoryAgents",
    "CheckoutClaims",
    "Mutation",
    "Mutator",
    "mutate_order",
)
