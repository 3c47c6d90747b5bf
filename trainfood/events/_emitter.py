"""
Event emission — fire-and-forget, at-least-once, unordered across types.

The engine calls ``emit`` synchronously; dispatch happens on a background
worker after a short delay so the persisted write settles first. Handler
failures are retried, then logged. Nothing ever propagates to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger("trainfood.events")


# ═══════════════════════════════════════════════════════════════════════════════
# Types
# ═══════════════════════════════════════════════════════════════════════════════

class EventName:
    CREATED = "order.created"
    ASSIGNED = "order.assigned"
    PICKED_UP = "order.picked_up"
    DELIVERED = "order.delivered"
    CANCELLED = "order.cancelled"


@dataclass(frozen=True, slots=True)
class OrderEvent:
    name: str
    order_id: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempt: int = 1


type EventHandler = Callable[[OrderEvent], Awaitable[None]]


class EventEmitter(Protocol):
    def emit(self, name: str, order_id: str) -> None:
        """Schedule delivery. Must never raise."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# QueueEmitter — asyncio worker
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(slots=True)
class _Queued:
    event: OrderEvent
    due_at: float


class QueueEmitter:
    """
    In-process emitter for single-instance deployments.

    Multi-instance deployments plug a broker-backed EventEmitter in its place.
    """

    def __init__(
        self,
        handlers: Iterable[EventHandler] = (),
        *,
        delay: float = 1.0,
        max_attempts: int = 3,
        retry_backoff: float = 0.05,
    ) -> None:
        self._handlers: list[EventHandler] = list(handlers)
        self.delay = delay
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self._queue: asyncio.Queue[_Queued] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def emit(self, name: str, order_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
            if self._worker is None or self._worker.done():
                self._worker = loop.create_task(self._run(), name="trainfood-events")
            self._queue.put_nowait(_Queued(OrderEvent(name, order_id), loop.time() + self.delay))
            logger.debug("event queued: %s order=%s", name, order_id)
        except Exception:
            logger.exception("failed to queue event %s for order %s", name, order_id)

    async def drain(self) -> None:
        """Wait until every queued event has been dispatched."""
        await self._queue.join()

    async def aclose(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

    # ── worker ──────────────────────────────────────────────────────

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            queued = await self._queue.get()
            try:
                wait = queued.due_at - loop.time()
                if wait > 0:
                    await asyncio.sleep(wait)
                await self._dispatch(queued.event)
            except Exception:
                logger.exception("event dispatch crashed: %s", queued.event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: OrderEvent) -> None:
        for handler in list(self._handlers):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    await handler(OrderEvent(event.name, event.order_id, event.id, attempt))
                    break
                except Exception:
                    if attempt == self.max_attempts:
                        logger.exception(
                            "handler %s gave up on %s order=%s after %d attempts",
                            getattr(handler, "__name__", handler),
                            event.name, event.order_id, attempt,
                        )
                    else:
                        logger.warning(
                            "handler %s failed on %s order=%s (attempt %d), retrying",
                            getattr(handler, "__name__", handler),
                            event.name, event.order_id, attempt,
                        )
                        await asyncio.sleep(self.retry_backoff)


__all__ = (
    "EventName",
    "OrderEvent",
    "EventHandler",
    "EventEmitter",
    "QueueEmitter",
)
