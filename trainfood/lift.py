"""
Lift — helpers for lifting collaborator calls into LazyCoroResult.

Re-exports from combinators.lift plus order-engine helpers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from kungfu import LazyCoroResult, Result

from combinators.lift import catching_async

from trainfood.errors import GatewayError, OrderError, as_order_error


def from_result[T, E](result: Result[T, E]) -> LazyCoroResult[T, E]:
    """Lift a Result into LazyCoroResult."""
    async def _run() -> Result[T, E]:
        return result
    return LazyCoroResult(_run)


def guarded[T](fn: Callable[[], Awaitable[T]]) -> LazyCoroResult[T, OrderError]:
    """Storage/collaborator call: classified errors pass, others become StorageError."""
    return catching_async(fn, on_error=as_order_error)


def gateway_call[T](
    fn: Callable[[], Awaitable[T]],
    timeout: float,
) -> LazyCoroResult[T, OrderError]:
    """
    Payment gateway call with a hard deadline.

    Timeouts and unclassified failures become retryable GatewayError.
    """
    async def _bounded() -> T:
        return await asyncio.wait_for(fn(), timeout)

    def _classify(e: Exception) -> OrderError:
        if isinstance(e, OrderError):
            return e
        return GatewayError.from_exception(e)

    return catching_async(_bounded, on_error=_classify)


__all__ = (
    "catching_async",
    "from_result",
    "guarded",
    "gateway_call",
)
