"""
Saga step creation.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from combinators import lift as L
from kungfu import LazyCoroResult

from trainfood.saga._types import CompensatorWithValue, SagaStep, Sequence

# ═══════════════════════════════════════════════════════════════════════════════
# step() — Primary Constructor
# ═══════════════════════════════════════════════════════════════════════════════


def step[T, E](
    action: LazyCoroResult[T, E],
    compensate: CompensatorWithValue[T] | None = None,
) -> SagaStep[T, E]:
    """
    Create a compensated saga step.

    Example:
        reserve = S.step(
            action=LazyCoroResult(lambda: reserve_line(line)),
            compensate=lambda r: catalog.adjust_stock(r.product_id, r.qty),
        )
    """
    return SagaStep(action=action, compensate=compensate)


# ═══════════════════════════════════════════════════════════════════════════════
# from_async() — Create step from async callable
# ═══════════════════════════════════════════════════════════════════════════════


def from_async[T, E](
    action: Callable[[], Awaitable[T]],
    on_error: Callable[[Exception], E],
    compensate: CompensatorWithValue[T] | None = None,
) -> SagaStep[T, E]:
    """
    Create step from an async callable that raises on failure.

    Example:
        S.from_async(
            lambda: gateway.create_intent(total, "inr", metadata),
            on_error=GatewayError.from_exception,
            compensate=lambda intent: gateway.cancel_intent(intent.id),
        )
    """
    return SagaStep(
        action=L.catching_async(action, on_error=on_error),
        compensate=compensate,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# sequence() — Independent steps
# ═══════════════════════════════════════════════════════════════════════════════


def sequence[T, E](*steps: SagaStep[T, E]) -> Sequence[T, E]:
    """Run steps one after another; the first failure rolls back the rest."""
    return Sequence(steps=tuple(steps))


__all__ = ("step", "from_async", "sequence")
