"""
Saga types — core data structures.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from kungfu import LazyCoroResult, Result

# ═══════════════════════════════════════════════════════════════════════════════
# Compensator — Undo Action
# ═══════════════════════════════════════════════════════════════════════════════

type CompensatorWithValue[T] = Callable[[T], Awaitable[None]]
"""Compensation function that receives the action result and undoes it."""

# ═══════════════════════════════════════════════════════════════════════════════
# Saga AST
# ═══════════════════════════════════════════════════════════════════════════════


class _Chainable:
    __slots__ = ()

    def then[U, E2](self, f: Callable[[Any], SagaExpr[U, E2]]) -> Then[Any, U, Any, E2]:
        """Chain another saga expression that depends on this one's value."""
        return Then(self, f)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class SagaStep[T, E](_Chainable):
    """
    A single saga step: action + compensator.

    When action succeeds, compensator is recorded.
    If a later step fails, compensators run in reverse.
    """

    action: LazyCoroResult[T, E]
    compensate: CompensatorWithValue[T] | None


@dataclass(frozen=True, slots=True)
class Sequence[T, E](_Chainable):
    """Independent steps run in order; value is the tuple of their values."""

    steps: tuple[SagaStep[T, E], ...]


@dataclass(frozen=True, slots=True)
class Then[T, U, E, E2](_Chainable):
    """Sequential composition (monadic bind)."""

    inner: SagaExpr[T, E]
    f: Callable[[T], SagaExpr[U, E2]]


type SagaExpr[T, E] = SagaStep[T, E] | Sequence[Any, E] | Then[Any, T, Any, E]

# ═══════════════════════════════════════════════════════════════════════════════
# Result Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaResult[T]:
    """Successful saga result with metadata."""

    value: T
    steps_executed: int
    compensators_recorded: int


@dataclass(frozen=True, slots=True)
class SagaError[E]:
    """Saga error with rollback status."""

    error: E
    step_failed: int
    compensators_run: int
    compensators_failed: int
    rollback_complete: bool


@dataclass(frozen=True, slots=True)
class Compensation:
    """Outcome of one independent compensating action."""

    name: str
    result: Result[Any, Exception]


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "CompensatorWithValue",
    "SagaStep",
    "Sequence",
    "Then",
    "SagaExpr",
    "SagaResult",
    "SagaError",
    "Compensation",
)
