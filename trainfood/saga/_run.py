"""
Saga execution with automatic rollback.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from combinators import lift as L
from kungfu import Result, Ok, Error

from trainfood.saga._types import (
    Compensation,
    CompensatorWithValue,
    SagaError,
    SagaExpr,
    SagaResult,
    SagaStep,
    Sequence,
    Then,
)

logger = logging.getLogger("trainfood.saga")

# ═══════════════════════════════════════════════════════════════════════════════
# Recorded Compensator
# ═══════════════════════════════════════════════════════════════════════════════

type RecordedCompensator = tuple[Any, CompensatorWithValue[Any]]


@dataclass(slots=True)
class _Progress:
    compensators: list[RecordedCompensator] = field(default_factory=list)
    steps: int = 0


# ═══════════════════════════════════════════════════════════════════════════════
# run_step() — Execute single step
# ═══════════════════════════════════════════════════════════════════════════════

async def run_step[T, E](step: SagaStep[T, E], progress: _Progress) -> Result[T, E]:
    """Execute single step, recording compensator on success."""
    progress.steps += 1
    result = await step.action
    match result:
        case Ok(value):
            if step.compensate is not None:
                progress.compensators.append((value, step.compensate))
            return Ok(value)
        case Error(e):
            return Error(e)


async def _run_expr(expr: SagaExpr[Any, Any], progress: _Progress) -> Result[Any, Any]:
    match expr:
        case SagaStep():
            return await run_step(expr, progress)

        case Sequence(steps):
            values: list[Any] = []
            for s in steps:
                match await run_step(s, progress):
                    case Ok(value):
                        values.append(value)
                    case Error(e):
                        return Error(e)
            return Ok(tuple(values))

        case Then(inner, f):
            match await _run_expr(inner, progress):
                case Ok(value):
                    return await _run_expr(f(value), progress)
                case Error(e):
                    return Error(e)

    raise TypeError(f"not a saga expression: {expr!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# run_compensators() — Rollback
# ═══════════════════════════════════════════════════════════════════════════════

async def run_compensators(compensators: list[RecordedCompensator]) -> tuple[int, int]:
    """Run compensators in reverse. Returns (run, failed)."""
    comp_run = 0
    comp_failed = 0

    for value, comp in reversed(compensators):
        try:
            await comp(value)
            comp_run += 1
        except Exception:
            comp_failed += 1
            logger.exception("compensator failed for %r", value)

    return comp_run, comp_failed


# ═══════════════════════════════════════════════════════════════════════════════
# run() — Execute Saga
# ═══════════════════════════════════════════════════════════════════════════════

async def run[T, E](saga: SagaExpr[T, E]) -> Result[SagaResult[T], SagaError[E]]:
    """
    Execute a saga expression with automatic rollback on failure.

    On success: returns SagaResult with value and metadata.
    On failure: runs every recorded compensator in reverse, returns SagaError.

    Example:
        from trainfood import saga as S

        checkout = (
            S.sequence(*(reserve(line) for line in lines))
            .then(lambda reservations: charge(total))
            .then(lambda intent: persist(order, intent))
        )

        match await S.run(checkout):
            case Ok(r):
                print(f"Placed: {r.value}")
            case Error(e):
                print(f"Failed at step {e.step_failed}, rolled back {e.compensators_run}")
    """
    progress = _Progress()
    result = await _run_expr(saga, progress)

    match result:
        case Ok(value):
            return Ok(SagaResult(
                value=value,
                steps_executed=progress.steps,
                compensators_recorded=len(progress.compensators),
            ))

        case Error(error):
            comp_run, comp_failed = await run_compensators(progress.compensators)

            return Error(SagaError(
                error=error,
                step_failed=progress.steps,
                compensators_run=comp_run,
                compensators_failed=comp_failed,
                rollback_complete=comp_failed == 0,
            ))


# ═══════════════════════════════════════════════════════════════════════════════
# compensate_all() — Independent compensations
# ═══════════════════════════════════════════════════════════════════════════════

async def compensate_all(
    actions: Iterable[tuple[str, Callable[[], Awaitable[Any]]]],
) -> tuple[Compensation, ...]:
    """
    Run every compensating action, regardless of earlier failures.

    Each outcome is reported on its own; one failing never skips another.
    """
    outcomes: list[Compensation] = []
    for name, action in actions:
        result = await L.catching_async(action, on_error=lambda e: e)
        match result:
            case Error(e):
                logger.warning("compensation %s failed: %s", name, e)
            case Ok(_):
                pass
        outcomes.append(Compensation(name=name, result=result))
    return tuple(outcomes)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("run", "run_step", "run_compensators", "compensate_all")
