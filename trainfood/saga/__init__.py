"""
Saga — multi-step side effects with compensation.

    from trainfood import saga as S

    saga = S.step(action, compensate).then(lambda v: S.step(action2, compensate2))
    result = await S.run(saga)
"""

from __future__ import annotations

from trainfood.saga._types import (
    CompensatorWithValue,
    SagaStep,
    Sequence,
    Then,
    SagaExpr,
    SagaResult,
    SagaError,
    Compensation,
)
from trainfood.saga._step import step, from_async, sequence
from trainfood.saga._run import run, run_compensators, compensate_all

__all__ = (
    "CompensatorWithValue",
    "SagaStep",
    "Sequence",
    "Then",
    "SagaExpr",
    "SagaResult",
    "SagaError",
    "Compensation",
    "step",
    "from_async",
    "sequence",
    "run",
    "run_compensators",
    "compensate_all",
)
