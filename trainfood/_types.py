"""
Core types for trainfood.

Re-exports from kungfu + domain-wide aliases.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from kungfu import Result, Ok, Error, LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Lazy Computation Aliases
# ═══════════════════════════════════════════════════════════════════════════════

type Lazy[T, E] = LazyCoroResult[T, E]
"""Lazy async computation that may fail."""

# ═══════════════════════════════════════════════════════════════════════════════
# Money / Time
# ═══════════════════════════════════════════════════════════════════════════════

type Cents = int
"""Integer minor currency unit (paise, cents)."""

type Clock = Callable[[], datetime]
"""Returns the current timezone-aware time."""


def utcnow() -> datetime:
    return datetime.now(UTC)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    # Aliases
    "Lazy",
    "Cents",
    "Clock",
    "utcnow",
)
