"""
Order state machine.

    PENDING          → CONFIRMED, CANCELLED, FAILED_PAYMENT
    CONFIRMED        → PREPARING, CANCELLED
    PREPARING        → READY_FOR_PICKUP, CANCELLED
    READY_FOR_PICKUP → OUT_FOR_DELIVERY, CANCELLED
    OUT_FOR_DELIVERY → DELIVERED
    DELIVERED        → RETURNED
    FAILED_PAYMENT   → CONFIRMED, CANCELLED
    CANCELLED, REJECTED, RETURNED are terminal.

Display labels ("Ready", "PickedUp") are presentation only; they are
parsed to the canonical enum before any validation.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from trainfood.errors import ConflictError, ValidationError
from trainfood.events import EventName
from trainfood.orders._types import HistoryEntry, Order, OrderStatus

S = OrderStatus

TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED, S.FAILED_PAYMENT}),
    S.CONFIRMED: frozenset({S.PREPARING, S.CANCELLED}),
    S.PREPARING: frozenset({S.READY_FOR_PICKUP, S.CANCELLED}),
    S.READY_FOR_PICKUP: frozenset({S.OUT_FOR_DELIVERY, S.CANCELLED}),
    S.OUT_FOR_DELIVERY: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset({S.RETURNED}),
    S.CANCELLED: frozenset(),
    S.REJECTED: frozenset(),
    S.RETURNED: frozenset(),
    S.FAILED_PAYMENT: frozenset({S.CONFIRMED, S.CANCELLED}),
}

TERMINAL: frozenset[OrderStatus] = frozenset(s for s, nxt in TRANSITIONS.items() if not nxt)

# Too late (or pointless) to cancel
NON_CANCELLABLE: frozenset[OrderStatus] = frozenset(
    {S.DELIVERED, S.CANCELLED, S.REJECTED, S.OUT_FOR_DELIVERY}
)

STATUS_EVENTS: Mapping[OrderStatus, str] = {
    S.OUT_FOR_DELIVERY: EventName.PICKED_UP,
    S.DELIVERED: EventName.DELIVERED,
    S.CANCELLED: EventName.CANCELLED,
}

DISPLAY_LABELS: Mapping[OrderStatus, str] = {
    S.PENDING: "Pending",
    S.CONFIRMED: "Confirmed",
    S.PREPARING: "Preparing",
    S.READY_FOR_PICKUP: "Ready",
    S.OUT_FOR_DELIVERY: "PickedUp",
    S.DELIVERED: "Delivered",
    S.CANCELLED: "Cancelled",
    S.REJECTED: "Rejected",
    S.RETURNED: "Returned",
    S.FAILED_PAYMENT: "PaymentFailed",
}

_BY_LABEL: Mapping[str, OrderStatus] = {label: s for s, label in DISPLAY_LABELS.items()}


# ═══════════════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════════════

def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition(current, target):
        raise ConflictError(
            "ILLEGAL_TRANSITION",
            f"cannot move order from {current.value} to {target.value}",
        )


def parse_status(value: OrderStatus | str) -> OrderStatus:
    """Canonical name or display label → OrderStatus."""
    if isinstance(value, OrderStatus):
        return value
    text = str(value).strip()
    if text in _BY_LABEL:
        return _BY_LABEL[text]
    try:
        return OrderStatus(text.upper())
    except ValueError:
        raise ValidationError("INVALID_STATUS", f"unknown order status {value!r}", field="status")


def display_label(status: OrderStatus) -> str:
    return DISPLAY_LABELS[status]


# ═══════════════════════════════════════════════════════════════════════════════
# Application
# ═══════════════════════════════════════════════════════════════════════════════

def enter(
    order: Order,
    status: OrderStatus,
    *,
    at: datetime,
    by: str | None = None,
    note: str | None = None,
    **changes: Any,
) -> Order:
    """Record ``status`` on ``order`` without checking the table (initial state)."""
    stage_times = dict(order.stage_times)
    stage_times.setdefault(status, at)
    return dataclasses.replace(
        order,
        status=status,
        updated_at=at,
        history=(*order.history, HistoryEntry(status=status, at=at, by=by, note=note)),
        stage_times=stage_times,
        **changes,
    )


def annotate(
    order: Order,
    event: str,
    *,
    at: datetime,
    by: str | None = None,
    note: str | None = None,
    **changes: Any,
) -> Order:
    """Append a history entry that does not change the status."""
    entry = HistoryEntry(status=order.status, at=at, by=by, note=note, event=event)
    return dataclasses.replace(
        order, updated_at=at, history=(*order.history, entry), **changes
    )


def transition(
    order: Order,
    target: OrderStatus,
    *,
    at: datetime,
    by: str | None = None,
    note: str | None = None,
    **changes: Any,
) -> Order:
    """Validated transition. Raises ConflictError, leaving ``order`` untouched."""
    ensure_transition(order.status, target)
    return enter(order, target, at=at, by=by, note=note, **changes)


__all__ = (
    "TRANSITIONS",
    "TERMINAL",
    "NON_CANCELLABLE",
    "STATUS_EVENTS",
    "DISPLAY_LABELS",
    "can_transition",
    "ensure_transition",
    "parse_status",
    "display_label",
    "enter",
    "annotate",
    "transition",
)
