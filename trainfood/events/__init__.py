"""
Events — order notifications, fire-and-forget.

    from trainfood import events

    emitter = events.QueueEmitter([notify_kitchen], delay=1.0)
    emitter.emit(events.EventName.CREATED, order.id)
"""

from trainfood.events._emitter import (
    EventName,
    OrderEvent,
    EventHandler,
    EventEmitter,
    QueueEmitter,
)

__all__ = (
    "EventName",
    "OrderEvent",
    "EventHandler",
    "EventEmitter",
    "QueueEmitter",
)
