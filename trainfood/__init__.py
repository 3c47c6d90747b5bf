"""
trainfood — order lifecycle engine for train-station food delivery.

    from trainfood import orders      # OrderEngine, PaymentReconciler, state machine
    from trainfood import catalog     # Products and stock
    from trainfood import schedule    # Timetables and readiness
    from trainfood import payment     # Payment gateway adapters
    from trainfood import events      # Lifecycle event emitter
    from trainfood import saga as S   # Compensated multi-step side effects
    from trainfood import graph as G  # Dependency-driven computation
"""

from trainfood import catalog
from trainfood import schedule
from trainfood import payment
from trainfood import events
from trainfood import saga
from trainfood import graph
from trainfood import lift
from trainfood import orders
from trainfood._types import (
    Lazy,
    Cents,
    Clock,
    utcnow,
)
from trainfood.errors import (
    ErrorKind,
    OrderError,
    ValidationError,
    NotFoundError,
    ConflictError,
    AuthorizationError,
    GatewayError,
    StorageError,
    ConfigurationError,
)

__version__ = "0.1.0"

__all__ = (
    "catalog",
    "schedule",
    "payment",
    "events",
    "saga",
    "graph",
    "lift",
    "orders",
    "Lazy",
    "Cents",
    "Clock",
    "utcnow",
    "ErrorKind",
    "OrderError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "AuthorizationError",
    "GatewayError",
    "StorageError",
    "ConfigurationError",
)
