"""
Error taxonomy for the order engine.

Every public operation returns ``Result[T, OrderError]``. Internals raise
the same classes; the engine converts them into ``Error(...)`` at its
boundary.

    match await engine.cancel_order(principal, order_id):
        case Ok(order):
            ...
        case Error(ConflictError() as e):
            print(e.code, e.message)
"""

from __future__ import annotations

from enum import Enum


# ═══════════════════════════════════════════════════════════════════════════════
# ErrorKind
# ═══════════════════════════════════════════════════════════════════════════════

class ErrorKind(Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    AUTHORIZATION = "authorization"
    GATEWAY = "gateway"
    STORAGE = "storage"
    CONFIGURATION = "configuration"


# ═══════════════════════════════════════════════════════════════════════════════
# OrderError — base
# ═══════════════════════════════════════════════════════════════════════════════

class OrderError(Exception):
    """Classified failure of an order-engine operation."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code!r}, {self.message!r})"


class ValidationError(OrderError):
    """Malformed or missing input. Raised before any mutation."""

    kind = ErrorKind.VALIDATION

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message)
        self.field = field


class NotFoundError(OrderError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(OrderError):
    """Illegal transition, insufficient stock, amount mismatch."""

    kind = ErrorKind.CONFLICT


class AuthorizationError(OrderError):
    kind = ErrorKind.AUTHORIZATION


class GatewayError(OrderError):
    """
    Payment processor failure.

    ``retryable`` is True for network errors, timeouts, 429 and 5xx.
    Webhook signature failures are always terminal.
    """

    kind = ErrorKind.GATEWAY

    def __init__(
        self,
        code: str,
        message: str,
        *,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(code, message)
        self.retryable = retryable
        self.status_code = status_code

    @classmethod
    def from_exception(cls, e: Exception) -> GatewayError:
        if isinstance(e, GatewayError):
            return e
        if isinstance(e, TimeoutError):
            return cls("GATEWAY_TIMEOUT", "payment gateway timed out", retryable=True)
        return cls("GATEWAY_UNAVAILABLE", str(e) or type(e).__name__, retryable=True)


class StorageError(OrderError):
    kind = ErrorKind.STORAGE


class ConfigurationError(OrderError):
    kind = ErrorKind.CONFIGURATION


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════

def as_order_error(e: Exception) -> OrderError:
    """Pass classified errors through, wrap anything else as storage failure."""
    if isinstance(e, OrderError):
        return e
    return StorageError("STORAGE_FAILURE", str(e) or type(e).__name__)


__all__ = (
    "ErrorKind",
    "OrderError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "AuthorizationError",
    "GatewayError",
    "StorageError",
    "ConfigurationError",
    "as_order_error",
)
