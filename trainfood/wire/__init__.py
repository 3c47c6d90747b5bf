"""
Wire — the HTTP surface over OrderEngine, PaymentReconciler and DeliveryDesk.

    from trainfood.runtime import Runtime
    from trainfood.wire import create_app

    runtime = await Runtime.from_settings(settings)
    app = create_app(runtime)

Standalone, configured from the environment:

    uvicorn trainfood.wire:build_app --factory
"""

from trainfood.wire._app import create_app, build_app, status_for, unwrap
from trainfood.wire._auth import current_principal
from trainfood.wire._limits import RateDecision, RateLimiter, MemoryRateLimiter

__all__ = (
    "create_app",
    "build_app",
    "status_for",
    "unwrap",
    "current_principal",
    "RateDecision",
    "RateLimiter",
    "MemoryRateLimiter",
)
