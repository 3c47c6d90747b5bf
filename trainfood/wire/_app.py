"""
FastAPI application.

    app = create_app(runtime)            # tests, embedding
    uvicorn trainfood.wire:build_app --factory   # standalone, settings from env

Engine results are unwrapped at the route: ``Ok`` becomes the response body,
``Error`` is raised and mapped to a status code by ``ErrorKind``.
"""

import logging
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from kungfu import Result, Ok, Error
from pydantic import BaseModel

from trainfood.config import Settings, configure_logging
from trainfood.errors import ErrorKind, GatewayError, OrderError
from trainfood.orders import Principal
from trainfood.runtime import Runtime
from trainfood.wire._auth import current_principal
from trainfood.wire._codecs import (
    AssignIn,
    CancelIn,
    CheckoutIn,
    ConfirmationOut,
    ConfirmPaymentIn,
    DeclineIn,
    DeliverIn,
    ErrorOut,
    IssueIn,
    OrderOut,
    OrderPageOut,
    OtpOut,
    RateIn,
    ReceiptOut,
    StatsOut,
    StatusIn,
    StopsOut,
    TrackingOut,
    WebhookAckOut,
)
from trainfood.wire._limits import MemoryRateLimiter, RateLimiter

logger = logging.getLogger("trainfood.wire")

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.STORAGE: 500,
    ErrorKind.CONFIGURATION: 500,
}


def status_for(error: OrderError) -> int:
    if isinstance(error, GatewayError):
        return 502 if error.retryable else 400
    return _STATUS_BY_KIND.get(error.kind, 500)


def unwrap[T](result: Result[T, OrderError]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise e


def _json(body: BaseModel, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body.model_dump(mode="json", by_alias=True), status_code=status_code)


# ═══════════════════════════════════════════════════════════════════════════════
# Dependencies
# ═══════════════════════════════════════════════════════════════════════════════

def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


class RateLimitedError(Exception):
    def __init__(self, retry_after: float) -> None:
        super().__init__(f"rate limited, retry after {retry_after:.0f}s")
        self.retry_after = retry_after


async def rate_limited(request: Request) -> None:
    limiter: RateLimiter = request.app.state.limiter
    key = request.headers.get("x-user-id") or (request.client.host if request.client else "anonymous")
    decision = await limiter.hit(key)
    if not decision.allowed:
        raise RateLimitedError(decision.retry_after)


RuntimeDep = Annotated[Runtime, Depends(get_runtime)]
PrincipalDep = Annotated[Principal, Depends(current_principal)]


# ═══════════════════════════════════════════════════════════════════════════════
# Routes
# ═══════════════════════════════════════════════════════════════════════════════

orders = APIRouter(prefix="/orders", dependencies=[Depends(rate_limited)])
payments = APIRouter(prefix="/payments", dependencies=[Depends(rate_limited)])
delivery = APIRouter(prefix="/delivery", dependencies=[Depends(rate_limited)])
webhooks = APIRouter(prefix="/orders")


@orders.post("")
async def create_order(
    body: CheckoutIn,
    rt: RuntimeDep,
    principal: PrincipalDep,
    idempotency_key: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    receipt = unwrap(await rt.engine.create_order(principal, body.to_domain(idempotency_key)))
    return _json(ReceiptOut.from_domain(receipt), 200 if receipt.replayed else 201)


@orders.get("/my")
async def my_orders(
    rt: RuntimeDep,
    principal: PrincipalDep,
    status: str | None = None,
    train_no: Annotated[str | None, Query(alias="trainNo")] = None,
    page: int = 1,
    limit: int = 20,
) -> JSONResponse:
    result = await rt.engine.list_orders(
        principal, status=status, train_no=train_no, page=page, limit=limit
    )
    return _json(OrderPageOut.from_domain(unwrap(result)))


@orders.get("/admin/all")
async def all_orders(
    rt: RuntimeDep,
    principal: PrincipalDep,
    status: str | None = None,
    train_no: Annotated[str | None, Query(alias="trainNo")] = None,
    page: int = 1,
    limit: int = 20,
) -> JSONResponse:
    result = await rt.engine.list_orders(
        principal, status=status, train_no=train_no, page=page, limit=limit, all_orders=True
    )
    return _json(OrderPageOut.from_domain(unwrap(result)))


@orders.get("/admin/stats")
async def order_stats(rt: RuntimeDep, principal: PrincipalDep) -> JSONResponse:
    return _json(StatsOut.from_domain(unwrap(await rt.engine.order_stats(principal))))


@orders.get("/trains/{train_no}/{date}")
async def train_schedule(train_no: str, date: str, rt: RuntimeDep, principal: PrincipalDep) -> JSONResponse:
    stops = unwrap(await rt.engine.train_schedule(train_no, date))
    return _json(StopsOut.from_domain(train_no, date, stops))


@orders.get("/{order_id}")
async def get_order(order_id: str, rt: RuntimeDep, principal: PrincipalDep) -> JSONResponse:
    return _json(OrderOut.from_domain(unwrap(await rt.engine.get_order(principal, order_id))))


@orders.patch("/{order_id}/status")
async def update_status(
    order_id: str, body: StatusIn, rt: RuntimeDep, principal: PrincipalDep
) -> JSONResponse:
    result = await rt.engine.update_status(
        principal, order_id, body.status, note=body.note, driver_location=body.location()
    )
    return _json(OrderOut.from_domain(unwrap(result)))


@orders.put("/{order_id}/status-tracking")
async def update_status_tracking(
    order_id: str, body: StatusIn, rt: RuntimeDep, principal: PrincipalDep
) -> JSONResponse:
    """Same transition, addressed by display label ("Ready", "PickedUp")."""
    result = await rt.engine.update_status(
        principal, order_id, body.status, note=body.note, driver_location=body.location()
    )
    return _json(OrderOut.from_domain(unwrap(result)))


@orders.put("/{order_id}/assign")
async def assign_order(
    order_id: str, body: AssignIn, rt: RuntimeDep, principal: PrincipalDep
) -> JSONResponse:
    result = await rt.engine.assign_order(principal, order_id, body.agent_id)
    return _json(OrderOut.from_domain(unwrap(result)))


@orders.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    rt: RuntimeDep,
    principal: PrincipalDep,
    body: Annotated[CancelIn | None, Body()] = None,
) -> JSONResponse:
    reason = body.reason if body is not None else None
    result = await rt.engine.cancel_order(principal, order_id, reason)
    return _json(OrderOut.from_domain(unwrap(result)))


@orders.post("/{order_id}/rate")
async def rate_order(
    order_id: str, body: RateIn, rt: RuntimeDep, principal: PrincipalDep
) -> JSONResponse:
    result = await rt.engine.rate_order(principal, order_id, body.to_domain(), body.review)
    return _json(OrderOut.from_domain(unwrap(result)))


@orders.get("/{order_id}/tracking")
async def tracking(order_id: str, rt: RuntimeDep, principal: PrincipalDep) -> JSONResponse:
    return _json(TrackingOut.from_domain(unwrap(await rt.engine.tracking(principal, order_id))))


@orders.post("/{order_id}/delivery-otp")
async def delivery_otp(order_id: str, rt: RuntimeDep, principal: PrincipalDep) -> JSONResponse:
    otp = unwrap(await rt.delivery.generate_delivery_otp(principal, order_id))
    return _json(OtpOut.from_domain(otp), 201)


@delivery.post("/orders/{order_id}/accept")
async def accept_delivery(order_id: str, rt: RuntimeDep, principal: PrincipalDep) -> JSONResponse:
    return _json(OrderOut.from_domain(unwrap(await rt.delivery.accept_order(principal, order_id))))


@delivery.post("/orders/{order_id}/decline")
async def decline_delivery(
    order_id: str,
    rt: RuntimeDep,
    principal: PrincipalDep,
    body: Annotated[DeclineIn | None, Body()] = None,
) -> JSONResponse:
    reason = body.reason if body is not None else None
    result = await rt.delivery.decline_order(principal, order_id, reason)
    return _json(OrderOut.from_domain(unwrap(result)))


@delivery.post("/orders/{order_id}/issues")
async def report_issue(
    order_id: str, body: IssueIn, rt: RuntimeDep, principal: PrincipalDep
) -> JSONResponse:
    result = await rt.delivery.report_issue(principal, order_id, body.issue_type, body.description)
    return _json(OrderOut.from_domain(unwrap(result)), 201)


@delivery.post("/orders/{order_id}/deliver")
async def confirm_delivery(
    order_id: str, body: DeliverIn, rt: RuntimeDep, principal: PrincipalDep
) -> JSONResponse:
    result = await rt.delivery.confirm_delivery(principal, order_id, body.otp)
    return _json(OrderOut.from_domain(unwrap(result)))


@webhooks.post("/webhook/payment")
async def payment_webhook(
    request: Request,
    rt: RuntimeDep,
    stripe_signature: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    """Raw body: the signature covers the exact bytes sent."""
    payload = await request.body()
    ack = unwrap(await rt.reconciler.handle_webhook(payload, stripe_signature))
    return _json(WebhookAckOut.from_domain(ack))


@payments.post("/confirm")
async def confirm_payment(
    body: ConfirmPaymentIn, rt: RuntimeDep, principal: PrincipalDep
) -> JSONResponse:
    result = await rt.reconciler.confirm_payment(principal, body.order_id, body.payment_intent_id)
    return _json(ConfirmationOut.from_domain(unwrap(result)))


# ═══════════════════════════════════════════════════════════════════════════════
# Error handlers
# ═══════════════════════════════════════════════════════════════════════════════

async def _order_error(request: Request, exc: OrderError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc)
    body = ErrorOut.from_domain(exc).model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONResponse({"error": body}, status_code=status)


async def _request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        {"error": {"code": "INVALID_REQUEST", "message": "malformed request body", "details": _details(exc)}},
        status_code=400,
    )


def _details(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


async def _rate_limited(request: Request, exc: RateLimitedError) -> JSONResponse:
    retry_after = max(1, math.ceil(exc.retry_after))
    return JSONResponse(
        {"error": {"code": "RATE_LIMITED", "message": "too many requests"}, "retryAfter": retry_after},
        status_code=429,
        headers={"Retry-After": str(retry_after)},
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Factories
# ═══════════════════════════════════════════════════════════════════════════════

def _mount(app: FastAPI) -> FastAPI:
    app.include_router(webhooks)
    app.include_router(orders)
    app.include_router(payments)
    app.include_router(delivery)
    app.add_exception_handler(OrderError, _order_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_invalid)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitedError, _rate_limited)  # type: ignore[arg-type]
    return app


def _default_limiter(settings: Settings) -> RateLimiter:
    return MemoryRateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)


def create_app(runtime: Runtime, *, limiter: RateLimiter | None = None) -> FastAPI:
    app = FastAPI(title="trainfood")
    app.state.runtime = runtime
    app.state.limiter = limiter or _default_limiter(runtime.settings)
    return _mount(app)


def build_app(settings: Settings | None = None) -> FastAPI:
    """Standalone app: the runtime is built on startup and closed on shutdown."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        runtime = await Runtime.from_settings(settings)
        app.state.runtime = runtime
        app.state.limiter = _default_limiter(settings)
        try:
            yield
        finally:
            await runtime.aclose()

    return _mount(FastAPI(title="trainfood", lifespan=lifespan))


__all__ = ("create_app", "build_app", "status_for", "unwrap")
