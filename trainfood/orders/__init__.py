"""
Orders — the order aggregate, its state machine, and the engine driving it.

    from trainfood.orders import DeliveryDesk, OrderEngine, PaymentReconciler

    match await engine.create_order(principal, request):
        case Ok(receipt):
            ...
        case Error(e):
            ...
"""

from trainfood.orders._types import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    DeliveryType,
    Role,
    Principal,
    DeliveryInfo,
    SelectedOption,
    OrderItem,
    Totals,
    Payment,
    HistoryEntry,
    ScheduleInfo,
    Location,
    Order,
    CheckoutItem,
    DeliveryRequest,
    CheckoutRequest,
    CheckoutReceipt,
    OrderQuery,
    OrderPage,
    StatusStats,
    OrderStats,
    TrackingView,
    PaymentConfirmation,
    WebhookAck,
    DeliveryOtp,
)
from trainfood.orders._machine import (
    TRANSITIONS,
    TERMINAL,
    NON_CANCELLABLE,
    STATUS_EVENTS,
    DISPLAY_LABELS,
    can_transition,
    ensure_transition,
    parse_status,
    display_label,
    enter,
    annotate,
    transition,
)
from trainfood.orders._pricing import CouponRule, PricingRules, price_totals
from trainfood.orders._validate import ValidCheckout, validate_checkout
from trainfood.orders._checkout import CheckoutDeps, CheckoutDraft, Quote, QuoteNode
from trainfood.orders._store import (
    DuplicateOrderError,
    OrderStore,
    AgentDirectory,
    MemoryOrderStore,
    MemoryAgents,
    CheckoutClaims,
    Mutation,
    mutate_order,
)
from trainfood.orders._sqlalchemy import OrderTable, SQLAlchemyOrderStore
from trainfood.orders._engine import OrderEngine, MAX_PAGE_SIZE, DEFAULT_CANCEL_REASON
from trainfood.orders._payments import PaymentReconciler, SETTLED
from trainfood.orders._delivery import DeliveryDesk, DELIVERY_OTP_TTL_MINUTES

__all__ = (
    # Types
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "DeliveryType",
    "Role",
    "Principal",
    "DeliveryInfo",
    "SelectedOption",
    "OrderItem",
    "Totals",
    "Payment",
    "HistoryEntry",
    "ScheduleInfo",
    "Location",
    "Order",
    "CheckoutItem",
    "DeliveryRequest",
    "CheckoutRequest",
    "CheckoutReceipt",
    "OrderQuery",
    "OrderPage",
    "StatusStats",
    "OrderStats",
    "TrackingView",
    "PaymentConfirmation",
    "WebhookAck",
    "DeliveryOtp",
    # State machine
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
    # Pricing / validation
    "CouponRule",
    "PricingRules",
    "price_totals",
    "ValidCheckout",
    "validate_checkout",
    # Checkout graph
    "CheckoutDeps",
    "CheckoutDraft",
    "Quote",
    "QuoteNode",
    # Stores
    "DuplicateOrderError",
    "OrderStore",
    "AgentDirectory",
    "MemoryOrderStore",
    "MemoryAgents",
    "CheckoutClaims",
    "Mutation",
    "mutate_order",
    "OrderTable",
    "SQLAlchemyOrderStore",
    # Engine
    "OrderEngine",
    "MAX_PAGE_SIZE",
    "DEFAULT_CANCEL_REASON",
    "PaymentReconciler",
    "SETTLED",
    "DeliveryDesk",
    "DELIVERY_OTP_TTL_MINUTES",
)
