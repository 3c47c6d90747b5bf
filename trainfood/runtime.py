"""
Runtime — builds every collaborator from Settings.

    runtime = await Runtime.from_settings(Settings.from_env())
    try:
        await runtime.engine.create_order(principal, request)
    finally:
        await runtime.aclose()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from trainfood._types import Clock, utcnow
from trainfood.catalog import CatalogStore, MemoryCatalog, SQLAlchemyCatalog
from trainfood.config import Settings
from trainfood.db import create_database, dialect_name
from trainfood.events import QueueEmitter
from trainfood.orders import (
    DeliveryDesk,
    MemoryAgents,
    MemoryOrderStore,
    OrderEngine,
    OrderStore,
    PaymentReconciler,
    SQLAlchemyOrderStore,
)
from trainfood.payment import DisabledGateway, PaymentGateway, StripeGateway
from trainfood.schedule import MemorySchedules, ScheduleProvider, SQLAlchemySchedules

logger = logging.getLogger("trainfood.runtime")


@dataclass
class Runtime:
    settings: Settings
    catalog: CatalogStore
    schedules: ScheduleProvider
    store: OrderStore
    agents: MemoryAgents
    gateway: PaymentGateway
    emitter: QueueEmitter
    engine: OrderEngine
    reconciler: PaymentReconciler
    delivery: DeliveryDesk
    db_engine: AsyncEngine | None = None

    @classmethod
    async def from_settings(
        cls,
        settings: Settings,
        *,
        gateway: PaymentGateway | None = None,
        clock: Clock = utcnow,
    ) -> Runtime:
        """
        Memory stores unless ``database_url`` is set. The Stripe gateway is
        used when a secret key is configured, otherwise online payments are
        disabled (COD still works).
        """
        db_engine: AsyncEngine | None = None
        catalog: CatalogStore
        schedules: ScheduleProvider
        store: OrderStore

        if settings.database_url:
            session_factory, db_engine = await create_database(settings.database_url)
            catalog = SQLAlchemyCatalog(session_factory)
            schedules = SQLAlchemySchedules(session_factory)
            store = SQLAlchemyOrderStore(session_factory, dialect=dialect_name(db_engine))
            logger.info("using %s database", dialect_name(db_engine))
        else:
            catalog = MemoryCatalog()
            schedules = MemorySchedules()
            store = MemoryOrderStore()
            logger.info("using in-memory stores")

        if gateway is None:
            if settings.stripe_secret_key:
                gateway = StripeGateway(
                    settings.stripe_secret_key,
                    api_base_url=settings.stripe_api_base,
                    timeout=settings.gateway_timeout_seconds,
                    tolerance=settings.webhook_tolerance_seconds,
                )
            else:
                gateway = DisabledGateway(tolerance=settings.webhook_tolerance_seconds)

        emitter = QueueEmitter(
            delay=settings.event_delay_seconds,
            max_attempts=settings.event_max_attempts,
        )
        agents = MemoryAgents(settings.delivery_agent_ids)

        engine = OrderEngine(
            catalog=catalog,
            schedules=schedules,
            gateway=gateway,
            store=store,
            emitter=emitter,
            agents=agents,
            pricing=settings.pricing(),
            readiness_rules=settings.readiness(),
            currency=settings.currency,
            gateway_timeout=settings.gateway_timeout_seconds,
            assignment_eta_minutes=settings.assignment_eta_minutes,
            clock=clock,
        )

        return cls(
            settings=settings,
            catalog=catalog,
            schedules=schedules,
            store=store,
            agents=agents,
            gateway=gateway,
            emitter=emitter,
            engine=engine,
            reconciler=PaymentReconciler(engine, settings.stripe_webhook_secret),
            delivery=DeliveryDesk(engine, settings.delivery_otp_ttl_minutes),
            db_engine=db_engine,
        )

    async def aclose(self) -> None:
        await self.emitter.aclose()
        if isinstance(self.gateway, StripeGateway):
            await self.gateway.aclose()
        if self.db_engine is not None:
            await self.db_engine.dispose()


__all__ = ("Runtime",)
