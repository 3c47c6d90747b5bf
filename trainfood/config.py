"""
Runtime configuration.

Values come from the environment (a ``.env`` file is loaded first) and are
validated by pydantic:

    settings = Settings.from_env()
    configure_logging(settings.log_level)
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from trainfood.orders._pricing import CouponRule, PricingRules
from trainfood.schedule import ReadinessRules

logger = logging.getLogger("trainfood.config")


# ═══════════════════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════════════════

class CouponSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    percent: int = Field(ge=0, le=100)
    cap_cents: int = Field(ge=0)


def _default_coupons() -> dict[str, CouponSettings]:
    return {"FIRST10": CouponSettings(percent=10, cap_cents=1000)}


class Settings(BaseModel):
    """Engine settings. Money in minor currency units."""

    model_config = ConfigDict(frozen=True)

    database_url: str | None = None
    currency: str = "inr"

    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_api_base: str = "https://api.stripe.com"
    gateway_timeout_seconds: float = Field(default=10.0, gt=0)
    webhook_tolerance_seconds: int = Field(default=300, ge=0)

    tax_rate: float = Field(default=0.05, ge=0)
    delivery_fee_default_cents: int = Field(default=2000, ge=0)
    delivery_fee_train_cents: int = Field(default=3000, ge=0)
    delivery_fee_home_cents: int = Field(default=4000, ge=0)
    coupons: dict[str, CouponSettings] = Field(default_factory=_default_coupons)

    prep_time_minutes: int = Field(default=20, ge=0)
    transit_buffer_minutes: int = Field(default=5, ge=0)
    pickup_buffer_minutes: int = Field(default=3, ge=0)
    assignment_eta_minutes: int = Field(default=45, ge=0)
    delivery_otp_ttl_minutes: int = Field(default=10, ge=1)
    delivery_agent_ids: tuple[str, ...] = ()

    event_delay_seconds: float = Field(default=1.0, ge=0)
    event_max_attempts: int = Field(default=3, ge=1)

    rate_limit_requests: int = Field(default=200, ge=1)
    rate_limit_window_seconds: float = Field(default=900.0, gt=0)

    log_level: str = "INFO"

    @field_validator("delivery_agent_ids", mode="before")
    @classmethod
    def _split_agents(cls, value: object) -> object:
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return value

    @classmethod
    def from_env(cls, env_file: str | None = None) -> Settings:
        """Load ``.env`` (if any), then read known variables from os.environ."""
        load_dotenv(dotenv_path=env_file)
        values: dict[str, str] = {}
        for field, var in _ENV_VARS.items():
            raw = os.getenv(var)
            if raw is not None and raw != "":
                values[field] = raw
        settings = cls.model_validate(values)
        if settings.stripe_secret_key is None:
            logger.warning("STRIPE_SECRET_KEY not set, online payments are disabled")
        return settings

    def pricing(self) -> PricingRules:
        return PricingRules(
            tax_rate=self.tax_rate,
            delivery_fee_default_cents=self.delivery_fee_default_cents,
            delivery_fee_train_cents=self.delivery_fee_train_cents,
            delivery_fee_home_cents=self.delivery_fee_home_cents,
            coupons=tuple(
                CouponRule(code=code.upper(), percent=c.percent, cap_cents=c.cap_cents)
                for code, c in self.coupons.items()
            ),
        )

    def readiness(self) -> ReadinessRules:
        return ReadinessRules(
            prep_time_minutes=self.prep_time_minutes,
            transit_buffer_minutes=self.transit_buffer_minutes,
            pickup_buffer_minutes=self.pickup_buffer_minutes,
        )


_ENV_VARS: dict[str, str] = {
    "database_url": "TRAINFOOD_DATABASE_URL",
    "currency": "STRIPE_CURRENCY",
    "stripe_secret_key": "STRIPE_SECRET_KEY",
    "stripe_webhook_secret": "STRIPE_WEBHOOK_SECRET",
    "stripe_api_base": "STRIPE_API_BASE",
    "gateway_timeout_seconds": "TRAINFOOD_GATEWAY_TIMEOUT",
    "webhook_tolerance_seconds": "TRAINFOOD_WEBHOOK_TOLERANCE",
    "tax_rate": "TRAINFOOD_TAX_RATE",
    "delivery_fee_default_cents": "TRAINFOOD_DELIVERY_FEE_DEFAULT",
    "delivery_fee_train_cents": "TRAINFOOD_DELIVERY_FEE_TRAIN",
    "delivery_fee_home_cents": "TRAINFOOD_DELIVERY_FEE_HOME",
    "prep_time_minutes": "TRAINFOOD_PREP_TIME_MINUTES",
    "transit_buffer_minutes": "TRAINFOOD_TRANSIT_BUFFER_MINUTES",
    "pickup_buffer_minutes": "TRAINFOOD_PICKUP_BUFFER_MINUTES",
    "assignment_eta_minutes": "TRAINFOOD_ASSIGNMENT_ETA_MINUTES",
    "delivery_otp_ttl_minutes": "TRAINFOOD_DELIVERY_OTP_TTL_MINUTES",
    "delivery_agent_ids": "TRAINFOOD_DELIVERY_AGENTS",
    "event_delay_seconds": "TRAINFOOD_EVENT_DELAY",
    "event_max_attempts": "TRAINFOOD_EVENT_MAX_ATTEMPTS",
    "rate_limit_requests": "TRAINFOOD_RATE_LIMIT_REQUESTS",
    "rate_limit_window_seconds": "TRAINFOOD_RATE_LIMIT_WINDOW",
    "log_level": "TRAINFOOD_LOG_LEVEL",
}


# ═══════════════════════════════════════════════════════════════════════════════
# Logging
# ═══════════════════════════════════════════════════════════════════════════════

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Install a single stream handler on the ``trainfood`` logger."""
    root = logging.getLogger("trainfood")
    root.setLevel(level if isinstance(level, int) else level.upper())
    if not any(getattr(h, "_trainfood", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._trainfood = True  # type: ignore[attr-defined]
        root.addHandler(handler)


__all__ = ("Settings", "CouponSettings", "configure_logging", "LOG_FORMAT")
