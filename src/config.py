# src/config.py

import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    stripe_webhook_secret: str | None
    stripe_secret_key: str | None
    stripe_webhook_tolerance_seconds: int
    hold_timeout_minutes: int
    ticket_cutoff_days: int
    hold_sweep_interval_seconds: float
    log_level: str

    @property
    def hold_timeout(self) -> timedelta:
        return timedelta(minutes=self.hold_timeout_minutes)


def _optional(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def get_settings() -> Settings:
    # Read on every call so environment changes (and tests) take effect.
    return Settings(
        stripe_webhook_secret=_optional("STRIPE_WEBHOOK_SECRET"),
        stripe_secret_key=_optional("STRIPE_SECRET_KEY"),
        stripe_webhook_tolerance_seconds=int(os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300")),
        hold_timeout_minutes=int(os.getenv("HOLD_TIMEOUT_MINUTES", "20")),
        ticket_cutoff_days=int(os.getenv("TICKET_CUTOFF_DAYS", "3")),
        hold_sweep_interval_seconds=float(os.getenv("HOLD_SWEEP_INTERVAL_SECONDS", "60")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
