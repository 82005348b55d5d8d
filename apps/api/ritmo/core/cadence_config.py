"""Runtime configuration for cadence generation and the claim processor."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import time
from decimal import Decimal

from ritmo.core.config import settings
from ritmo.core.constants import (
    CADENCE_SCHEDULE,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CLAIM_TIMEOUT_MINUTES,
    DEFAULT_MAX_ATTEMPTS,
    HIGH_VALUE_THRESHOLD,
)
from ritmo.db.enums import CadenceEventType
from ritmo.utils.business_days import HolidayCalendar, parse_time_of_day


@dataclass(frozen=True)
class CadenceConfig:
    """
    Immutable snapshot of cadence settings.

    Built once per pass (or per request) and passed explicitly into the
    generator and the claim processor; tests construct it directly.
    """

    calendar: HolidayCalendar = field(default_factory=HolidayCalendar)
    default_timezone: str = "Europe/Lisbon"
    anchor_time: time = time(9, 0)
    send_window_start: str = "09:00"
    send_window_end: str = "18:00"
    high_value_threshold: Decimal = Decimal(HIGH_VALUE_THRESHOLD)
    schedule: tuple[tuple[CadenceEventType, int], ...] = CADENCE_SCHEDULE
    claim_timeout_minutes: int = DEFAULT_CLAIM_TIMEOUT_MINUTES
    batch_size: int = DEFAULT_BATCH_SIZE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    auto_email: bool = True
    # Enforce the org send window for automatic emails
    enforce_send_window: bool = True

    @classmethod
    def from_settings(cls) -> "CadenceConfig":
        return cls(
            calendar=HolidayCalendar.from_settings(),
            default_timezone=settings.DEFAULT_TIMEZONE,
            anchor_time=parse_time_of_day(settings.CADENCE_ANCHOR_TIME),
            send_window_start=settings.SEND_WINDOW_START,
            send_window_end=settings.SEND_WINDOW_END,
            high_value_threshold=Decimal(str(settings.HIGH_VALUE_THRESHOLD)),
            claim_timeout_minutes=settings.CLAIM_TIMEOUT_MINUTES,
            batch_size=settings.CADENCE_BATCH_SIZE,
            max_attempts=settings.CADENCE_MAX_ATTEMPTS,
            auto_email=settings.AUTO_EMAIL_MODE,
        )

    def with_overrides(self, **changes) -> "CadenceConfig":
        return replace(self, **changes)
