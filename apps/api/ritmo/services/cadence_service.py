"""Cadence service - generates and cancels follow-up schedules for quotes.

Every send (or resend) of a quote opens a new cadence run: the run id is
bumped, still-scheduled events of older runs are cancelled as `resent`, and
four events are inserted with business-day due dates. Events of an older run
that are mid-flight are left alone; the claim processor cancels them when it
sees the run mismatch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from datetime import timezone as dt_timezone
from decimal import Decimal
from uuid import UUID

import sentry_sdk
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ritmo.core.cadence_config import CadenceConfig
from ritmo.core.structured_logging import build_log_context
from ritmo.db.enums import (
    BusinessStatus,
    CadenceEventStatus,
    CadenceEventType,
    CallPriority,
    CancelReason,
    RitmoStage,
)
from ritmo.db.models import CadenceEvent, Organization, Quote
from ritmo.utils.business_days import add_business_days

logger = logging.getLogger(__name__)


class CadenceServiceError(Exception):
    """Base error for cadence generation."""


class QuoteNotFoundError(CadenceServiceError):
    pass


class CadenceIntegrityError(CadenceServiceError):
    """More than one cadence run has live events for the same quote."""


@dataclass(frozen=True)
class CadenceRunResult:
    run_id: int
    events_created: int
    events: list[CadenceEvent] = field(default_factory=list)


@dataclass(frozen=True)
class CancelResult:
    cancelled_count: int


def resolve_priority(quote_value: Decimal | float | int | None, threshold: Decimal | float | int) -> CallPriority:
    """HIGH when the quote value reaches the threshold (inclusive)."""
    if quote_value is None:
        return CallPriority.LOW
    if Decimal(str(quote_value)) >= Decimal(str(threshold)):
        return CallPriority.HIGH
    return CallPriority.LOW


def build_schedule(
    sent_at: datetime,
    *,
    timezone: str,
    config: CadenceConfig,
) -> list[tuple[CadenceEventType, datetime]]:
    """Due date (UTC) of every cadence step for a send instant."""
    return [
        (
            event_type,
            add_business_days(
                sent_at,
                offset,
                timezone=timezone,
                calendar=config.calendar,
                at=config.anchor_time,
            ),
        )
        for event_type, offset in config.schedule
    ]


def generate_cadence_events(
    db: Session,
    quote_id: UUID,
    organization_id: UUID,
    sent_at: datetime,
    quote_value: Decimal | float | int | None,
    timezone: str | None = None,
    *,
    config: CadenceConfig | None = None,
    now: datetime | None = None,
) -> CadenceRunResult:
    """
    Open a new cadence run for a quote that was just sent (or resent).

    All writes happen in one transaction; on any error the session is rolled
    back and the error propagates. Calling twice creates two runs.
    """
    config = config or CadenceConfig.from_settings()
    now = now or datetime.now(dt_timezone.utc)
    if sent_at.tzinfo is None:
        sent_at = sent_at.replace(tzinfo=dt_timezone.utc)

    try:
        # Row lock serializes concurrent resends of the same quote
        quote = db.execute(
            select(Quote)
            .where(Quote.id == quote_id, Quote.organization_id == organization_id)
            .with_for_update()
        ).scalar_one_or_none()
        if not quote:
            raise QuoteNotFoundError(f"Quote {quote_id} not found")

        org = db.query(Organization).filter(Organization.id == organization_id).first()
        tz = timezone or (org.timezone if org else None) or config.default_timezone
        threshold = config.high_value_threshold
        if org and org.priority_threshold is not None:
            threshold = org.priority_threshold

        new_run_id = (quote.cadence_run_id or 0) + 1
        priority = resolve_priority(quote_value, threshold)
        schedule = build_schedule(sent_at, timezone=tz, config=config)

        superseded = db.execute(
            update(CadenceEvent)
            .where(
                CadenceEvent.quote_id == quote_id,
                CadenceEvent.status == CadenceEventStatus.SCHEDULED.value,
                CadenceEvent.cadence_run_id < new_run_id,
            )
            .values(
                status=CadenceEventStatus.CANCELLED.value,
                cancel_reason=CancelReason.RESENT.value,
                processed_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount

        events = [
            CadenceEvent(
                quote_id=quote_id,
                organization_id=organization_id,
                cadence_run_id=new_run_id,
                event_type=event_type.value,
                scheduled_for=scheduled_for,
                status=CadenceEventStatus.SCHEDULED.value,
                priority=priority.value if event_type == CadenceEventType.CALL_D7 else None,
            )
            for event_type, scheduled_for in schedule
        ]
        db.add_all(events)

        quote.cadence_run_id = new_run_id
        quote.ritmo_stage = RitmoStage.FUP_D1.value
        quote.sent_at = sent_at
        quote.last_activity_at = now
        if quote.first_sent_at is None:
            quote.first_sent_at = sent_at

        db.flush()
        assert_single_live_run(db, quote_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Cadence run generated (%d events, %d superseded, priority=%s)",
        len(events),
        superseded,
        priority.value,
        extra=build_log_context(org_id=organization_id, quote_id=quote_id, run_id=new_run_id),
    )
    return CadenceRunResult(run_id=new_run_id, events_created=len(events), events=events)


def mark_quote_sent(
    db: Session,
    quote_id: UUID,
    organization_id: UUID,
    sent_at: datetime | None = None,
    *,
    config: CadenceConfig | None = None,
) -> CadenceRunResult:
    """Set the quote's business status to sent and start its cadence."""
    quote = (
        db.query(Quote)
        .filter(Quote.id == quote_id, Quote.organization_id == organization_id)
        .first()
    )
    if not quote:
        raise QuoteNotFoundError(f"Quote {quote_id} not found")
    sent_at = sent_at or datetime.now(dt_timezone.utc)
    quote.business_status = BusinessStatus.SENT.value
    db.flush()
    return generate_cadence_events(
        db,
        quote_id=quote.id,
        organization_id=organization_id,
        sent_at=sent_at,
        quote_value=quote.value,
        config=config,
    )


def cancel_pending_cadence(
    db: Session,
    quote_id: UUID,
    reason: CancelReason | str = CancelReason.STATUS_CHANGED,
    *,
    now: datetime | None = None,
) -> CancelResult:
    """
    Stop a quote's follow-up (won/lost/negotiation, or a manual stop).

    Scheduled events are cancelled with `reason` and the stage becomes stopped.
    Claimed events are left to the claim processor, which re-checks the status.
    """
    now = now or datetime.now(dt_timezone.utc)
    reason_value = CancelReason(reason).value
    try:
        cancelled = db.execute(
            update(CadenceEvent)
            .where(
                CadenceEvent.quote_id == quote_id,
                CadenceEvent.status == CadenceEventStatus.SCHEDULED.value,
            )
            .values(
                status=CadenceEventStatus.CANCELLED.value,
                cancel_reason=reason_value,
                processed_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount

        quote = db.query(Quote).filter(Quote.id == quote_id).first()
        if not quote:
            raise QuoteNotFoundError(f"Quote {quote_id} not found")
        quote.ritmo_stage = RitmoStage.STOPPED.value
        quote.last_activity_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Cadence cancelled (%d events, reason=%s)",
        cancelled,
        reason_value,
        extra=build_log_context(org_id=quote.organization_id, quote_id=quote_id),
    )
    return CancelResult(cancelled_count=cancelled)


def assert_single_live_run(db: Session, quote_id: UUID) -> None:
    """
    Raise CadenceIntegrityError if scheduled events span more than one run.

    Claimed events of a superseded run may briefly coexist with the new run
    (they are cancelled by the claim processor), so only `scheduled` counts.
    """
    runs = db.execute(
        select(func.count(func.distinct(CadenceEvent.cadence_run_id))).where(
            CadenceEvent.quote_id == quote_id,
            CadenceEvent.status == CadenceEventStatus.SCHEDULED.value,
        )
    ).scalar_one()
    if runs > 1:
        error = CadenceIntegrityError(
            f"Quote {quote_id} has scheduled events in {runs} cadence runs"
        )
        logger.critical(
            "Cadence integrity violation: %s",
            error,
            extra=build_log_context(quote_id=quote_id),
        )
        sentry_sdk.capture_exception(error)
        raise error
