"""Claim service - atomically leases due cadence events and executes them.

A pass is stateless and safe to run from any number of workers at once:

1. Orphan reclaim: leases older than the claim timeout go back to scheduled,
   unless a resend superseded their run (then they are cancelled).
2. Atomic claim: one UPDATE ... WHERE id IN (SELECT ... FOR UPDATE SKIP
   LOCKED) ... RETURNING; an event is only ever claimed by one worker.
3. Per event (own transaction): re-check the quote, then create a task or
   send the email, then resolve and cascade the stage.

Every resolution write is conditional on the lease (status=claimed,
claimed_by=worker), so a worker whose lease expired cannot overwrite the
outcome of the worker that reclaimed the event.
"""

from __future__ import annotations

import logging
import os
import socket
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from ritmo.core.cadence_config import CadenceConfig
from ritmo.core.constants import EVENT_TEMPLATE_CODES
from ritmo.core.structured_logging import build_log_context, mask_email
from ritmo.db.enums import (
    BusinessStatus,
    CadenceEventStatus,
    CadenceEventType,
    CallPriority,
    CancelReason,
    SkipReason,
    TaskType,
)
from ritmo.db.models import CadenceEvent, Quote
from ritmo.services import stage_service
from ritmo.services.collaborators import (
    Collaborators,
    ContactInfo,
    NewTask,
    QuoteStatus,
    build_default_collaborators,
)
from ritmo.utils.business_days import is_within_send_window, next_send_time

logger = logging.getLogger(__name__)


class ClaimServiceError(Exception):
    """Base error for the claim processor."""


class LeaseLostError(ClaimServiceError):
    """The event is no longer claimed by this worker."""


class EventOutcome(str, Enum):
    SENT = "sent"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    FAILED = "failed"  # Downgraded to a manual follow_up task
    RETRIED = "retried"
    DEFERRED = "deferred"


@dataclass
class ClaimPassSummary:
    claimed: int = 0
    sent: int = 0
    completed: int = 0
    cancelled: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0
    retried: int = 0
    reclaimed: int = 0
    tasks_created: int = 0
    lease_lost: int = 0

    def record(self, outcome: EventOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def default_worker_id() -> str:
    """Unique per process and pass: host:pid:random."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _priority_rank():
    return case((CadenceEvent.priority == CallPriority.HIGH.value, 0), else_=1)


def _current_run_id():
    """The owning quote's live run, correlated to the cadence_events row being updated."""
    return (
        select(Quote.cadence_run_id)
        .where(Quote.id == CadenceEvent.quote_id)
        .scalar_subquery()
    )


# =============================================================================
# Claiming
# =============================================================================


def reclaim_orphaned_claims(
    db: Session,
    *,
    claim_timeout_minutes: int,
    now: datetime | None = None,
) -> int:
    """
    Return leases older than the claim timeout to scheduled. Commits.

    Stale claims whose run was superseded by a resend are cancelled as
    `resent` instead, so an old run never becomes live again.
    """
    now = now or _utcnow()
    cutoff = now - timedelta(minutes=claim_timeout_minutes)
    stale = (
        CadenceEvent.status == CadenceEventStatus.CLAIMED.value,
        CadenceEvent.claimed_at < cutoff,
    )
    superseded = db.execute(
        update(CadenceEvent)
        .where(*stale, CadenceEvent.cadence_run_id != _current_run_id())
        .values(
            status=CadenceEventStatus.CANCELLED.value,
            cancel_reason=CancelReason.RESENT.value,
            processed_at=now,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    result = db.execute(
        update(CadenceEvent)
        .where(*stale, CadenceEvent.cadence_run_id == _current_run_id())
        .values(
            status=CadenceEventStatus.SCHEDULED.value,
            claimed_at=None,
            claimed_by=None,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if superseded:
        logger.info("Cancelled %d orphaned claims of superseded cadence runs", superseded)
    if result.rowcount:
        logger.warning("Reclaimed %d orphaned cadence claims", result.rowcount)
    return result.rowcount


def claim_due_events(
    db: Session,
    *,
    batch_size: int,
    worker_id: str,
    now: datetime | None = None,
) -> list[UUID]:
    """
    Atomically claim up to batch_size due events for this worker. Commits.

    Oldest due first, HIGH priority first on ties. Rows locked by a
    concurrent claimer are skipped (Postgres); the status guard in the outer
    UPDATE keeps the claim exclusive on any backend.
    """
    now = now or _utcnow()
    due = (
        select(CadenceEvent.id)
        .where(
            CadenceEvent.status == CadenceEventStatus.SCHEDULED.value,
            CadenceEvent.scheduled_for <= now,
        )
        .order_by(CadenceEvent.scheduled_for, _priority_rank())
        .limit(batch_size)
        .with_for_update(skip_locked=True)
    )
    stmt = (
        update(CadenceEvent)
        .where(
            CadenceEvent.id.in_(due),
            CadenceEvent.status == CadenceEventStatus.SCHEDULED.value,
        )
        .values(
            status=CadenceEventStatus.CLAIMED.value,
            claimed_at=now,
            claimed_by=worker_id,
            attempts=CadenceEvent.attempts + 1,
        )
        .returning(CadenceEvent.id)
        .execution_options(synchronize_session=False)
    )
    claimed_ids = list(db.execute(stmt).scalars().all())
    db.commit()
    return claimed_ids


# =============================================================================
# Lease-guarded writes
# =============================================================================


def _lease_guard(event_id: UUID, worker_id: str):
    return (
        CadenceEvent.id == event_id,
        CadenceEvent.status == CadenceEventStatus.CLAIMED.value,
        CadenceEvent.claimed_by == worker_id,
    )


def _resolve(db: Session, event_id: UUID, worker_id: str, status: CadenceEventStatus, now: datetime, **values) -> None:
    result = db.execute(
        update(CadenceEvent)
        .where(*_lease_guard(event_id, worker_id))
        .values(status=status.value, processed_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise LeaseLostError(f"Lease on cadence event {event_id} lost")


def _release(
    db: Session,
    event_id: UUID,
    worker_id: str,
    now: datetime,
    *,
    refund_attempt: bool = False,
    **values,
) -> bool:
    """
    Put a claimed event back to scheduled.

    Only events of the quote's current run go back; a claim whose run was
    superseded meanwhile is cancelled as `resent` and False is returned.
    """
    if refund_attempt:
        values["attempts"] = CadenceEvent.attempts - 1
    result = db.execute(
        update(CadenceEvent)
        .where(
            *_lease_guard(event_id, worker_id),
            CadenceEvent.cadence_run_id == _current_run_id(),
        )
        .values(
            status=CadenceEventStatus.SCHEDULED.value,
            claimed_at=None,
            claimed_by=None,
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        return True
    _resolve(
        db, event_id, worker_id, CadenceEventStatus.CANCELLED, now,
        cancel_reason=CancelReason.RESENT.value,
    )
    return False


def _renew_lease(db: Session, event_id: UUID, worker_id: str, now: datetime) -> None:
    result = db.execute(
        update(CadenceEvent)
        .where(*_lease_guard(event_id, worker_id))
        .values(claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise LeaseLostError(f"Lease on cadence event {event_id} lost")
    db.commit()


# =============================================================================
# Execution
# =============================================================================


def _cascade(db: Session, event: CadenceEvent, now: datetime) -> None:
    quote = db.query(Quote).filter(Quote.id == event.quote_id).first()
    if quote and quote.cadence_run_id == event.cadence_run_id:
        stage_service.apply_stage_transition(quote, event.event_type, now=now)


def _quote_label(quote: QuoteStatus) -> str:
    if quote.reference:
        return f"{quote.title} ({quote.reference})"
    return quote.title


def _template_variables(contact: ContactInfo, quote: QuoteStatus) -> dict[str, str]:
    return {
        "contact_name": contact.name or "",
        "contact_company": contact.company or "",
        "quote_title": quote.title or "",
        "quote_reference": quote.reference or "",
        "quote_value": f"{quote.value:.2f}" if quote.value is not None else "",
    }


def _create_task(
    collaborators: Collaborators,
    event: CadenceEvent,
    summary: ClaimPassSummary,
    *,
    task_type: TaskType,
    title: str,
    description: str | None,
    priority: str,
    due_at: datetime | None,
) -> None:
    task = collaborators.tasks.create_task(
        NewTask(
            organization_id=event.organization_id,
            quote_id=event.quote_id,
            cadence_event_id=event.id,
            task_type=task_type.value,
            title=title,
            description=description,
            priority=priority,
            due_at=due_at,
        )
    )
    if task is not None:
        summary.tasks_created += 1


def _downgrade_to_follow_up(
    db: Session,
    event: CadenceEvent,
    quote: QuoteStatus,
    error: str,
    *,
    worker_id: str,
    now: datetime,
    collaborators: Collaborators,
    summary: ClaimPassSummary,
) -> EventOutcome:
    """Give up on automatic delivery: HIGH priority follow_up task, event completed."""
    _create_task(
        collaborators,
        event,
        summary,
        task_type=TaskType.FOLLOW_UP,
        title=f"Follow up manually: {_quote_label(quote)}",
        description=f"Automatic {event.event_type} could not be sent ({error}).",
        priority=CallPriority.HIGH.value,
        due_at=now,
    )
    _resolve(db, event.id, worker_id, CadenceEventStatus.COMPLETED, now, last_error=error)
    _cascade(db, event, now)
    db.commit()
    return EventOutcome.FAILED


def process_claimed_event(
    db: Session,
    event_id: UUID,
    *,
    worker_id: str,
    now: datetime,
    collaborators: Collaborators,
    config: CadenceConfig,
    summary: ClaimPassSummary,
) -> EventOutcome:
    """Execute one claimed event. Commits its own transaction."""
    event = db.query(CadenceEvent).filter(CadenceEvent.id == event_id).first()
    if (
        event is None
        or event.status != CadenceEventStatus.CLAIMED.value
        or event.claimed_by != worker_id
    ):
        raise LeaseLostError(f"Lease on cadence event {event_id} lost")
    log_context = build_log_context(
        org_id=event.organization_id,
        quote_id=event.quote_id,
        event_id=event.id,
        worker_id=worker_id,
        run_id=event.cadence_run_id,
    )

    # 1. Validity: never act on a quote that moved on
    quote = collaborators.quotes.get_quote_status(event.quote_id)
    if quote is None or quote.business_status != BusinessStatus.SENT.value:
        _resolve(
            db, event.id, worker_id, CadenceEventStatus.CANCELLED, now,
            cancel_reason=CancelReason.STATUS_CHANGED.value,
        )
        db.execute(
            update(CadenceEvent)
            .where(
                CadenceEvent.quote_id == event.quote_id,
                CadenceEvent.status == CadenceEventStatus.SCHEDULED.value,
            )
            .values(
                status=CadenceEventStatus.CANCELLED.value,
                cancel_reason=CancelReason.STATUS_CHANGED.value,
                processed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info("Cadence event cancelled: quote no longer sent", extra=log_context)
        return EventOutcome.CANCELLED
    if event.cadence_run_id != quote.cadence_run_id:
        _resolve(
            db, event.id, worker_id, CadenceEventStatus.CANCELLED, now,
            cancel_reason=CancelReason.RESENT.value,
        )
        db.commit()
        logger.info("Cadence event cancelled: superseded by run %s", quote.cadence_run_id, extra=log_context)
        return EventOutcome.CANCELLED

    # Claimed more often than allowed (repeated crashes mid-processing)
    if event.attempts > config.max_attempts:
        logger.warning("Cadence event exceeded max attempts, downgrading", extra=log_context)
        return _downgrade_to_follow_up(
            db, event, quote, event.last_error or "max_attempts_exceeded",
            worker_id=worker_id, now=now, collaborators=collaborators, summary=summary,
        )

    event_type = CadenceEventType(event.event_type)

    # 2. Calls are always manual
    if event_type == CadenceEventType.CALL_D7:
        _create_task(
            collaborators,
            event,
            summary,
            task_type=TaskType.CALL,
            title=f"Call about {_quote_label(quote)}",
            description="D+7 follow-up call on the quote sent.",
            priority=event.priority or CallPriority.LOW.value,
            due_at=event.scheduled_for,
        )
        _resolve(db, event.id, worker_id, CadenceEventStatus.COMPLETED, now)
        _cascade(db, event, now)
        db.commit()
        return EventOutcome.COMPLETED

    # 3. Emails
    contact = collaborators.contacts.get_contact_for_quote(event.quote_id)
    if contact is None or not contact.has_email or not contact.email:
        _create_task(
            collaborators,
            event,
            summary,
            task_type=TaskType.CALL,
            title=f"No email, get in touch: {_quote_label(quote)}",
            description=f"Contact has no email address for the {event.event_type} follow-up.",
            priority=CallPriority.LOW.value,
            due_at=event.scheduled_for,
        )
        _resolve(db, event.id, worker_id, CadenceEventStatus.COMPLETED, now)
        _cascade(db, event, now)
        db.commit()
        return EventOutcome.COMPLETED

    if collaborators.contacts.is_suppressed(event.organization_id, contact.email):
        _resolve(
            db, event.id, worker_id, CadenceEventStatus.SKIPPED, now,
            skip_reason=SkipReason.SUPPRESSED.value,
        )
        _cascade(db, event, now)
        db.commit()
        logger.info("Cadence email skipped: %s suppressed", mask_email(contact.email), extra=log_context)
        return EventOutcome.SKIPPED

    if not (config.auto_email and collaborators.organizations.is_auto_email_enabled(event.organization_id)):
        _create_task(
            collaborators,
            event,
            summary,
            task_type=TaskType.EMAIL,
            title=f"Send follow-up email: {_quote_label(quote)}",
            description=f"Template {EVENT_TEMPLATE_CODES[event_type.value]} to {contact.email}.",
            priority=CallPriority.LOW.value,
            due_at=event.scheduled_for,
        )
        _resolve(db, event.id, worker_id, CadenceEventStatus.COMPLETED, now)
        _cascade(db, event, now)
        db.commit()
        return EventOutcome.COMPLETED

    if config.enforce_send_window:
        tz = collaborators.organizations.get_org_timezone(event.organization_id)
        window = collaborators.organizations.get_send_window(event.organization_id)
        if not is_within_send_window(now, window.start, window.end, tz, config.calendar):
            resume_at = next_send_time(now, window.start, window.end, tz, config.calendar)
            released = _release(db, event.id, worker_id, now, refund_attempt=True, scheduled_for=resume_at)
            db.commit()
            if not released:
                logger.info("Cadence event cancelled: superseded before deferral", extra=log_context)
                return EventOutcome.CANCELLED
            logger.info("Cadence email deferred to %s", resume_at.isoformat(), extra=log_context)
            return EventOutcome.DEFERRED

    _renew_lease(db, event.id, worker_id, now)
    result = collaborators.email.send_templated_email(
        organization_id=event.organization_id,
        cadence_event_id=event.id,
        template_code=EVENT_TEMPLATE_CODES[event_type.value],
        recipient=contact.email,
        variables=_template_variables(contact, quote),
    )

    if result.success:
        _resolve(db, event.id, worker_id, CadenceEventStatus.SENT, now, last_error=None)
        _cascade(db, event, now)
        db.commit()
        return EventOutcome.SENT

    error = result.error or "send_failed"
    if result.permanent or event.attempts >= config.max_attempts:
        logger.warning("Cadence email failed permanently: %s", error, extra=log_context)
        return _downgrade_to_follow_up(
            db, event, quote, error,
            worker_id=worker_id, now=now, collaborators=collaborators, summary=summary,
        )

    released = _release(db, event.id, worker_id, now, last_error=error)
    db.commit()
    if not released:
        logger.info("Cadence event cancelled: superseded while sending", extra=log_context)
        return EventOutcome.CANCELLED
    logger.warning(
        "Cadence email failed (attempt %d/%d): %s",
        event.attempts,
        config.max_attempts,
        error,
        extra=log_context,
    )
    return EventOutcome.RETRIED


def _release_after_error(db: Session, event_id: UUID, worker_id: str, error: Exception, now: datetime) -> None:
    try:
        _release(db, event_id, worker_id, now, last_error=f"{type(error).__name__}: {error}"[:1000])
        db.commit()
    except LeaseLostError:
        db.rollback()
    except Exception:
        db.rollback()
        logger.exception(
            "Failed to release cadence event after error",
            extra=build_log_context(event_id=event_id, worker_id=worker_id),
        )


# =============================================================================
# Pass
# =============================================================================


def run_claim_pass(
    db: Session,
    *,
    batch_size: int | None = None,
    claim_timeout_minutes: int | None = None,
    worker_id: str | None = None,
    now: datetime | None = None,
    collaborators: Collaborators | None = None,
    config: CadenceConfig | None = None,
) -> ClaimPassSummary:
    """
    Run one claim pass: reclaim orphans, claim due events, execute each.

    Errors are handled per event and never abort the batch. `now` pins the
    clock (tests, backfills); otherwise each step reads the wall clock.
    """
    config = config or CadenceConfig.from_settings()
    batch_size = batch_size or config.batch_size
    claim_timeout_minutes = claim_timeout_minutes or config.claim_timeout_minutes
    worker_id = worker_id or default_worker_id()
    collaborators = collaborators or build_default_collaborators(db)
    summary = ClaimPassSummary()

    summary.reclaimed = reclaim_orphaned_claims(
        db, claim_timeout_minutes=claim_timeout_minutes, now=now or _utcnow()
    )
    claimed_ids = claim_due_events(
        db, batch_size=batch_size, worker_id=worker_id, now=now or _utcnow()
    )
    summary.claimed = len(claimed_ids)
    if not claimed_ids:
        return summary

    # RETURNING order is unspecified; process oldest/HIGH first
    ordered_ids = db.execute(
        select(CadenceEvent.id)
        .where(CadenceEvent.id.in_(claimed_ids))
        .order_by(CadenceEvent.scheduled_for, _priority_rank())
    ).scalars().all()
    db.commit()

    for event_id in ordered_ids:
        try:
            outcome = process_claimed_event(
                db,
                event_id,
                worker_id=worker_id,
                now=now or _utcnow(),
                collaborators=collaborators,
                config=config,
                summary=summary,
            )
            summary.record(outcome)
        except LeaseLostError:
            db.rollback()
            summary.lease_lost += 1
            logger.warning(
                "Lease lost on cadence event, outcome discarded",
                extra=build_log_context(event_id=event_id, worker_id=worker_id),
            )
        except Exception as e:
            db.rollback()
            summary.retried += 1
            logger.exception(
                "Cadence event processing failed",
                extra=build_log_context(event_id=event_id, worker_id=worker_id),
            )
            _release_after_error(db, event_id, worker_id, e, now or _utcnow())

    logger.info(
        "Cadence pass complete: claimed=%d sent=%d completed=%d cancelled=%d failed=%d",
        summary.claimed,
        summary.sent,
        summary.completed,
        summary.cancelled,
        summary.failed,
        extra=build_log_context(worker_id=worker_id),
    )
    return summary
