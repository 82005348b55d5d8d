"""Stage service - follow-up progress state machine for quotes.

A quote moves none -> fup_d1 -> fup_d3 -> fup_d7 -> fup_d14 -> completed as
its cadence events resolve. Moves are forward-only and only happen while the
quote is still `sent`; stopped/paused/completed are terminal for the cascade.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ritmo.core.structured_logging import build_log_context
from ritmo.db.enums import (
    TERMINAL_STAGES,
    BusinessStatus,
    CadenceEventStatus,
    CadenceEventType,
    RitmoStage,
    TaskStatus,
)
from ritmo.db.models import CadenceEvent, Quote, Task

logger = logging.getLogger(__name__)


class StageServiceError(Exception):
    """Base error for manual completion."""


class EventNotFoundError(StageServiceError):
    pass


class EventInProgressError(StageServiceError):
    """Event is claimed by a worker right now."""


class EventAlreadyResolvedError(StageServiceError):
    pass


class TaskNotFoundError(StageServiceError):
    pass


NEXT_STAGE: dict[CadenceEventType, RitmoStage] = {
    CadenceEventType.EMAIL_D1: RitmoStage.FUP_D3,
    CadenceEventType.EMAIL_D3: RitmoStage.FUP_D7,
    CadenceEventType.CALL_D7: RitmoStage.FUP_D14,
    CadenceEventType.EMAIL_D14: RitmoStage.COMPLETED,
}

# Forward order of the active stages
STAGE_ORDER: tuple[RitmoStage, ...] = (
    RitmoStage.NONE,
    RitmoStage.FUP_D1,
    RitmoStage.FUP_D3,
    RitmoStage.FUP_D7,
    RitmoStage.FUP_D14,
    RitmoStage.COMPLETED,
)


@dataclass(frozen=True)
class CompleteEventResult:
    event_id: UUID
    next_stage: RitmoStage | None


def next_stage_for(event_type: CadenceEventType | str) -> RitmoStage:
    """Stage a quote moves to once an event of this type resolves."""
    return NEXT_STAGE[CadenceEventType(event_type)]


def _rank(stage: str) -> int:
    try:
        return STAGE_ORDER.index(RitmoStage(stage))
    except ValueError:
        return -1


def apply_stage_transition(
    quote: Quote,
    event_type: CadenceEventType | str,
    *,
    now: datetime | None = None,
) -> RitmoStage | None:
    """
    Advance the quote's stage for a resolved event.

    Returns the new stage, or None when the quote is no longer `sent`, its
    stage is terminal, or the move would go backwards.
    """
    if quote.business_status != BusinessStatus.SENT.value:
        return None
    if quote.ritmo_stage in TERMINAL_STAGES:
        return None

    target = next_stage_for(event_type)
    if _rank(target.value) <= _rank(quote.ritmo_stage):
        return None

    quote.ritmo_stage = target.value
    quote.last_activity_at = now or datetime.now(timezone.utc)
    return target


def _check_completable(event: CadenceEvent | None, event_id: UUID) -> CadenceEvent:
    if not event:
        raise EventNotFoundError(f"Cadence event {event_id} not found")
    if event.status == CadenceEventStatus.CLAIMED.value:
        raise EventInProgressError(f"Cadence event {event_id} is being processed")
    if event.status != CadenceEventStatus.SCHEDULED.value:
        raise EventAlreadyResolvedError(f"Cadence event {event_id} is already {event.status}")
    return event


def _mark_event_completed(db: Session, event: CadenceEvent, now: datetime) -> RitmoStage | None:
    """Complete a scheduled event, its pending tasks and the cascade. Does not commit."""
    result = db.execute(
        update(CadenceEvent)
        .where(
            CadenceEvent.id == event.id,
            CadenceEvent.status == CadenceEventStatus.SCHEDULED.value,
        )
        .values(status=CadenceEventStatus.COMPLETED.value, processed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # A worker claimed it between the read and the write
        raise EventInProgressError(f"Cadence event {event.id} is being processed")

    _complete_linked_tasks(db, event.id, now)

    quote = db.query(Quote).filter(Quote.id == event.quote_id).first()
    if quote and quote.cadence_run_id == event.cadence_run_id:
        return apply_stage_transition(quote, event.event_type, now=now)
    return None


def _lock_event(db: Session, event_id: UUID) -> CadenceEvent | None:
    return db.execute(
        select(CadenceEvent).where(CadenceEvent.id == event_id).with_for_update()
    ).scalar_one_or_none()


def complete_event(
    db: Session,
    event_id: UUID,
    *,
    now: datetime | None = None,
) -> CompleteEventResult:
    """
    Manually mark a scheduled event as done (e.g. the owner called already).

    Completes linked pending tasks and applies the stage cascade.
    """
    now = now or datetime.now(timezone.utc)
    try:
        event = _check_completable(_lock_event(db, event_id), event_id)
        next_stage = _mark_event_completed(db, event, now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Cadence event completed manually",
        extra=build_log_context(
            org_id=event.organization_id, quote_id=event.quote_id, event_id=event_id
        ),
    )
    return CompleteEventResult(event_id=event_id, next_stage=next_stage)


def complete_task(db: Session, task_id: UUID, *, now: datetime | None = None) -> Task:
    """
    Mark a task as completed (idempotent).

    If the task's cadence event is still scheduled, the event is completed in
    the same transaction; if a worker claims it first, nothing is written.
    """
    now = now or datetime.now(timezone.utc)
    try:
        task = db.execute(
            select(Task).where(Task.id == task_id).with_for_update()
        ).scalar_one_or_none()
        if not task:
            raise TaskNotFoundError(f"Task {task_id} not found")
        if task.status == TaskStatus.COMPLETED.value:
            db.commit()
            return task

        event = _lock_event(db, task.cadence_event_id) if task.cadence_event_id else None
        task.status = TaskStatus.COMPLETED.value
        task.completed_at = now
        if event and event.status == CadenceEventStatus.SCHEDULED.value:
            _mark_event_completed(db, event, now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(task)
    return task


def _complete_linked_tasks(db: Session, event_id: UUID, now: datetime) -> int:
    result = db.execute(
        update(Task)
        .where(
            Task.cadence_event_id == event_id,
            Task.status == TaskStatus.PENDING.value,
        )
        .values(status=TaskStatus.COMPLETED.value, completed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
