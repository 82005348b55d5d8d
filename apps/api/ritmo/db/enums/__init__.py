"""Enum definitions for application constants."""

from ritmo.db.enums.cadence import (
    PENDING_EVENT_STATUSES,
    RESOLVED_EVENT_STATUSES,
    TERMINAL_STAGES,
    BusinessStatus,
    CadenceEventStatus,
    CadenceEventType,
    CallPriority,
    CancelReason,
    RitmoStage,
    SkipReason,
)
from ritmo.db.enums.email import EmailStatus, SuppressionReason
from ritmo.db.enums.tasks import TaskStatus, TaskType

__all__ = [
    "PENDING_EVENT_STATUSES",
    "RESOLVED_EVENT_STATUSES",
    "TERMINAL_STAGES",
    "BusinessStatus",
    "CadenceEventStatus",
    "CadenceEventType",
    "CallPriority",
    "CancelReason",
    "RitmoStage",
    "SkipReason",
    "EmailStatus",
    "SuppressionReason",
    "TaskStatus",
    "TaskType",
]
