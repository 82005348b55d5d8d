"""Cadence-related enums."""

from enum import Enum


class BusinessStatus(str, Enum):
    """Commercial status of a quote (owned by the surrounding application)."""

    DRAFT = "draft"
    SENT = "sent"
    NEGOTIATION = "negotiation"
    WON = "won"
    LOST = "lost"


class RitmoStage(str, Enum):
    """Position of a quote in the follow-up sequence."""

    NONE = "none"
    FUP_D1 = "fup_d1"
    FUP_D3 = "fup_d3"
    FUP_D7 = "fup_d7"
    FUP_D14 = "fup_d14"
    COMPLETED = "completed"
    STOPPED = "stopped"
    PAUSED = "paused"


class CadenceEventType(str, Enum):
    """The four fixed follow-up steps."""

    EMAIL_D1 = "email_d1"
    EMAIL_D3 = "email_d3"
    CALL_D7 = "call_d7"
    EMAIL_D14 = "email_d14"

    @property
    def is_email(self) -> bool:
        return self.value.startswith("email_")


class CadenceEventStatus(str, Enum):
    """
    Lifecycle of a cadence event.

    scheduled -> claimed -> sent | completed | skipped
    scheduled -> cancelled (resend or business status change)
    """

    SCHEDULED = "scheduled"
    CLAIMED = "claimed"  # Leased by a worker (claimed_at/claimed_by set)
    SENT = "sent"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class CallPriority(str, Enum):
    HIGH = "HIGH"
    LOW = "LOW"


class CancelReason(str, Enum):
    RESENT = "resent"
    STATUS_CHANGED = "status_changed"
    MANUAL = "manual"


class SkipReason(str, Enum):
    SUPPRESSED = "suppressed"


PENDING_EVENT_STATUSES = (
    CadenceEventStatus.SCHEDULED.value,
    CadenceEventStatus.CLAIMED.value,
)

RESOLVED_EVENT_STATUSES = (
    CadenceEventStatus.SENT.value,
    CadenceEventStatus.COMPLETED.value,
    CadenceEventStatus.SKIPPED.value,
)

TERMINAL_STAGES = (
    RitmoStage.COMPLETED.value,
    RitmoStage.STOPPED.value,
    RitmoStage.PAUSED.value,
)
