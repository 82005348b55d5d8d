"""Email-related enums."""

from enum import Enum


class EmailStatus(str, Enum):
    """Status of an email log entry."""

    SENT = "sent"
    FAILED = "failed"


class SuppressionReason(str, Enum):
    """Why an address is on the suppression list."""

    OPT_OUT = "opt_out"
    BOUNCED = "bounced"
    COMPLAINT = "complaint"
