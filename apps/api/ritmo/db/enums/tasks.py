"""Task-related enums."""

from enum import Enum


class TaskType(str, Enum):
    """Types of manual follow-up tasks."""

    CALL = "call"
    EMAIL = "email"  # Send the follow-up email by hand
    FOLLOW_UP = "follow_up"  # Fallback after an automatic send failed


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
