"""SQLAlchemy ORM models."""

from ritmo.db.models.cadence import CadenceEvent
from ritmo.db.models.email import EmailLog, EmailSuppression, EmailTemplate
from ritmo.db.models.organizations import Organization
from ritmo.db.models.quotes import Contact, Quote
from ritmo.db.models.tasks import Task

__all__ = [
    "CadenceEvent",
    "Contact",
    "EmailLog",
    "EmailSuppression",
    "EmailTemplate",
    "Organization",
    "Quote",
    "Task",
]
