"""Collaborator interfaces used by the claim processor + SQL-backed defaults.

The processor never touches organizations, contacts, or tasks directly; it goes
through these protocols so tests (and other hosts) can swap implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from ritmo.core.config import settings
from ritmo.db.models import Contact, EmailSuppression, Organization, Quote, Task


@dataclass(frozen=True)
class SendWindow:
    start: str
    end: str


@dataclass(frozen=True)
class ContactInfo:
    has_email: bool
    email: str | None = None
    phone: str | None = None
    name: str | None = None
    company: str | None = None


@dataclass(frozen=True)
class QuoteStatus:
    business_status: str
    cadence_run_id: int
    title: str = ""
    reference: str | None = None
    value: Decimal | None = None


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str | None = None
    # Permanent failures are never retried (missing template, not configured, 4xx)
    permanent: bool = False
    message_id: str | None = None


@dataclass(frozen=True)
class NewTask:
    organization_id: UUID
    quote_id: UUID
    cadence_event_id: UUID | None
    task_type: str
    title: str
    description: str | None
    priority: str
    due_at: datetime | None


class OrganizationDirectory(Protocol):
    def get_org_timezone(self, organization_id: UUID) -> str:
        """IANA timezone of the organization."""

    def get_send_window(self, organization_id: UUID) -> SendWindow:
        """Local HH:MM window for automatic emails."""

    def is_auto_email_enabled(self, organization_id: UUID) -> bool:
        """False when every email step should become a manual task."""


class ContactDirectory(Protocol):
    def get_contact_for_quote(self, quote_id: UUID) -> ContactInfo | None:
        """Contact details of the quote recipient (None if unassigned)."""

    def is_suppressed(self, organization_id: UUID, email: str) -> bool:
        """True if the address must not be emailed."""


class EmailTransport(Protocol):
    def send_templated_email(
        self,
        *,
        organization_id: UUID,
        cadence_event_id: UUID,
        template_code: str,
        recipient: str,
        variables: dict[str, str],
    ) -> SendResult:
        """Render and deliver a template. Must be idempotent per cadence_event_id."""


class QuoteStatusReader(Protocol):
    def get_quote_status(self, quote_id: UUID) -> QuoteStatus | None:
        """Fresh business status + current run of a quote."""


class TaskSink(Protocol):
    def create_task(self, task: NewTask) -> Task | None:
        """Create a manual task. Returns None if the event already has one."""


@dataclass
class Collaborators:
    organizations: OrganizationDirectory
    contacts: ContactDirectory
    email: EmailTransport
    quotes: QuoteStatusReader
    tasks: TaskSink


# =============================================================================
# SQL-backed implementations
# =============================================================================


class SqlOrganizationDirectory:
    def __init__(self, db: Session):
        self.db = db

    def _get(self, organization_id: UUID) -> Organization | None:
        return self.db.query(Organization).filter(Organization.id == organization_id).first()

    def get_org_timezone(self, organization_id: UUID) -> str:
        org = self._get(organization_id)
        return (org.timezone if org else None) or settings.DEFAULT_TIMEZONE

    def get_send_window(self, organization_id: UUID) -> SendWindow:
        org = self._get(organization_id)
        if not org:
            return SendWindow(settings.SEND_WINDOW_START, settings.SEND_WINDOW_END)
        return SendWindow(
            org.send_window_start or settings.SEND_WINDOW_START,
            org.send_window_end or settings.SEND_WINDOW_END,
        )

    def is_auto_email_enabled(self, organization_id: UUID) -> bool:
        org = self._get(organization_id)
        return bool(org and org.auto_email_enabled)


class SqlContactDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_contact_for_quote(self, quote_id: UUID) -> ContactInfo | None:
        contact = (
            self.db.query(Contact)
            .join(Quote, Quote.contact_id == Contact.id)
            .filter(Quote.id == quote_id)
            .first()
        )
        if not contact:
            return None
        email = (contact.email or "").strip() or None
        return ContactInfo(
            has_email=email is not None,
            email=email,
            phone=contact.phone,
            name=contact.name,
            company=contact.company,
        )

    def is_suppressed(self, organization_id: UUID, email: str) -> bool:
        return is_email_suppressed(self.db, organization_id, email)


class SqlQuoteStatusReader:
    def __init__(self, db: Session):
        self.db = db

    def get_quote_status(self, quote_id: UUID) -> QuoteStatus | None:
        quote = self.db.query(Quote).filter(Quote.id == quote_id).first()
        if not quote:
            return None
        # Another session may have changed the status since it was loaded
        self.db.refresh(quote)
        return QuoteStatus(
            business_status=quote.business_status,
            cadence_run_id=quote.cadence_run_id,
            title=quote.title,
            reference=quote.reference,
            value=quote.value,
        )


class SqlTaskSink:
    def __init__(self, db: Session):
        self.db = db

    def create_task(self, task: NewTask) -> Task | None:
        if task.cadence_event_id is not None:
            existing = (
                self.db.query(Task).filter(Task.cadence_event_id == task.cadence_event_id).first()
            )
            if existing:
                return None
        row = Task(
            organization_id=task.organization_id,
            quote_id=task.quote_id,
            cadence_event_id=task.cadence_event_id,
            task_type=task.task_type,
            title=task.title,
            description=task.description,
            priority=task.priority,
            due_at=task.due_at,
        )
        self.db.add(row)
        # Unique index on cadence_event_id surfaces a concurrent duplicate here
        self.db.flush()
        return row


def is_email_suppressed(db: Session, org_id: UUID, email: str) -> bool:
    """Check if an email is in the suppression list."""
    return (
        db.query(EmailSuppression)
        .filter(
            EmailSuppression.organization_id == org_id,
            EmailSuppression.email == email.strip().lower(),
        )
        .first()
        is not None
    )


def add_to_suppression(db: Session, org_id: UUID, email: str, reason: str) -> EmailSuppression:
    """Add an email to the suppression list (idempotent)."""
    normalized = email.strip().lower()
    existing = (
        db.query(EmailSuppression)
        .filter(
            EmailSuppression.organization_id == org_id,
            EmailSuppression.email == normalized,
        )
        .first()
    )
    if existing:
        return existing

    suppression = EmailSuppression(organization_id=org_id, email=normalized, reason=reason)
    db.add(suppression)
    db.commit()
    db.refresh(suppression)
    return suppression


def build_default_collaborators(db: Session, *, email_transport: EmailTransport | None = None) -> Collaborators:
    """Wire SQL-backed collaborators (and the Resend transport) onto a session."""
    from ritmo.services.email_transport import ResendEmailTransport

    return Collaborators(
        organizations=SqlOrganizationDirectory(db),
        contacts=SqlContactDirectory(db),
        email=email_transport or ResendEmailTransport(db),
        quotes=SqlQuoteStatusReader(db),
        tasks=SqlTaskSink(db),
    )
