"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ritmo.db.base import Base
from ritmo.db.enums import BusinessStatus, RitmoStage

if TYPE_CHECKING:
    from ritmo.db.models import CadenceEvent, Organization


class Contact(Base):
    """Quote recipient (owned by the surrounding application)."""

    __tablename__ = "contacts"
    __table_args__ = (Index("idx_contacts_org", "organization_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class Quote(Base):
    """
    A commercial proposal sent to a contact.

    The cadence engine reads/writes only the follow-up fields:
    business_status, ritmo_stage, cadence_run_id, first_sent_at, sent_at,
    last_activity_at.
    """

    __tablename__ = "quotes"
    __table_args__ = (
        Index("idx_quotes_org_status", "organization_id", "business_status"),
        Index("idx_quotes_org_stage", "organization_id", "ritmo_stage"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    business_status: Mapped[str] = mapped_column(
        String(20),
        server_default=text(f"'{BusinessStatus.DRAFT.value}'"),
        default=BusinessStatus.DRAFT.value,
        nullable=False,
    )
    ritmo_stage: Mapped[str] = mapped_column(
        String(20),
        server_default=text(f"'{RitmoStage.NONE.value}'"),
        default=RitmoStage.NONE.value,
        nullable=False,
    )
    # Incremented on every send/resend; events from older runs are never actioned
    cadence_run_id: Mapped[int] = mapped_column(
        Integer, server_default=text("0"), default=0, nullable=False
    )

    # Immutable after the very first send
    first_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    # Relationships
    organization: Mapped["Organization"] = relationship()
    contact: Mapped["Contact | None"] = relationship()
    cadence_events: Mapped[list["CadenceEvent"]] = relationship(
        back_populates="quote", order_by="CadenceEvent.scheduled_for"
    )
