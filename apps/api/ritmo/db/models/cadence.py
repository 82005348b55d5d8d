"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ritmo.db.base import Base
from ritmo.db.enums import CadenceEventStatus

if TYPE_CHECKING:
    from ritmo.db.models import Quote, Task


class CadenceEvent(Base):
    """
    One scheduled follow-up action of a cadence run.

    Created four at a time by the cadence generator; moved through
    scheduled -> claimed -> sent/completed/skipped by the claim processor,
    or scheduled -> cancelled on resend / status change. Never deleted.
    """

    __tablename__ = "cadence_events"
    __table_args__ = (
        # Claim query: due scheduled events
        Index(
            "idx_cadence_events_due",
            "status",
            "scheduled_for",
            postgresql_where=text("status = 'scheduled'"),
        ),
        # Orphan reclaim: stale leases
        Index(
            "idx_cadence_events_claimed",
            "claimed_at",
            postgresql_where=text("status = 'claimed'"),
        ),
        Index("idx_cadence_events_quote_run", "quote_id", "cadence_run_id", "status"),
        Index("idx_cadence_events_org", "organization_id", "scheduled_for"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    cadence_run_id: Mapped[int] = mapped_column(Integer, nullable=False)

    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        server_default=text(f"'{CadenceEventStatus.SCHEDULED.value}'"),
        default=CadenceEventStatus.SCHEDULED.value,
        nullable=False,
    )
    priority: Mapped[str | None] = mapped_column(String(10), nullable=True)  # call_d7 only

    # Lease
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    claimed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, server_default=text("0"), default=0, nullable=False)

    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)
    skip_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    # Relationships
    quote: Mapped["Quote"] = relationship(back_populates="cadence_events")
    tasks: Mapped[list["Task"]] = relationship(back_populates="cadence_event")
