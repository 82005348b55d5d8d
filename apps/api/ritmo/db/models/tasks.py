"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ritmo.db.base import Base
from ritmo.db.enums import CallPriority, TaskStatus

if TYPE_CHECKING:
    from ritmo.db.models import CadenceEvent


class Task(Base):
    """
    Manual follow-up action surfaced to the quote owner.

    Created by the claim processor whenever a cadence step cannot (or should
    not) be executed automatically. At most one task per cadence event.
    """

    __tablename__ = "tasks"
    __table_args__ = (
        Index("idx_tasks_org_status", "organization_id", "status"),
        Index("idx_tasks_quote", "quote_id"),
        Index(
            "uq_tasks_cadence_event",
            "cadence_event_id",
            unique=True,
            postgresql_where=text("cadence_event_id IS NOT NULL"),
            sqlite_where=text("cadence_event_id IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False
    )
    cadence_event_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("cadence_events.id", ondelete="SET NULL"), nullable=True
    )

    task_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(
        String(10), server_default=text(f"'{CallPriority.LOW.value}'"), default=CallPriority.LOW.value, nullable=False
    )
    due_at: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        server_default=text(f"'{TaskStatus.PENDING.value}'"),
        default=TaskStatus.PENDING.value,
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    cadence_event: Mapped["CadenceEvent | None"] = relationship(back_populates="tasks")
