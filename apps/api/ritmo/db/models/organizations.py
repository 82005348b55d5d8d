"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from ritmo.db.base import Base


class Organization(Base):
    """
    A tenant in the multi-tenant system.

    Owned by the surrounding application; the cadence engine only reads the
    scheduling settings below.
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # IANA timezone used for business days and the send window
    timezone: Mapped[str] = mapped_column(
        String(50), server_default=text("'Europe/Lisbon'"), default="Europe/Lisbon", nullable=False
    )
    # "HH:MM" local times bounding automatic sends
    send_window_start: Mapped[str] = mapped_column(
        String(5), server_default=text("'09:00'"), default="09:00", nullable=False
    )
    send_window_end: Mapped[str] = mapped_column(
        String(5), server_default=text("'18:00'"), default="18:00", nullable=False
    )

    # Overrides the global HIGH_VALUE_THRESHOLD when set
    priority_threshold: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    auto_email_enabled: Mapped[bool] = mapped_column(
        Boolean, server_default=text("TRUE"), default=True, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
