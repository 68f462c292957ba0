"""Student (studio client) model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import TimestampMixin


class Student(TimestampMixin, Base):
    """A client of the studio, keyed externally by the platform client id."""

    __tablename__ = "students"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "mindbody_client_id", name="uq_students_org_client"
        ),
        Index("ix_students_org_email", "organization_id", "email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    mindbody_client_id: Mapped[str | None] = mapped_column(String(64))
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320))
    phone: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32), default="active", nullable=False)
    membership_type: Mapped[str | None] = mapped_column(String(120))
    join_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
