"""Organization model representing a studio tenant."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin


if TYPE_CHECKING:  # pragma: no cover - typing only imports
    from app.models.scheduled_import import ScheduledImport
    from app.models.user import User


class Organization(TimestampMixin, Base):
    """A tenant studio whose data is imported from the scheduling platform."""

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    mindbody_site_id: Mapped[str | None] = mapped_column(String(64))

    users: Mapped[list["User"]] = relationship(
        "User", back_populates="organization", cascade="all, delete-orphan"
    )
    scheduled_import: Mapped["ScheduledImport | None"] = relationship(
        "ScheduledImport",
        back_populates="organization",
        cascade="all, delete-orphan",
        uselist=False,
    )
