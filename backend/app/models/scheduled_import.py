"""Per-organization schedule for automatic imports."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover
    from app.models.organization import Organization


DEFAULT_SCHEDULE = "0 2 * * *"
DEFAULT_DATA_TYPES = "clients,classes,visits,sales"
DEFAULT_DAYS_TO_IMPORT = 7


class ScheduledImport(TimestampMixin, Base):
    """Cron configuration plus last-run bookkeeping for one organization."""

    __tablename__ = "scheduled_imports"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    schedule: Mapped[str] = mapped_column(
        String(120), default=DEFAULT_SCHEDULE, nullable=False
    )
    data_types: Mapped[str] = mapped_column(
        String(255), default=DEFAULT_DATA_TYPES, nullable=False
    )
    days_to_import: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_DAYS_TO_IMPORT, nullable=False
    )
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_run_status: Mapped[str | None] = mapped_column(String(32))
    last_run_error: Mapped[str | None] = mapped_column(Text)

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="scheduled_import"
    )
