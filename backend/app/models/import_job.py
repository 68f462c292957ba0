"""Import job records driving resumable bulk synchronisation."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import TimestampMixin


class ImportJobStatus(str, enum.Enum):
    """Lifecycle states of an import job."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (
    ImportJobStatus.PENDING,
    ImportJobStatus.RUNNING,
    ImportJobStatus.PAUSED,
)
BUSY_JOB_STATUSES = (ImportJobStatus.PENDING, ImportJobStatus.RUNNING)


class ImportJob(TimestampMixin, Base):
    """One synchronisation attempt for an organization.

    ``progress`` holds the serialized per-phase progress document; it is only
    read and written through :mod:`app.services.import_progress`.
    """

    __tablename__ = "import_jobs"
    __table_args__ = (
        Index("ix_import_jobs_org_status", "organization_id", "status"),
        Index("ix_import_jobs_org_created", "organization_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[ImportJobStatus] = mapped_column(
        Enum(ImportJobStatus), default=ImportJobStatus.PENDING, nullable=False
    )
    data_types: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    progress: Mapped[str] = mapped_column(Text, default="{}", nullable=False)
    current_data_type: Mapped[str | None] = mapped_column(String(32))
    current_offset: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[str | None] = mapped_column(Text)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
