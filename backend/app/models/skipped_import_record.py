"""Records the importer could not store, kept for operator review."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import TimestampMixin


JSONB_TYPE = JSONB(astext_type=Text()).with_variant(JSON(), "sqlite")


class SkippedImportRecord(TimestampMixin, Base):
    """An external record rejected during import (missing field, no match)."""

    __tablename__ = "skipped_import_records"
    __table_args__ = (
        Index("ix_skipped_records_org_type", "organization_id", "data_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    import_job_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("import_jobs.id", ondelete="SET NULL")
    )
    data_type: Mapped[str] = mapped_column(String(32), nullable=False)
    mindbody_id: Mapped[str | None] = mapped_column(String(64))
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    raw_data: Mapped[dict[str, Any] | None] = mapped_column(JSONB_TYPE)
