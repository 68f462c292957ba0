"""Revenue (sale line item / transaction) records."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import TimestampMixin


class Revenue(TimestampMixin, Base):
    """Money received by the studio, optionally linked to a student."""

    __tablename__ = "revenue"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "mindbody_sale_id",
            "mindbody_item_id",
            name="uq_revenue_sale_item",
        ),
        Index("ix_revenue_org_sale", "organization_id", "mindbody_sale_id"),
        Index("ix_revenue_org_date", "organization_id", "transaction_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    student_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("students.id", ondelete="SET NULL")
    )
    mindbody_sale_id: Mapped[str | None] = mapped_column(String(64))
    mindbody_item_id: Mapped[str | None] = mapped_column(String(64))
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
