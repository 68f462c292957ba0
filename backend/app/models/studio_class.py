"""Class catalogue and scheduled class occurrences."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import TimestampMixin


class StudioClass(TimestampMixin, Base):
    """A class type offered by the studio (e.g. "Vinyasa 60")."""

    __tablename__ = "classes"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "mindbody_class_id", name="uq_classes_org_class"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    mindbody_class_id: Mapped[str | None] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    instructor_name: Mapped[str | None] = mapped_column(String(255))
    capacity: Mapped[int | None] = mapped_column(Integer)
    duration: Mapped[int | None] = mapped_column(Integer)

    schedules: Mapped[list["ClassSchedule"]] = relationship(
        "ClassSchedule", back_populates="studio_class", cascade="all, delete-orphan"
    )


class ClassSchedule(TimestampMixin, Base):
    """One dated occurrence of a class."""

    __tablename__ = "class_schedules"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "class_id",
            "start_time",
            name="uq_class_schedules_class_start",
        ),
        Index("ix_class_schedules_org_start", "organization_id", "start_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    class_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("classes.id", ondelete="CASCADE"), nullable=False
    )
    mindbody_schedule_id: Mapped[str | None] = mapped_column(String(64))
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255))

    studio_class: Mapped[StudioClass] = relationship(
        "StudioClass", back_populates="schedules"
    )
