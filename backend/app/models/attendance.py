"""Attendance (class visit) records."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import TimestampMixin


class AttendanceStatus(str, enum.Enum):
    """Outcome of a booked visit."""

    ATTENDED = "attended"
    NOSHOW = "noshow"


class Attendance(TimestampMixin, Base):
    """A student's visit to a scheduled class.

    ``attended_date`` mirrors the calendar date of ``attended_at`` so the
    one-visit-per-student-per-schedule-per-day rule can be a plain unique
    constraint on every backend.
    """

    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "student_id",
            "schedule_id",
            "attended_date",
            name="uq_attendance_student_schedule_date",
        ),
        Index("ix_attendance_org_attended_at", "organization_id", "attended_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("class_schedules.id", ondelete="CASCADE"), nullable=False
    )
    attended_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    attended_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus), default=AttendanceStatus.ATTENDED, nullable=False
    )
