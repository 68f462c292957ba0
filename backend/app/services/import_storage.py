"""Idempotent write helpers shared by the API importers and the CSV path."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    Attendance,
    AttendanceStatus,
    ClassSchedule,
    Revenue,
    SkippedImportRecord,
    Student,
)
from app.models.mixins import as_utc

DEFAULT_SKIPPED_LIMIT = 100


async def load_students_by_mindbody_id(
    session: AsyncSession, *, organization_id: uuid.UUID
) -> dict[str, Student]:
    """Map external client id to local student for one organization."""
    result = await session.execute(
        select(Student).where(
            Student.organization_id == organization_id,
            Student.mindbody_client_id.is_not(None),
        )
    )
    return {
        student.mindbody_client_id: student
        for student in result.scalars()
        if student.mindbody_client_id
    }


async def list_students_for_import(
    session: AsyncSession, *, organization_id: uuid.UUID
) -> list[Student]:
    """Students with an external client id in a stable order for index cursors."""
    result = await session.execute(
        select(Student)
        .where(
            Student.organization_id == organization_id,
            Student.mindbody_client_id.is_not(None),
            Student.mindbody_client_id != "",
        )
        .order_by(Student.mindbody_client_id, Student.id)
    )
    return list(result.scalars())


async def load_students_by_email(
    session: AsyncSession, *, organization_id: uuid.UUID
) -> dict[str, Student]:
    result = await session.execute(
        select(Student).where(
            Student.organization_id == organization_id,
            Student.email.is_not(None),
        )
    )
    return {
        student.email.strip().lower(): student
        for student in result.scalars()
        if student.email
    }


async def load_schedules(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Sequence[ClassSchedule]:
    stmt = select(ClassSchedule).where(ClassSchedule.organization_id == organization_id)
    if start is not None:
        stmt = stmt.where(ClassSchedule.start_time >= start)
    if end is not None:
        stmt = stmt.where(ClassSchedule.start_time < end)
    result = await session.execute(stmt.order_by(ClassSchedule.start_time))
    return result.scalars().all()


async def create_attendance(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    student_id: uuid.UUID,
    schedule_id: uuid.UUID,
    attended_at: datetime,
    status: AttendanceStatus = AttendanceStatus.ATTENDED,
) -> tuple[Attendance, bool]:
    """Insert a visit unless one exists for the same student, schedule and day.

    Returns the stored row and whether it was newly created.
    """
    attended_at = as_utc(attended_at)
    attended_date = attended_at.date()
    result = await session.execute(
        select(Attendance)
        .where(
            Attendance.organization_id == organization_id,
            Attendance.student_id == student_id,
            Attendance.schedule_id == schedule_id,
            Attendance.attended_date == attended_date,
        )
        .limit(1)
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing, False

    record = Attendance(
        organization_id=organization_id,
        student_id=student_id,
        schedule_id=schedule_id,
        attended_at=attended_at,
        attended_date=attended_date,
        status=status,
    )
    session.add(record)
    await session.flush()
    return record, True


async def upsert_revenue(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    amount: Decimal,
    type: str,
    transaction_date: datetime,
    mindbody_sale_id: str | None = None,
    mindbody_item_id: str | None = None,
    student_id: uuid.UUID | None = None,
    description: str | None = None,
) -> tuple[Revenue, bool]:
    """Insert or update a revenue row keyed by (sale id, item id).

    A row without an item id is matched against an existing item-less row for
    the same sale so flat transactions are not duplicated on re-import.
    """
    existing: Revenue | None = None
    if mindbody_sale_id:
        stmt = select(Revenue).where(
            Revenue.organization_id == organization_id,
            Revenue.mindbody_sale_id == mindbody_sale_id,
        )
        if mindbody_item_id:
            stmt = stmt.where(Revenue.mindbody_item_id == mindbody_item_id)
        else:
            stmt = stmt.where(Revenue.mindbody_item_id.is_(None))
        result = await session.execute(stmt.limit(1))
        existing = result.scalar_one_or_none()

    if existing is not None:
        existing.student_id = student_id
        existing.amount = amount
        existing.type = type
        existing.description = description
        existing.transaction_date = transaction_date
        await session.flush()
        return existing, False

    record = Revenue(
        organization_id=organization_id,
        student_id=student_id,
        mindbody_sale_id=mindbody_sale_id,
        mindbody_item_id=mindbody_item_id,
        amount=amount,
        type=type,
        description=description,
        transaction_date=transaction_date,
    )
    session.add(record)
    await session.flush()
    return record, True


async def record_skipped(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    data_type: str,
    reason: str,
    mindbody_id: Any | None = None,
    raw_data: dict[str, Any] | None = None,
    import_job_id: uuid.UUID | None = None,
) -> SkippedImportRecord:
    record = SkippedImportRecord(
        organization_id=organization_id,
        import_job_id=import_job_id,
        data_type=data_type,
        mindbody_id=str(mindbody_id) if mindbody_id is not None else None,
        reason=reason,
        raw_data=raw_data,
    )
    session.add(record)
    await session.flush()
    return record


async def list_skipped(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    data_type: str | None = None,
    import_job_id: uuid.UUID | None = None,
    limit: int = DEFAULT_SKIPPED_LIMIT,
) -> Sequence[SkippedImportRecord]:
    stmt = select(SkippedImportRecord).where(
        SkippedImportRecord.organization_id == organization_id
    )
    if data_type:
        stmt = stmt.where(SkippedImportRecord.data_type == data_type)
    if import_job_id is not None:
        stmt = stmt.where(SkippedImportRecord.import_job_id == import_job_id)
    result = await session.execute(
        stmt.order_by(SkippedImportRecord.created_at.desc()).limit(limit)
    )
    return result.scalars().all()
