"""Import job record lifecycle: creation, lookup and state transitions."""

from __future__ import annotations

import calendar
import logging
import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    ACTIVE_JOB_STATUSES,
    BUSY_JOB_STATUSES,
    ImportJob,
    ImportJobStatus,
)
from app.models.mixins import as_utc, utcnow
from app.services.import_progress import (
    PHASE_ORDER,
    ImportProgress,
    read_progress,
    write_progress,
)

logger = logging.getLogger(__name__)

REPLACED_MESSAGE = "Replaced by new import"
PAUSED_MESSAGE = "Paused by user"
FORCE_CANCELLED_MESSAGE = "Force cancelled by user"

_DATA_TYPE_ALIASES = {"students": "clients", "client": "clients", "class": "classes"}


class ImportJobConflictError(ValueError):
    """Raised when an organization already has an import in progress."""

    def __init__(self, message: str, *, job_id: uuid.UUID) -> None:
        super().__init__(message)
        self.job_id = job_id


def normalize_data_types(values: Iterable[str]) -> list[str]:
    """Validate data-type names and return them in dependency order."""
    requested: set[str] = set()
    for raw in values:
        name = raw.strip().lower()
        if not name:
            continue
        name = _DATA_TYPE_ALIASES.get(name, name)
        if name not in PHASE_ORDER:
            raise ValueError(f"Unknown data type: {raw}")
        requested.add(name)
    if not requested:
        raise ValueError("At least one data type must be selected")
    return [name for name in PHASE_ORDER if name in requested]


def _subtract_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 - months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


async def get_active_job(
    session: AsyncSession, *, organization_id: uuid.UUID
) -> ImportJob | None:
    """Return the newest pending, running or paused job for the organization."""
    result = await session.execute(
        select(ImportJob)
        .where(
            ImportJob.organization_id == organization_id,
            ImportJob.status.in_(ACTIVE_JOB_STATUSES),
        )
        .order_by(ImportJob.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_busy_job(
    session: AsyncSession, *, organization_id: uuid.UUID
) -> ImportJob | None:
    result = await session.execute(
        select(ImportJob)
        .where(
            ImportJob.organization_id == organization_id,
            ImportJob.status.in_(BUSY_JOB_STATUSES),
        )
        .order_by(ImportJob.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_job(
    session: AsyncSession, *, organization_id: uuid.UUID, job_id: uuid.UUID
) -> ImportJob | None:
    job = await session.get(ImportJob, job_id, populate_existing=True)
    if job is None or job.organization_id != organization_id:
        return None
    return job


async def list_jobs(
    session: AsyncSession, *, organization_id: uuid.UUID, limit: int = 20
) -> Sequence[ImportJob]:
    result = await session.execute(
        select(ImportJob)
        .where(ImportJob.organization_id == organization_id)
        .order_by(ImportJob.created_at.desc())
        .limit(limit)
    )
    return result.scalars().all()


async def create_job(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    data_types: Iterable[str],
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    lookback_months: int = 12,
) -> ImportJob:
    """Create a pending job, superseding a paused one.

    Raises :class:`ImportJobConflictError` when a pending or running job
    already exists for the organization.
    """
    phases = normalize_data_types(data_types)
    end = as_utc(end_date) if end_date else utcnow()
    start = as_utc(start_date) if start_date else _subtract_months(end, lookback_months)
    if start > end:
        raise ValueError("start_date must be on or before end_date")

    active = await get_active_job(session, organization_id=organization_id)
    if active is not None:
        if active.status in BUSY_JOB_STATUSES:
            raise ImportJobConflictError(
                "An import is already in progress", job_id=active.id
            )
        active.status = ImportJobStatus.CANCELLED
        active.error = REPLACED_MESSAGE
        logger.info("Import job %s superseded by a new import", active.id)

    progress = ImportProgress()
    for phase in phases:
        progress.phase(phase).total = 0
    job = ImportJob(
        organization_id=organization_id,
        status=ImportJobStatus.PENDING,
        data_types=phases,
        start_date=start,
        end_date=end,
        current_offset=0,
    )
    write_progress(job, progress)
    session.add(job)
    await session.commit()
    await session.refresh(job)
    logger.info(
        "Created import job %s for org %s (%s)", job.id, organization_id, ",".join(phases)
    )
    return job


async def pause_job(
    session: AsyncSession, *, organization_id: uuid.UUID, job_id: uuid.UUID
) -> ImportJob:
    job = await get_job(session, organization_id=organization_id, job_id=job_id)
    if job is None:
        raise LookupError("Import job not found")
    if job.status not in BUSY_JOB_STATUSES:
        raise ValueError(f"Cannot pause a {job.status.value} import")
    job.status = ImportJobStatus.PAUSED
    job.paused_at = utcnow()
    job.error = PAUSED_MESSAGE
    await session.commit()
    await session.refresh(job)
    logger.info("Import job %s paused", job.id)
    return job


async def resume_job(
    session: AsyncSession, *, organization_id: uuid.UUID, job_id: uuid.UUID
) -> ImportJob:
    """Return a paused or failed job to ``pending`` with its cursor intact."""
    job = await get_job(session, organization_id=organization_id, job_id=job_id)
    if job is None:
        raise LookupError("Import job not found")
    if job.status not in (ImportJobStatus.PAUSED, ImportJobStatus.FAILED):
        raise ValueError(f"Cannot resume a {job.status.value} import")
    busy = await get_busy_job(session, organization_id=organization_id)
    if busy is not None and busy.id != job.id:
        raise ImportJobConflictError(
            "Another import is already in progress", job_id=busy.id
        )
    job.status = ImportJobStatus.PENDING
    job.paused_at = None
    job.error = None
    await session.commit()
    await session.refresh(job)
    logger.info("Import job %s resumed", job.id)
    return job


async def force_cancel(
    session: AsyncSession, *, organization_id: uuid.UUID
) -> ImportJob | None:
    """Cancel the active job regardless of its state; ``None`` when idle."""
    job = await get_active_job(session, organization_id=organization_id)
    if job is None:
        return None
    job.status = ImportJobStatus.CANCELLED
    job.error = FORCE_CANCELLED_MESSAGE
    await session.commit()
    await session.refresh(job)
    logger.warning("Import job %s force cancelled", job.id)
    return job


def serialize_job(job: ImportJob) -> dict[str, Any]:
    """Build the status payload shared by the API and the scheduler."""
    return {
        "id": job.id,
        "status": job.status,
        "data_types": list(job.data_types or []),
        "start_date": job.start_date,
        "end_date": job.end_date,
        "progress": read_progress(job).to_dict(),
        "current_data_type": job.current_data_type,
        "current_offset": job.current_offset,
        "error": job.error,
        "paused_at": job.paused_at,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


__all__ = [
    "FORCE_CANCELLED_MESSAGE",
    "ImportJobConflictError",
    "PAUSED_MESSAGE",
    "REPLACED_MESSAGE",
    "create_job",
    "force_cancel",
    "get_active_job",
    "get_busy_job",
    "get_job",
    "list_jobs",
    "normalize_data_types",
    "pause_job",
    "resume_job",
    "serialize_job",
]
