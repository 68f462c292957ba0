"""Startup recovery for import jobs orphaned by a restart."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select

from app.db.session import session_scope
from app.models import ImportJob, ImportJobStatus

logger = logging.getLogger(__name__)

ORPHANED_JOB_MESSAGE = (
    "Import was interrupted by a server restart. Resume the import to continue "
    "from the last saved position."
)


async def fail_orphaned_jobs() -> list[uuid.UUID]:
    """Mark every ``running`` job as failed; they have no live worker anymore.

    Jobs are not re-queued. An operator resumes them explicitly, and the
    importers' natural-key upserts absorb a partially applied batch.
    """
    async with session_scope() as session:
        result = await session.execute(
            select(ImportJob).where(ImportJob.status == ImportJobStatus.RUNNING)
        )
        jobs = list(result.scalars())
        for job in jobs:
            job.status = ImportJobStatus.FAILED
            job.error = ORPHANED_JOB_MESSAGE
            logger.warning(
                "Recovered orphaned import job %s (org %s, phase %s, offset %s)",
                job.id,
                job.organization_id,
                job.current_data_type,
                job.current_offset,
            )
        if jobs:
            await session.commit()
    if not jobs:
        logger.info("No orphaned import jobs found")
    return [job.id for job in jobs]


__all__ = ["ORPHANED_JOB_MESSAGE", "fail_orphaned_jobs"]
