"""Cron-driven scheduled imports built on APScheduler."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import UTC, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import get_settings
from app.db.session import session_scope
from app.models import ImportJob, ImportJobStatus
from app.models.mixins import as_utc, utcnow
from app.services import import_job_service, scheduled_import_service
from app.services.import_worker import ImportWorker, import_worker
from app.services.scheduled_import_service import (
    RUN_STATUS_FAILED,
    RUN_STATUS_RUNNING,
    RUN_STATUS_SKIPPED,
    RUN_STATUS_SUCCESS,
)

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "scheduled-import-sync"
CANCELLED_RUN_MESSAGE = "Import was cancelled"
MISSING_JOB_MESSAGE = "Import job disappeared from database"
ACTIVE_IMPORT_MESSAGE = "An import is already in progress"

_FINISHED_STATUSES = frozenset(
    {ImportJobStatus.COMPLETED, ImportJobStatus.FAILED, ImportJobStatus.CANCELLED}
)


def cron_job_id(organization_id: uuid.UUID) -> str:
    return f"scheduled-import-{organization_id}"


def describe_outcome(
    status: ImportJobStatus | None, error: str | None = None
) -> tuple[str, str | None]:
    """Map a finished job status onto the schedule's last-run status and error."""
    if status is None:
        return RUN_STATUS_FAILED, MISSING_JOB_MESSAGE
    if status == ImportJobStatus.COMPLETED:
        return RUN_STATUS_SUCCESS, None
    if status == ImportJobStatus.FAILED:
        return RUN_STATUS_FAILED, error or "Import failed"
    if status == ImportJobStatus.CANCELLED:
        return RUN_STATUS_FAILED, CANCELLED_RUN_MESSAGE
    return RUN_STATUS_FAILED, f"Unexpected job status: {status.value}"


def timeout_message(hours: float) -> str:
    return (
        f"Import exceeded {hours:g} hour timeout. "
        "The job may still be running in the background."
    )


class ImportScheduler:
    """Keeps one cron job per enabled organization and runs their imports.

    A periodic sync pass reconciles the in-memory cron jobs with the
    ``scheduled_imports`` table: new schedules are added, changed expressions
    replace the old job and disabled organizations are removed. Each run
    queues an import job on the worker and polls it to a final status so the
    outcome can be written back to the schedule row.
    """

    def __init__(
        self,
        *,
        worker: ImportWorker | None = None,
        poll_interval_seconds: float | None = None,
        poll_timeout_hours: float | None = None,
    ) -> None:
        self.worker = worker or import_worker
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_timeout_hours = poll_timeout_hours
        self._scheduler: AsyncIOScheduler | None = None
        self._schedules: dict[uuid.UUID, str] = {}
        self._background: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def scheduled_organizations(self) -> dict[uuid.UUID, str]:
        return dict(self._schedules)

    async def start(self) -> None:
        if self.is_running:
            return
        settings = get_settings()
        self._scheduler = AsyncIOScheduler(timezone=UTC)
        self._scheduler.start()
        logger.info("Starting import scheduler")
        await self.sync_scheduled_jobs()
        self._scheduler.add_job(
            self.sync_scheduled_jobs,
            IntervalTrigger(minutes=settings.scheduler_sync_interval_minutes),
            id=SYNC_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    async def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._schedules.clear()
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        logger.info("Import scheduler stopped")

    async def wait_background(self) -> None:
        """Wait for every in-flight scheduled run to finish polling."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def sync_scheduled_jobs(self) -> None:
        """Reconcile cron jobs with the enabled configurations."""
        try:
            async with session_scope() as session:
                configs = await scheduled_import_service.list_enabled(session)
                wanted = {config.organization_id: config.schedule for config in configs}
        except Exception:
            logger.exception("Error syncing scheduled imports")
            return

        for organization_id, expression in wanted.items():
            try:
                trigger = scheduled_import_service.validate_cron(expression)
            except ValueError:
                logger.error(
                    "Invalid cron expression for org %s: %s", organization_id, expression
                )
                continue
            previous = self._schedules.get(organization_id)
            if previous == expression:
                continue
            if self._scheduler is not None:
                self._scheduler.add_job(
                    self.run_scheduled_import,
                    trigger,
                    args=[organization_id],
                    id=cron_job_id(organization_id),
                    replace_existing=True,
                    coalesce=True,
                    max_instances=1,
                )
            self._schedules[organization_id] = expression
            if previous is None:
                logger.info(
                    "Created cron job for org %s with schedule %s",
                    organization_id,
                    expression,
                )
            else:
                logger.info(
                    "Schedule changed for org %s from %r to %r",
                    organization_id,
                    previous,
                    expression,
                )

        for organization_id in list(self._schedules):
            if organization_id in wanted:
                continue
            self._remove_job(organization_id)
            logger.info("Removed cron job for org %s (no longer enabled)", organization_id)

    def _remove_job(self, organization_id: uuid.UUID) -> None:
        self._schedules.pop(organization_id, None)
        if self._scheduler is None:
            return
        if self._scheduler.get_job(cron_job_id(organization_id)) is not None:
            self._scheduler.remove_job(cron_job_id(organization_id))

    async def run_scheduled_import(
        self, organization_id: uuid.UUID, is_manual: bool = False
    ) -> ImportJob | None:
        """Create and queue an import from the organization's schedule.

        Automatic runs are skipped when the schedule is disabled, an import
        is active, or the previous run started less than the minimum interval
        ago. Manual runs ignore the enabled flag and the interval but raise
        :class:`~app.services.import_job_service.ImportJobConflictError` when
        an import is already active.
        """
        settings = get_settings()
        trigger = "manual" if is_manual else "cron"
        async with session_scope() as session:
            config = await scheduled_import_service.get_config(
                session, organization_id=organization_id
            )
            if config is None:
                if is_manual:
                    raise ValueError("Scheduled imports are not configured")
                logger.info("No scheduled import config for org %s", organization_id)
                return None
            if not config.enabled and not is_manual:
                logger.info("Scheduled imports disabled for org %s", organization_id)
                return None

            active = await import_job_service.get_active_job(
                session, organization_id=organization_id
            )
            if active is not None:
                if is_manual:
                    raise import_job_service.ImportJobConflictError(
                        ACTIVE_IMPORT_MESSAGE, job_id=active.id
                    )
                logger.info(
                    "Skipping scheduled import for org %s: job %s is %s",
                    organization_id,
                    active.id,
                    active.status.value,
                )
                await scheduled_import_service.record_run(
                    session,
                    organization_id=organization_id,
                    status=RUN_STATUS_SKIPPED,
                    error=ACTIVE_IMPORT_MESSAGE,
                )
                return None

            now = utcnow()
            if not is_manual and config.last_run_at is not None:
                elapsed = now - as_utc(config.last_run_at)
                minimum = timedelta(minutes=settings.scheduled_min_interval_minutes)
                if elapsed < minimum:
                    logger.info(
                        "Skipping scheduled import for org %s: last run %s ago",
                        organization_id,
                        elapsed,
                    )
                    return None

            data_types = scheduled_import_service.parse_data_types(config.data_types)
            start_date = now - timedelta(days=config.days_to_import)
            await scheduled_import_service.record_run(
                session,
                organization_id=organization_id,
                status=RUN_STATUS_RUNNING,
                run_at=now,
            )
            try:
                job = await import_job_service.create_job(
                    session,
                    organization_id=organization_id,
                    data_types=data_types,
                    start_date=start_date,
                    end_date=now,
                )
            except ValueError as exc:
                logger.error(
                    "Could not create scheduled import for org %s: %s", organization_id, exc
                )
                await scheduled_import_service.record_run(
                    session,
                    organization_id=organization_id,
                    status=RUN_STATUS_FAILED,
                    error=str(exc),
                )
                if is_manual:
                    raise
                return None

        logger.info(
            "Started %s import job %s for org %s (%s, last %s days)",
            trigger,
            job.id,
            organization_id,
            ",".join(data_types),
            config.days_to_import,
        )
        task = asyncio.create_task(self.run_import_in_background(job.id, organization_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return job

    async def run_import_in_background(
        self, job_id: uuid.UUID, organization_id: uuid.UUID
    ) -> None:
        """Queue the job and poll it to a final status, then record the outcome."""
        settings = get_settings()
        interval = (
            self.poll_interval_seconds
            if self.poll_interval_seconds is not None
            else settings.scheduled_poll_interval_seconds
        )
        hours = (
            self.poll_timeout_hours
            if self.poll_timeout_hours is not None
            else settings.scheduled_poll_timeout_hours
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + hours * 3600

        try:
            self.worker.enqueue(job_id)
            while True:
                async with session_scope() as session:
                    job = await session.get(ImportJob, job_id, populate_existing=True)
                    status = job.status if job is not None else None
                    error = job.error if job is not None else None
                if status is None or status in _FINISHED_STATUSES:
                    break
                if loop.time() >= deadline:
                    message = timeout_message(hours)
                    logger.error("Scheduled import job %s: %s", job_id, message)
                    await self._record(organization_id, RUN_STATUS_FAILED, message)
                    return
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Error in background import %s", job_id)
            await self._fail_job(job_id, str(exc))
            await self._record(organization_id, RUN_STATUS_FAILED, str(exc))
            return

        run_status, run_error = describe_outcome(status, error)
        await self._record(organization_id, run_status, run_error)
        logger.info(
            "Scheduled import job %s for org %s finished: %s",
            job_id,
            organization_id,
            run_status,
        )

    async def _record(
        self, organization_id: uuid.UUID, status: str, error: str | None
    ) -> None:
        async with session_scope() as session:
            await scheduled_import_service.record_run(
                session, organization_id=organization_id, status=status, error=error
            )

    async def _fail_job(self, job_id: uuid.UUID, message: str) -> None:
        async with session_scope() as session:
            job = await session.get(ImportJob, job_id, populate_existing=True)
            if job is None or job.status in _FINISHED_STATUSES:
                return
            job.status = ImportJobStatus.FAILED
            job.error = message
            await session.commit()


import_scheduler = ImportScheduler()


__all__ = [
    "ImportScheduler",
    "cron_job_id",
    "describe_outcome",
    "import_scheduler",
    "timeout_message",
]
