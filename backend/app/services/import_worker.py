"""In-process FIFO worker that drives import jobs through their phases."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Deque, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.session import session_scope
from app.integrations.mindbody_client import MindbodyClient, build_mindbody_client
from app.models import ImportJob, ImportJobStatus, Organization
from app.services.import_progress import read_progress, write_progress
from app.services.mindbody_import_service import (
    BatchResult,
    ImportContext,
    import_classes_batch,
    import_clients_batch,
    import_sales_batch,
    import_visits_batch,
)

logger = logging.getLogger(__name__)


class BatchRunner(Protocol):
    def __call__(
        self,
        session: AsyncSession,
        client: MindbodyClient,
        context: ImportContext,
        *,
        offset: int = 0,
    ) -> Awaitable[BatchResult]: ...


@dataclass(frozen=True, slots=True)
class ImportPhase:
    """One data-type phase: its progress key, display label and batch runner."""

    name: str
    label: str
    run_batch: BatchRunner


DEFAULT_PHASES: tuple[ImportPhase, ...] = (
    ImportPhase("clients", "Students", import_clients_batch),
    ImportPhase("classes", "Classes", import_classes_batch),
    ImportPhase("visits", "Visits", import_visits_batch),
    ImportPhase("sales", "Sales", import_sales_batch),
)

ClientFactory = Callable[[Organization], MindbodyClient]


class PhaseFailedError(RuntimeError):
    """Wraps an exception raised while a phase was running."""

    def __init__(self, phase: ImportPhase, error: BaseException) -> None:
        super().__init__(describe_failure(phase.label, error))
        self.phase = phase


def describe_failure(label: str, error: BaseException) -> str:
    """Prefix the error with the phase and append an operator hint."""
    detail = str(error) or error.__class__.__name__
    message = f"Failed while importing {label}: {detail}"
    lowered = message.lower()
    if any(token in lowered for token in ("timeout", "timed out", "408", "504")):
        message += " (Network timeout - this is common for large imports. Resume to continue.)"
    elif "429" in lowered or "rate limit" in lowered:
        message += " (API rate limit reached. Wait a few minutes, then resume.)"
    elif any(
        token in lowered
        for token in ("401", "403", "unauthorized", "forbidden", "authenticat")
    ):
        message += " (Authentication/permission issue. Check the Mindbody connection.)"
    elif "memory" in lowered:
        message += " (Out of memory. Try importing smaller date ranges.)"
    return message


def _default_client_factory(organization: Organization) -> MindbodyClient:
    return build_mindbody_client(organization.mindbody_site_id)


class ImportWorker:
    """Serializes every import job of the process through one FIFO queue.

    Only one job runs at a time. Progress is committed after every batch and
    the job's live status is re-read before the next one, so a pause or
    cancel written by another request stops the worker at the next batch
    boundary.
    """

    def __init__(
        self,
        *,
        client_factory: ClientFactory | None = None,
        phases: Sequence[ImportPhase] = DEFAULT_PHASES,
    ) -> None:
        self._queue: Deque[uuid.UUID] = deque()
        self._processing = False
        self._current_job_id: uuid.UUID | None = None
        self._task: asyncio.Task[None] | None = None
        self.client_factory: ClientFactory = client_factory or _default_client_factory
        self.phases: tuple[ImportPhase, ...] = tuple(phases)

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def current_job_id(self) -> uuid.UUID | None:
        return self._current_job_id

    @property
    def queued_job_ids(self) -> list[uuid.UUID]:
        return list(self._queue)

    def enqueue(self, job_id: uuid.UUID) -> None:
        """Append a job id and start the drain loop when idle.

        The job being processed is queued again rather than dropped: it may be
        halting after a pause that was resumed before it noticed, and the next
        pass re-reads its status and continues from the stored cursor.
        """
        if job_id in self._queue:
            logger.info("Import job %s is already queued", job_id)
            return
        if job_id == self._current_job_id:
            logger.info("Import job %s is running, queued for another pass", job_id)
        self._queue.append(job_id)
        logger.info("Queued import job %s (queue length %s)", job_id, len(self._queue))
        if not self._processing:
            self._processing = True
            self._task = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while self._queue:
                job_id = self._queue.popleft()
                self._current_job_id = job_id
                try:
                    await self.process_job(job_id)
                finally:
                    self._current_job_id = None
        finally:
            self._processing = False

    async def wait_idle(self) -> None:
        """Wait until the queue is drained (used by tests and shutdown)."""
        while self._task is not None and not self._task.done():
            await self._task

    async def stop(self) -> None:
        self._queue.clear()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._processing = False
        self._current_job_id = None

    async def process_job(self, job_id: uuid.UUID) -> ImportJobStatus | None:
        """Run a job to a terminal or suspended status.

        Failures never escape: they are recorded on the job as ``failed``.
        """
        try:
            return await self._run_job(job_id)
        except PhaseFailedError as exc:
            logger.error("Import job %s failed: %s", job_id, exc)
            await self._mark_failed(job_id, str(exc))
            return ImportJobStatus.FAILED
        except Exception as exc:
            logger.exception("Import job %s failed outside a phase", job_id)
            await self._mark_failed(job_id, f"Failed to start import: {exc}")
            return ImportJobStatus.FAILED

    async def _run_job(self, job_id: uuid.UUID) -> ImportJobStatus | None:
        settings = get_settings()
        async with session_scope() as session:
            job = await session.get(ImportJob, job_id)
            if job is None:
                logger.warning("Import job %s no longer exists", job_id)
                return None
            if job.status not in (ImportJobStatus.PENDING, ImportJobStatus.RUNNING):
                logger.info("Skipping import job %s with status %s", job_id, job.status.value)
                return job.status
            organization = await session.get(Organization, job.organization_id)
            if organization is None:
                raise LookupError(f"Organization {job.organization_id} not found")

            job.status = ImportJobStatus.RUNNING
            job.error = None
            await session.commit()
            data_types = set(job.data_types or [])
            context = ImportContext(
                organization_id=job.organization_id,
                start_date=job.start_date,
                end_date=job.end_date,
                job_id=job.id,
                page_size=settings.import_page_size,
                student_batch_size=settings.import_student_batch_size,
                batch_delay_ms=settings.import_batch_delay_ms,
                match_tolerance_seconds=settings.visit_match_tolerance_seconds,
            )
        logger.info("Import job %s running (%s)", job_id, ", ".join(sorted(data_types)))

        client = self.client_factory(organization)
        async with client:
            for phase in self.phases:
                if phase.name not in data_types:
                    continue
                halted = await self._run_phase(job_id, phase, client, context)
                if halted is not None:
                    return halted

        async with session_scope() as session:
            job = await session.get(ImportJob, job_id, populate_existing=True)
            if job is None:
                return None
            if job.status != ImportJobStatus.RUNNING:
                return job.status
            job.status = ImportJobStatus.COMPLETED
            job.current_data_type = None
            await session.commit()
        logger.info("Import job %s completed", job_id)
        return ImportJobStatus.COMPLETED

    async def _run_phase(
        self,
        job_id: uuid.UUID,
        phase: ImportPhase,
        client: MindbodyClient,
        context: ImportContext,
    ) -> ImportJobStatus | None:
        """Loop batches for one phase; return a status only when halted."""
        while True:
            async with session_scope() as session:
                job = await session.get(ImportJob, job_id, populate_existing=True)
                if job is None:
                    logger.warning("Import job %s disappeared mid-run", job_id)
                    return ImportJobStatus.CANCELLED
                if job.status != ImportJobStatus.RUNNING:
                    logger.info(
                        "Import job %s halted during %s (%s)",
                        job_id,
                        phase.name,
                        job.status.value,
                    )
                    return job.status

                progress = read_progress(job)
                entry = progress.phase(phase.name)
                if entry.completed:
                    return None

                async def _report(current: int, total: int) -> None:
                    entry.report(current=current, total=total)
                    write_progress(job, progress)
                    job.current_data_type = phase.name
                    job.current_offset = entry.current
                    await session.commit()
                    logger.debug(
                        "Import job %s %s progress %s/%s", job_id, phase.name, current, total
                    )

                context.on_progress = _report
                try:
                    result = await phase.run_batch(
                        session, client, context, offset=entry.current
                    )
                except Exception as exc:
                    raise PhaseFailedError(phase, exc) from exc

                entry.record_batch(
                    next_cursor=result.next_cursor,
                    total=result.total,
                    imported=result.imported,
                    updated=result.updated,
                    skipped=result.skipped,
                    completed=result.completed,
                )
                progress.extra["apiCallCount"] = client.api_call_count
                write_progress(job, progress)
                job.current_data_type = phase.name
                job.current_offset = result.next_cursor
                await session.commit()
                logger.info(
                    "Import job %s %s batch: cursor %s/%s imported %s completed %s",
                    job_id,
                    phase.name,
                    result.next_cursor,
                    result.total,
                    result.imported,
                    result.completed,
                )
                if entry.completed:
                    return None

    async def _mark_failed(self, job_id: uuid.UUID, message: str) -> None:
        try:
            async with session_scope() as session:
                job = await session.get(ImportJob, job_id, populate_existing=True)
                if job is None:
                    return
                if job.status in (ImportJobStatus.CANCELLED, ImportJobStatus.PAUSED):
                    logger.info(
                        "Import job %s is %s, not marking it failed: %s",
                        job_id,
                        job.status.value,
                        message,
                    )
                    return
                job.status = ImportJobStatus.FAILED
                job.error = message
                await session.commit()
        except Exception:
            logger.exception("Failed to mark import job %s as failed", job_id)


import_worker = ImportWorker()


__all__ = [
    "DEFAULT_PHASES",
    "ImportPhase",
    "ImportWorker",
    "PhaseFailedError",
    "describe_failure",
    "import_worker",
]
