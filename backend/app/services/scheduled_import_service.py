"""Per-organization scheduled import configuration."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime

from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import ScheduledImport
from app.models.scheduled_import import (
    DEFAULT_DATA_TYPES,
    DEFAULT_DAYS_TO_IMPORT,
    DEFAULT_SCHEDULE,
)
from app.services.import_job_service import normalize_data_types

RUN_STATUS_RUNNING = "running"
RUN_STATUS_SUCCESS = "success"
RUN_STATUS_FAILED = "failed"
RUN_STATUS_SKIPPED = "skipped"


def validate_cron(expression: str) -> CronTrigger:
    """Parse a five-field crontab expression, raising ``ValueError`` if invalid."""
    try:
        return CronTrigger.from_crontab(expression.strip())
    except (ValueError, TypeError) as exc:
        raise ValueError(f"Invalid cron expression: {expression}") from exc


def parse_data_types(value: str | None) -> list[str]:
    """Split the stored comma string, mapping ``students`` to ``clients``."""
    return normalize_data_types((value or DEFAULT_DATA_TYPES).split(","))


def default_config(organization_id: uuid.UUID) -> ScheduledImport:
    """Unsaved config carrying the defaults shown before the first save."""
    return ScheduledImport(
        organization_id=organization_id,
        enabled=False,
        schedule=DEFAULT_SCHEDULE,
        data_types=DEFAULT_DATA_TYPES,
        days_to_import=DEFAULT_DAYS_TO_IMPORT,
    )


async def get_config(
    session: AsyncSession, *, organization_id: uuid.UUID
) -> ScheduledImport | None:
    result = await session.execute(
        select(ScheduledImport).where(ScheduledImport.organization_id == organization_id)
    )
    return result.scalar_one_or_none()


async def list_enabled(session: AsyncSession) -> Sequence[ScheduledImport]:
    result = await session.execute(
        select(ScheduledImport).where(ScheduledImport.enabled.is_(True))
    )
    return result.scalars().all()


async def upsert_config(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    enabled: bool,
    schedule: str,
    data_types: Sequence[str],
    days_to_import: int,
) -> ScheduledImport:
    """Create or update the organization's schedule after validating it."""
    validate_cron(schedule)
    if days_to_import < 1:
        raise ValueError("days_to_import must be at least 1")
    if enabled:
        normalized = normalize_data_types(data_types)
    else:
        try:
            normalized = normalize_data_types(data_types)
        except ValueError:
            normalized = parse_data_types(DEFAULT_DATA_TYPES)

    config = await get_config(session, organization_id=organization_id)
    if config is None:
        config = ScheduledImport(organization_id=organization_id)
        session.add(config)
    config.enabled = enabled
    config.schedule = schedule.strip()
    config.data_types = ",".join(normalized)
    config.days_to_import = days_to_import
    await session.commit()
    await session.refresh(config)
    return config


async def record_run(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    status: str,
    error: str | None = None,
    run_at: datetime | None = None,
) -> None:
    """Write last-run bookkeeping; silently ignores organizations without config."""
    config = await get_config(session, organization_id=organization_id)
    if config is None:
        return
    if run_at is not None:
        config.last_run_at = run_at
    config.last_run_status = status
    config.last_run_error = error
    await session.commit()


__all__ = [
    "RUN_STATUS_FAILED",
    "RUN_STATUS_RUNNING",
    "RUN_STATUS_SKIPPED",
    "RUN_STATUS_SUCCESS",
    "default_config",
    "get_config",
    "list_enabled",
    "parse_data_types",
    "record_run",
    "upsert_config",
    "validate_cron",
]
