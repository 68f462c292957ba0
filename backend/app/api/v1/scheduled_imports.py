"""Scheduled import configuration endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.user import User
from app.schemas.scheduled_import import (
    ScheduledImportRead,
    ScheduledImportUpdate,
    ScheduledRunStarted,
)
from app.services import scheduled_import_service
from app.services.import_job_service import ImportJobConflictError
from app.services.scheduler_service import import_scheduler

router = APIRouter()


@router.get("", response_model=ScheduledImportRead, summary="Get schedule")
async def get_scheduled_import(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> ScheduledImportRead:
    config = await scheduled_import_service.get_config(
        session, organization_id=current_user.organization_id
    )
    if config is None:
        config = scheduled_import_service.default_config(current_user.organization_id)
    return ScheduledImportRead.model_validate(config)


@router.put("", response_model=ScheduledImportRead, summary="Save schedule")
async def update_scheduled_import(
    payload: ScheduledImportUpdate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.require_admin)],
) -> ScheduledImportRead:
    try:
        config = await scheduled_import_service.upsert_config(
            session,
            organization_id=current_user.organization_id,
            enabled=payload.enabled,
            schedule=payload.schedule,
            data_types=payload.data_types,
            days_to_import=payload.days_to_import,
        )
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if import_scheduler.is_running:
        await import_scheduler.sync_scheduled_jobs()
    return ScheduledImportRead.model_validate(config)


@router.post(
    "/run",
    response_model=ScheduledRunStarted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run the scheduled import now",
)
async def run_scheduled_import_now(
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> ScheduledRunStarted:
    try:
        job = await import_scheduler.run_scheduled_import(
            current_user.organization_id, is_manual=True
        )
    except ImportJobConflictError as exc:
        raise HTTPException(
            status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "job_id": str(exc.job_id)},
        ) from exc
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if job is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Import was not started")
    return ScheduledRunStarted(job_id=str(job.id))
