"""Import job lifecycle endpoints."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.config import get_settings
from app.models import ImportJob
from app.models.user import User
from app.schemas.import_job import ImportJobCreate, ImportJobRead, SkippedRecordRead
from app.services import import_job_service, import_storage
from app.services.import_job_service import ImportJobConflictError
from app.services.import_progress import ImportProgressError
from app.services.import_worker import import_worker

router = APIRouter()


def _read(job: ImportJob) -> ImportJobRead:
    try:
        return ImportJobRead.model_validate(import_job_service.serialize_job(job))
    except ImportProgressError as exc:
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc


def _conflict(exc: ImportJobConflictError) -> HTTPException:
    return HTTPException(
        status.HTTP_409_CONFLICT,
        detail={"message": str(exc), "job_id": str(exc.job_id)},
    )


@router.post(
    "",
    response_model=ImportJobRead,
    status_code=status.HTTP_201_CREATED,
    summary="Start an import",
)
async def start_import(
    payload: ImportJobCreate,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> ImportJobRead:
    try:
        job = await import_job_service.create_job(
            session,
            organization_id=current_user.organization_id,
            data_types=payload.data_types.selected(),
            start_date=payload.start_date,
            end_date=payload.end_date,
            lookback_months=get_settings().import_default_lookback_months,
        )
    except ImportJobConflictError as exc:
        raise _conflict(exc) from exc
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    import_worker.enqueue(job.id)
    return _read(job)


@router.get(
    "/active", response_model=ImportJobRead | None, summary="Current import, if any"
)
async def get_active_import(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> ImportJobRead | None:
    job = await import_job_service.get_active_job(
        session, organization_id=current_user.organization_id
    )
    return _read(job) if job is not None else None


@router.get("", response_model=list[ImportJobRead], summary="Import history")
async def list_imports(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    limit: int = Query(default=20, ge=1, le=100),
) -> list[ImportJobRead]:
    jobs = await import_job_service.list_jobs(
        session, organization_id=current_user.organization_id, limit=limit
    )
    return [_read(job) for job in jobs]


@router.get(
    "/skipped",
    response_model=list[SkippedRecordRead],
    summary="Records skipped during import",
)
async def list_skipped_records(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    data_type: str | None = Query(default=None),
    job_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=import_storage.DEFAULT_SKIPPED_LIMIT, ge=1, le=1000),
) -> list[SkippedRecordRead]:
    records = await import_storage.list_skipped(
        session,
        organization_id=current_user.organization_id,
        data_type=data_type,
        import_job_id=job_id,
        limit=limit,
    )
    return [SkippedRecordRead.model_validate(record) for record in records]


@router.post(
    "/force-cancel", response_model=ImportJobRead, summary="Cancel a stuck import"
)
async def force_cancel_import(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> ImportJobRead:
    job = await import_job_service.force_cancel(
        session, organization_id=current_user.organization_id
    )
    if job is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="No active import found")
    return _read(job)


@router.get("/{job_id}", response_model=ImportJobRead, summary="Import status")
async def get_import(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> ImportJobRead:
    job = await import_job_service.get_job(
        session, organization_id=current_user.organization_id, job_id=job_id
    )
    if job is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Import job not found")
    return _read(job)


@router.post("/{job_id}/pause", response_model=ImportJobRead, summary="Pause an import")
async def pause_import(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> ImportJobRead:
    try:
        job = await import_job_service.pause_job(
            session, organization_id=current_user.organization_id, job_id=job_id
        )
    except LookupError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _read(job)


@router.post(
    "/{job_id}/resume", response_model=ImportJobRead, summary="Resume an import"
)
async def resume_import(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
) -> ImportJobRead:
    try:
        job = await import_job_service.resume_job(
            session, organization_id=current_user.organization_id, job_id=job_id
        )
    except LookupError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ImportJobConflictError as exc:
        raise _conflict(exc) from exc
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    import_worker.enqueue(job.id)
    return _read(job)
