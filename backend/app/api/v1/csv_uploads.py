"""CSV upload endpoints for attendance and revenue exports."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.user import User
from app.schemas.csv_import import CsvImportResult
from app.services import csv_import_service

router = APIRouter()

_CSV_CONTENT_TYPES = {"text/csv", "application/csv", "text/plain", "application/vnd.ms-excel"}


async def _read_upload(file: UploadFile) -> bytes:
    filename = (file.filename or "").lower()
    if file.content_type not in _CSV_CONTENT_TYPES and not filename.endswith(".csv"):
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST, detail="Invalid file type, please upload a CSV file"
        )
    content = await file.read()
    if not content:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="No file uploaded")
    return content


@router.post(
    "/attendance/import-csv",
    response_model=CsvImportResult,
    summary="Import attendance from CSV",
)
async def import_attendance_csv(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    file: UploadFile = File(...),
) -> CsvImportResult:
    content = await _read_upload(file)
    try:
        summary = await csv_import_service.import_attendance_csv(
            session, organization_id=current_user.organization_id, content=content
        )
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return CsvImportResult.model_validate(summary.as_dict())


@router.post(
    "/revenue/import-csv",
    response_model=CsvImportResult,
    summary="Import revenue from CSV",
)
async def import_revenue_csv(
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    current_user: Annotated[User, Depends(deps.get_current_active_user)],
    file: UploadFile = File(...),
) -> CsvImportResult:
    content = await _read_upload(file)
    try:
        summary = await csv_import_service.import_revenue_csv(
            session, organization_id=current_user.organization_id, content=content
        )
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return CsvImportResult.model_validate(summary.as_dict())
