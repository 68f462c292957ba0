"""Import job request and response schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.models.import_job import ImportJobStatus


class ImportDataTypes(BaseModel):
    """Checkbox-style selection of the phases to run."""

    clients: bool = False
    classes: bool = False
    visits: bool = False
    sales: bool = False

    def selected(self) -> list[str]:
        return [name for name, enabled in self.model_dump().items() if enabled]


class ImportJobCreate(BaseModel):
    """Start a new import; the range defaults to the last twelve months."""

    start_date: datetime | None = None
    end_date: datetime | None = None
    data_types: ImportDataTypes


class ImportJobRead(BaseModel):
    """Status payload for one import job."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: ImportJobStatus
    data_types: list[str]
    start_date: datetime
    end_date: datetime
    progress: dict[str, Any] = Field(default_factory=dict)
    current_data_type: str | None = None
    current_offset: int = 0
    error: str | None = None
    paused_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class SkippedRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    import_job_id: uuid.UUID | None = None
    data_type: str
    mindbody_id: str | None = None
    reason: str
    raw_data: dict[str, Any] | None = None
    created_at: datetime
