"""Scheduled import configuration schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.scheduled_import import (
    DEFAULT_DATA_TYPES,
    DEFAULT_DAYS_TO_IMPORT,
    DEFAULT_SCHEDULE,
)


class ScheduledImportRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enabled: bool
    schedule: str
    data_types: list[str]
    days_to_import: int
    last_run_at: datetime | None = None
    last_run_status: str | None = None
    last_run_error: str | None = None

    @field_validator("data_types", mode="before")
    @classmethod
    def _split(cls, value: object) -> object:
        if isinstance(value, str):
            return [item for item in value.split(",") if item]
        return value


class ScheduledImportUpdate(BaseModel):
    """Payload for saving the organization's schedule."""

    enabled: bool = False
    schedule: str = DEFAULT_SCHEDULE
    data_types: list[str] = Field(
        default_factory=lambda: DEFAULT_DATA_TYPES.split(",")
    )
    days_to_import: int = Field(default=DEFAULT_DAYS_TO_IMPORT, ge=1, le=365)

    @field_validator("data_types", mode="before")
    @classmethod
    def _split(cls, value: object) -> object:
        if isinstance(value, str):
            return [item for item in value.split(",") if item.strip()]
        return value


class ScheduledRunStarted(BaseModel):
    message: str = "Import started"
    job_id: str
