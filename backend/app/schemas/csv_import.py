"""CSV upload results."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CsvImportResult(BaseModel):
    """Row counters for an uploaded CSV; ``errors`` holds at most 20 messages."""

    imported: int = 0
    duplicates: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)
