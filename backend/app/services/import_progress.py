"""Typed accessor for the per-phase progress document of an import job."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from app.models.import_job import ImportJob

PHASE_ORDER: tuple[str, ...] = ("clients", "classes", "visits", "sales")


class ImportProgressError(ValueError):
    """Raised when a stored progress document cannot be decoded or advanced."""


class PhaseProgress(BaseModel):
    """Cursor and counters for one data-type phase.

    Unknown keys written by newer releases are kept and written back.
    """

    model_config = ConfigDict(extra="allow")

    current: int = 0
    total: int | None = None
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    completed: bool = False

    def report(self, *, current: int, total: int | None) -> None:
        """Record progress inside a batch; the cursor never moves backwards."""
        self.current = max(self.current, current)
        if total is not None:
            self.total = total

    def record_batch(
        self,
        *,
        next_cursor: int,
        total: int | None,
        imported: int,
        updated: int = 0,
        skipped: int = 0,
        completed: bool,
    ) -> None:
        if self.completed:
            raise ImportProgressError("Phase is already completed")
        if next_cursor < self.current:
            raise ImportProgressError(
                f"Cursor moved backwards ({self.current} -> {next_cursor})"
            )
        self.current = next_cursor
        if total is not None:
            self.total = total
        self.imported += imported
        self.updated += updated
        self.skipped += skipped
        if completed:
            self.completed = True


class ImportProgress:
    """Progress keyed by phase name plus any extra top-level keys."""

    def __init__(
        self,
        phases: dict[str, PhaseProgress] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.phases: dict[str, PhaseProgress] = dict(phases or {})
        self.extra: dict[str, Any] = dict(extra or {})

    @classmethod
    def loads(cls, raw: str | None) -> "ImportProgress":
        if raw is None or not raw.strip():
            return cls()
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ImportProgressError(f"Progress is not valid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise ImportProgressError("Progress must be a JSON object")

        phases: dict[str, PhaseProgress] = {}
        extra: dict[str, Any] = {}
        for key, value in document.items():
            if key in PHASE_ORDER:
                try:
                    phases[key] = PhaseProgress.model_validate(value)
                except ValidationError as exc:
                    raise ImportProgressError(
                        f"Invalid progress for phase {key!r}: {exc}"
                    ) from exc
            else:
                extra[key] = value
        return cls(phases, extra)

    def dumps(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    def to_dict(self) -> dict[str, Any]:
        document: dict[str, Any] = dict(self.extra)
        for name, phase in self.phases.items():
            document[name] = phase.model_dump()
        return document

    def phase(self, name: str) -> PhaseProgress:
        """Return the progress for ``name``, creating an empty entry if needed."""
        if name not in PHASE_ORDER:
            raise ImportProgressError(f"Unknown phase {name!r}")
        return self.phases.setdefault(name, PhaseProgress())

    def is_completed(self, name: str) -> bool:
        entry = self.phases.get(name)
        return bool(entry and entry.completed)


def read_progress(job: ImportJob) -> ImportProgress:
    return ImportProgress.loads(job.progress)


def write_progress(job: ImportJob, progress: ImportProgress) -> None:
    job.progress = progress.dumps()


__all__ = [
    "PHASE_ORDER",
    "ImportProgress",
    "ImportProgressError",
    "PhaseProgress",
    "read_progress",
    "write_progress",
]
