"""Progress document accessor tests."""

import json

import pytest

from app.models import ImportJob
from app.services.import_progress import (
    ImportProgress,
    ImportProgressError,
    read_progress,
    write_progress,
)


def test_empty_document_yields_no_phases() -> None:
    assert ImportProgress.loads(None).phases == {}
    assert ImportProgress.loads("  ").phases == {}


def test_record_batch_advances_cursor_and_counters() -> None:
    progress = ImportProgress()
    entry = progress.phase("clients")
    entry.record_batch(
        next_cursor=200, total=450, imported=180, updated=15, skipped=5, completed=False
    )
    entry.record_batch(next_cursor=400, total=450, imported=190, completed=False)

    assert entry.current == 400
    assert entry.total == 450
    assert entry.imported == 370
    assert entry.updated == 15
    assert entry.skipped == 5
    assert entry.completed is False
    assert progress.is_completed("clients") is False


def test_cursor_never_moves_backwards() -> None:
    entry = ImportProgress().phase("visits")
    entry.record_batch(next_cursor=100, total=300, imported=100, completed=False)
    with pytest.raises(ImportProgressError):
        entry.record_batch(next_cursor=50, total=300, imported=0, completed=False)


def test_intra_batch_report_moves_cursor_forward_only() -> None:
    entry = ImportProgress().phase("visits")
    entry.report(current=3, total=10)
    entry.report(current=2, total=10)

    assert entry.current == 3
    assert entry.total == 10
    assert entry.imported == 0

    entry.record_batch(next_cursor=5, total=10, imported=4, completed=False)
    assert entry.current == 5


def test_completed_phase_cannot_record_more_batches() -> None:
    entry = ImportProgress().phase("sales")
    entry.record_batch(next_cursor=10, total=10, imported=10, completed=True)
    with pytest.raises(ImportProgressError):
        entry.record_batch(next_cursor=10, total=10, imported=0, completed=True)


def test_round_trip_keeps_unknown_keys() -> None:
    raw = json.dumps(
        {
            "clients": {
                "current": 5,
                "total": 5,
                "imported": 5,
                "completed": True,
                "note": "x",
            },
            "apiCallCount": 12,
        }
    )
    progress = ImportProgress.loads(raw)
    assert progress.is_completed("clients")
    assert progress.extra == {"apiCallCount": 12}

    document = json.loads(progress.dumps())
    assert document["apiCallCount"] == 12
    assert document["clients"]["note"] == "x"
    assert document["clients"]["current"] == 5


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"clients": {"current": "many"}}'])
def test_malformed_documents_raise(raw: str) -> None:
    with pytest.raises(ImportProgressError):
        ImportProgress.loads(raw)


def test_unknown_phase_name_is_rejected() -> None:
    with pytest.raises(ImportProgressError):
        ImportProgress().phase("invoices")


def test_job_accessors_write_serialized_document() -> None:
    job = ImportJob(progress="{}")
    progress = read_progress(job)
    progress.phase("classes").record_batch(
        next_cursor=3, total=3, imported=3, completed=True
    )
    write_progress(job, progress)
    assert json.loads(job.progress)["classes"]["completed"] is True
