"""CSV upload endpoint tests."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from app.db.session import get_sessionmaker
from tests.support import seed_schedule, seed_student

pytestmark = pytest.mark.asyncio


async def test_attendance_upload_reports_counters(app_context) -> None:
    async with get_sessionmaker()() as session:
        await seed_student(session, app_context["organization_id"], client_id="c-1")
        await seed_schedule(
            session,
            app_context["organization_id"],
            start=datetime(2024, 3, 4, 9, 0, tzinfo=UTC),
        )

    content = (
        b"Client ID,Start Date/Time\n"
        b"c-1,2024-03-04 09:00\n"
        b"c-1,2024-03-04 09:00\n"
        b"c-2,2024-03-04 09:00\n"
    )
    response = await app_context["client"].post(
        "/api/v1/attendance/import-csv",
        files={"file": ("attendance.csv", content, "text/csv")},
        headers=app_context["headers"],
    )
    assert response.status_code == 200, response.text
    assert response.json() == {
        "imported": 1,
        "duplicates": 1,
        "skipped": 1,
        "errors": ["Row 3: Student not found"],
    }

    skipped = await app_context["client"].get(
        "/api/v1/imports/skipped",
        params={"data_type": "attendance_csv"},
        headers=app_context["headers"],
    )
    assert len(skipped.json()) == 1


async def test_revenue_upload_accepts_csv_extension(app_context) -> None:
    content = b"Sale ID,Amount,Date\nS-1,$25.00,2024-03-02\n"
    response = await app_context["client"].post(
        "/api/v1/revenue/import-csv",
        files={"file": ("sales.csv", content, "application/octet-stream")},
        headers=app_context["staff_headers"],
    )
    assert response.status_code == 200, response.text
    assert response.json()["imported"] == 1


@pytest.mark.parametrize(
    ("upload", "detail"),
    [
        (
            ("photo.png", b"\x89PNG", "image/png"),
            "Invalid file type, please upload a CSV file",
        ),
        (("empty.csv", b"", "text/csv"), "No file uploaded"),
        (("header.csv", b"Sale ID,Amount\n", "text/csv"), "CSV file is empty"),
    ],
)
async def test_bad_uploads_are_rejected(app_context, upload, detail) -> None:
    response = await app_context["client"].post(
        "/api/v1/revenue/import-csv",
        files={"file": upload},
        headers=app_context["headers"],
    )
    assert response.status_code == 400
    assert response.json()["detail"] == detail


async def test_upload_requires_authentication(app_context) -> None:
    response = await app_context["client"].post(
        "/api/v1/attendance/import-csv",
        files={"file": ("a.csv", b"Client ID\n1\n", "text/csv")},
    )
    assert response.status_code == 401
