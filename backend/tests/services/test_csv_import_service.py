"""CSV fast-path tests for attendance and revenue exports."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models import Attendance, AttendanceStatus, Revenue, SkippedImportRecord
from app.services import import_storage
from app.services.csv_import_service import (
    CsvFormatError,
    import_attendance_csv,
    import_revenue_csv,
    parse_amount,
    parse_csv_date,
    parse_csv_datetime,
    read_rows,
)
from tests.support import seed_schedule, seed_student

pytestmark = pytest.mark.asyncio

CLASS_START = datetime(2024, 3, 4, 9, 0, tzinfo=UTC)


async def _all(session, model):
    result = await session.execute(select(model))
    return list(result.scalars())


async def test_attendance_rows_resolve_students_and_schedules(
    session, organization_id
) -> None:
    await seed_student(session, organization_id, client_id="c-1")
    await seed_student(
        session,
        organization_id,
        client_id=None,
        first_name="Grace",
        email="grace@example.com",
    )
    await seed_schedule(session, organization_id, start=CLASS_START, name="Vinyasa Flow")

    content = (
        "Client ID,Email,Class Name,Class Date,Class Time,Status\n"
        "c-1,,Vinyasa Flow,03/04/2024,9:00 AM,Signed In\n"
        ",GRACE@example.com,vinyasa flow,2024-03-04,9:15 AM,No Show\n"
        "c-404,,Vinyasa Flow,03/04/2024,9:00 AM,\n"
        "c-1,,Yin,03/05/2024,6:00 PM,\n"
        "c-1,,Vinyasa Flow,,,\n"
    ).encode()
    summary = await import_attendance_csv(
        session, organization_id=organization_id, content=content
    )

    assert summary.imported == 2
    assert summary.duplicates == 0
    assert summary.skipped == 3
    assert summary.errors == [
        "Row 3: Student not found",
        "Row 4: No matching class schedule",
        "Row 5: Missing or invalid class date/time",
    ]
    visits = await _all(session, Attendance)
    assert sorted(visit.status for visit in visits) == [
        AttendanceStatus.ATTENDED,
        AttendanceStatus.NOSHOW,
    ]
    skipped = await _all(session, SkippedImportRecord)
    assert {record.data_type for record in skipped} == {"attendance_csv"}


async def test_attendance_csv_dedups_against_api_imported_visits(
    session, organization_id
) -> None:
    student = await seed_student(session, organization_id, client_id="c-1")
    schedule = await seed_schedule(session, organization_id, start=CLASS_START)
    await import_storage.create_attendance(
        session,
        organization_id=organization_id,
        student_id=student.id,
        schedule_id=schedule.id,
        attended_at=CLASS_START,
    )
    await session.commit()

    content = "Client ID or Email,Start Date/Time\nc-1,2024-03-04T09:00:00\n"
    first = await import_attendance_csv(
        session, organization_id=organization_id, content=content
    )
    second = await import_attendance_csv(
        session, organization_id=organization_id, content=content
    )

    assert (first.imported, first.duplicates) == (0, 1)
    assert (second.imported, second.duplicates) == (0, 1)
    assert len(await _all(session, Attendance)) == 1


async def test_revenue_rows_accept_header_aliases_and_upsert(
    session, organization_id
) -> None:
    student = await seed_student(session, organization_id, client_id="c-1")
    content = (
        "Sale ID,Item ID,Item Total,Sale Date,Client ID,Payment Method,Item name\n"
        'S-1,I-1,"$1,234.50",03/02/2024,c-1,Visa,Annual Pass\n'
        "S-1,I-2,15,2024-03-02,,,\n"
        "S-2,I-1,abc,2024-03-02,,,\n"
        "S-3,I-1,12.00,,,,\n"
        "S-4,I-1,12.00,someday,,,\n"
    ).encode("utf-8-sig")

    summary = await import_revenue_csv(
        session, organization_id=organization_id, content=content
    )
    assert summary.imported == 2
    assert summary.errors == [
        'Row 3: Invalid amount "abc"',
        "Row 4: Missing date",
        'Row 5: Invalid date "someday"',
    ]

    rows = {row.mindbody_item_id: row for row in await _all(session, Revenue)}
    assert rows["I-1"].amount == Decimal("1234.50")
    assert rows["I-1"].type == "Visa"
    assert rows["I-1"].description == "Annual Pass"
    assert rows["I-1"].student_id == student.id
    assert rows["I-2"].type == "Sale"
    assert rows["I-2"].description == ""
    assert rows["I-2"].student_id is None

    again = await import_revenue_csv(
        session, organization_id=organization_id, content=content
    )
    assert again.imported == 0
    assert again.duplicates == 2
    assert len(await _all(session, Revenue)) == 2


async def test_reported_errors_are_capped(session, organization_id) -> None:
    lines = ["Client ID,Class Date"] + [f"ghost-{n},2024-03-04" for n in range(25)]
    summary = await import_attendance_csv(
        session, organization_id=organization_id, content="\n".join(lines)
    )
    assert summary.skipped == 25
    assert len(summary.errors) == 20
    assert summary.errors[0] == "Row 1: Student not found"
    assert summary.as_dict()["skipped"] == 25


async def test_unparseable_uploads_raise_format_errors() -> None:
    with pytest.raises(CsvFormatError):
        read_rows(b"")
    with pytest.raises(CsvFormatError):
        read_rows("Client ID,Date\n,\n")
    with pytest.raises(CsvFormatError):
        read_rows(b"\xff\xfe\x00bad")


async def test_read_rows_strips_bom_and_whitespace() -> None:
    rows = read_rows("\ufeff Sale ID , Amount \n S-1 , 10 \n".encode())
    assert rows[0].raw == {"Sale ID": "S-1", "Amount": "10"}
    assert rows[0].first(["sale id"]) == "S-1"


async def test_value_parsers() -> None:
    assert parse_amount("$1,000") == Decimal("1000.00")
    assert parse_amount("-12.5") == Decimal("-12.50")
    assert parse_amount("n/a") is None
    assert parse_csv_date("03/04/2024") == date(2024, 3, 4)
    assert parse_csv_date("4-Mar-2024") == date(2024, 3, 4)
    assert parse_csv_date("whenever") is None
    evening = datetime(2024, 3, 4, 18, 30, tzinfo=UTC)
    assert parse_csv_datetime("03/04/2024 6:30 PM") == evening
    assert parse_csv_datetime("2024-03-04T09:00:00Z") == CLASS_START
