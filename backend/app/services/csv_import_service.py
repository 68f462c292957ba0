"""CSV uploads for attendance and revenue exports."""

from __future__ import annotations

import csv
import io
import logging
import re
import uuid
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models import AttendanceStatus, ClassSchedule, Student, StudioClass
from app.models.mixins import as_utc
from app.services import import_storage
from app.services.visit_matching import build_schedule_matcher

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 20

ATTENDANCE_CLIENT_ID = ("Client ID or Email", "Client ID", "ClientId", "ClientID", "Client")
ATTENDANCE_EMAIL = ("Email", "Client Email")
ATTENDANCE_CLASS_NAME = ("Class Name", "Class", "Service")
ATTENDANCE_DATETIME = ("Start Date/Time", "Class Date/Time", "Date/Time")
ATTENDANCE_DATE = ("Class Date", "Visit Date", "Date")
ATTENDANCE_TIME = ("Class Time", "Start Time", "Time")
ATTENDANCE_STATUS = ("Status", "Signed In")

REVENUE_SALE_ID = ("Sale ID", "SaleId", "ID")
REVENUE_ITEM_ID = ("Item ID", "ItemId")
REVENUE_AMOUNT = ("Item Total", "Amount", "Total", "Price")
REVENUE_DATE = ("Sale Date", "Date", "Transaction Date", "SaleDate")
REVENUE_CLIENT_ID = ("Client ID", "ClientId", "ClientID")
REVENUE_EMAIL = ("Email", "Client Email")
REVENUE_TYPE = ("Payment Method", "Type", "Category")
REVENUE_DESCRIPTION = ("Item name", "Description", "Item", "Product", "Service")

_NOSHOW_VALUES = {"no show", "no-show", "noshow", "false", "no", "n", "0", "absent"}
_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%d-%b-%Y", "%b %d, %Y")
_TIME_FORMATS = ("%I:%M %p", "%I:%M%p", "%H:%M", "%H:%M:%S", "%I:%M:%S %p")
_AMOUNT_CLEANUP = re.compile(r"[^0-9.\-]")


class CsvFormatError(ValueError):
    """Raised when an upload cannot be parsed as a usable CSV."""


@dataclass(slots=True)
class CsvImportSummary:
    imported: int = 0
    duplicates: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def add_error(self, row_number: int, message: str) -> None:
        self.skipped += 1
        if len(self.errors) < MAX_REPORTED_ERRORS:
            self.errors.append(f"Row {row_number}: {message}")

    def as_dict(self) -> dict[str, object]:
        return {
            "imported": self.imported,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


class _Row:
    """Case-insensitive, whitespace-trimmed view over a CSV row."""

    def __init__(self, raw: dict[str | None, str | None]) -> None:
        self.raw = {
            key.strip(): (value or "").strip()
            for key, value in raw.items()
            if isinstance(key, str)
        }
        self._lookup = {key.lower(): value for key, value in self.raw.items()}

    def first(self, aliases: Iterable[str]) -> str | None:
        for alias in aliases:
            value = self._lookup.get(alias.lower())
            if value:
                return value
        return None


def read_rows(content: bytes | str) -> list[_Row]:
    """Decode an upload (UTF-8, optional BOM) into header-keyed rows."""
    if isinstance(content, bytes):
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise CsvFormatError("CSV file must be UTF-8 encoded") from exc
    else:
        text = content.lstrip("\ufeff")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise CsvFormatError("CSV file has no header row")
    try:
        rows = [_Row(raw) for raw in reader]
    except csv.Error as exc:
        raise CsvFormatError(f"CSV parsing failed: {exc}") from exc
    rows = [row for row in rows if any(row.raw.values())]
    if not rows:
        raise CsvFormatError("CSV file is empty")
    return rows


def parse_csv_date(value: str) -> date | None:
    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    parsed = parse_csv_datetime(text)
    return parsed.date() if parsed else None


def parse_csv_datetime(value: str) -> datetime | None:
    """Parse ISO or US-style timestamps; naive values are treated as UTC."""
    text = value.strip()
    if not text:
        return None
    try:
        return as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    for date_fmt in _DATE_FORMATS:
        for time_fmt in ("",) + _TIME_FORMATS:
            fmt = f"{date_fmt} {time_fmt}".strip()
            try:
                return as_utc(datetime.strptime(text, fmt))
            except ValueError:
                continue
    return None


def _combine(day: date, time_text: str | None) -> datetime | None:
    if not time_text:
        return as_utc(datetime.combine(day, datetime.min.time()))
    for fmt in _TIME_FORMATS:
        try:
            clock = datetime.strptime(time_text.strip(), fmt).time()
        except ValueError:
            continue
        return as_utc(datetime.combine(day, clock))
    return None


def parse_amount(value: str) -> Decimal | None:
    cleaned = _AMOUNT_CLEANUP.sub("", value)
    if not cleaned:
        return None
    try:
        return Decimal(cleaned).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def _attendance_start(row: _Row) -> datetime | None:
    combined = row.first(ATTENDANCE_DATETIME)
    if combined:
        return parse_csv_datetime(combined)
    day_text = row.first(ATTENDANCE_DATE)
    if not day_text:
        return None
    day = parse_csv_date(day_text)
    if day is None:
        return None
    return _combine(day, row.first(ATTENDANCE_TIME))


def _attendance_status(row: _Row) -> AttendanceStatus:
    value = (row.first(ATTENDANCE_STATUS) or "").lower()
    if value in _NOSHOW_VALUES:
        return AttendanceStatus.NOSHOW
    return AttendanceStatus.ATTENDED


def _resolve_student(
    row: _Row,
    by_id: dict[str, Student],
    by_email: dict[str, Student],
    *,
    id_aliases: Sequence[str],
    email_aliases: Sequence[str],
) -> Student | None:
    client_ref = row.first(id_aliases)
    if client_ref:
        student = by_id.get(client_ref)
        if student is not None:
            return student
        if "@" in client_ref:
            student = by_email.get(client_ref.lower())
            if student is not None:
                return student
    email = row.first(email_aliases)
    if email:
        return by_email.get(email.lower())
    return None


class _ScheduleIndex:
    """Resolve a CSV visit to a schedule by start time, then by class name and day."""

    def __init__(
        self,
        schedules: Sequence[ClassSchedule],
        class_names: dict[uuid.UUID, str],
        *,
        tolerance_seconds: int,
    ) -> None:
        self._matcher = build_schedule_matcher(
            schedules, tolerance_seconds=tolerance_seconds
        )
        self._by_name_and_day: dict[tuple[str, date], list[ClassSchedule]] = defaultdict(list)
        for schedule in schedules:
            name = class_names.get(schedule.class_id)
            if name:
                key = (name.strip().lower(), as_utc(schedule.start_time).date())
                self._by_name_and_day[key].append(schedule)

    def resolve(self, start: datetime, class_name: str | None) -> ClassSchedule | None:
        schedule = self._matcher.match(start)
        if schedule is not None or not class_name:
            return schedule
        candidates = self._by_name_and_day.get((class_name.strip().lower(), start.date()))
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda item: abs((as_utc(item.start_time) - start).total_seconds()),
        )


async def _load_schedule_index(
    session: AsyncSession, *, organization_id: uuid.UUID
) -> _ScheduleIndex:
    schedules = await import_storage.load_schedules(
        session, organization_id=organization_id
    )
    result = await session.execute(
        select(StudioClass.id, StudioClass.name).where(
            StudioClass.organization_id == organization_id
        )
    )
    class_names = {class_id: name for class_id, name in result.all()}
    return _ScheduleIndex(
        schedules,
        class_names,
        tolerance_seconds=get_settings().visit_match_tolerance_seconds,
    )


async def import_attendance_csv(
    session: AsyncSession, *, organization_id: uuid.UUID, content: bytes | str
) -> CsvImportSummary:
    """Store visits from an attendance export.

    Rows go through the same dedup helper as the API importer, so a visit
    already imported from the API is counted as a duplicate.
    """
    rows = read_rows(content)
    by_id = await import_storage.load_students_by_mindbody_id(
        session, organization_id=organization_id
    )
    by_email = await import_storage.load_students_by_email(
        session, organization_id=organization_id
    )
    index = await _load_schedule_index(session, organization_id=organization_id)
    summary = CsvImportSummary()

    for number, row in enumerate(rows, start=1):
        reason: str | None = None
        student = _resolve_student(
            row,
            by_id,
            by_email,
            id_aliases=ATTENDANCE_CLIENT_ID,
            email_aliases=ATTENDANCE_EMAIL,
        )
        start = _attendance_start(row)
        schedule = None
        if student is None:
            reason = "Student not found"
        elif start is None:
            reason = "Missing or invalid class date/time"
        else:
            schedule = index.resolve(start, row.first(ATTENDANCE_CLASS_NAME))
            if schedule is None:
                reason = "No matching class schedule"

        if student is None or start is None or schedule is None:
            reason = reason or "Invalid row"
            summary.add_error(number, reason)
            await import_storage.record_skipped(
                session,
                organization_id=organization_id,
                data_type="attendance_csv",
                mindbody_id=row.first(ATTENDANCE_CLIENT_ID),
                reason=reason,
                raw_data=row.raw,
            )
            continue

        _, created = await import_storage.create_attendance(
            session,
            organization_id=organization_id,
            student_id=student.id,
            schedule_id=schedule.id,
            attended_at=start,
            status=_attendance_status(row),
        )
        if created:
            summary.imported += 1
        else:
            summary.duplicates += 1

    await session.commit()
    logger.info(
        "Attendance CSV for org %s: %s imported, %s duplicates, %s skipped",
        organization_id,
        summary.imported,
        summary.duplicates,
        summary.skipped,
    )
    return summary


async def import_revenue_csv(
    session: AsyncSession, *, organization_id: uuid.UUID, content: bytes | str
) -> CsvImportSummary:
    """Upsert revenue rows from a sales export keyed by sale and item id."""
    rows = read_rows(content)
    by_id = await import_storage.load_students_by_mindbody_id(
        session, organization_id=organization_id
    )
    by_email = await import_storage.load_students_by_email(
        session, organization_id=organization_id
    )
    summary = CsvImportSummary()

    for number, row in enumerate(rows, start=1):
        amount_text = row.first(REVENUE_AMOUNT)
        date_text = row.first(REVENUE_DATE)
        amount = parse_amount(amount_text) if amount_text else None
        transaction_date = parse_csv_datetime(date_text) if date_text else None

        reason: str | None = None
        if not amount_text:
            reason = "Missing amount"
        elif amount is None:
            reason = f'Invalid amount "{amount_text}"'
        elif not date_text:
            reason = "Missing date"
        elif transaction_date is None:
            reason = f'Invalid date "{date_text}"'
        if amount is None or transaction_date is None:
            reason = reason or "Invalid row"
            summary.add_error(number, reason)
            await import_storage.record_skipped(
                session,
                organization_id=organization_id,
                data_type="revenue_csv",
                mindbody_id=row.first(REVENUE_SALE_ID),
                reason=reason,
                raw_data=row.raw,
            )
            continue

        student = _resolve_student(
            row,
            by_id,
            by_email,
            id_aliases=REVENUE_CLIENT_ID,
            email_aliases=REVENUE_EMAIL,
        )
        _, created = await import_storage.upsert_revenue(
            session,
            organization_id=organization_id,
            student_id=student.id if student else None,
            mindbody_sale_id=row.first(REVENUE_SALE_ID),
            mindbody_item_id=row.first(REVENUE_ITEM_ID),
            amount=amount,
            type=row.first(REVENUE_TYPE) or "Sale",
            description=row.first(REVENUE_DESCRIPTION) or "",
            transaction_date=transaction_date,
        )
        if created:
            summary.imported += 1
        else:
            summary.duplicates += 1

        if number % 1000 == 0:
            logger.info("Revenue CSV for org %s: %s/%s rows", organization_id, number, len(rows))

    await session.commit()
    logger.info(
        "Revenue CSV for org %s: %s imported, %s updated, %s skipped",
        organization_id,
        summary.imported,
        summary.duplicates,
        summary.skipped,
    )
    return summary


__all__ = [
    "CsvFormatError",
    "CsvImportSummary",
    "MAX_REPORTED_ERRORS",
    "import_attendance_csv",
    "import_revenue_csv",
    "parse_amount",
    "parse_csv_datetime",
    "read_rows",
]
