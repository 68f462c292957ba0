"""Resumable per-entity batch imports from the scheduling platform.

Clients and classes are fetched one page per call and resume from a page
offset. Visits and sales iterate over the organization's imported students
and resume from a student index. Every call writes through the idempotent
storage helpers and returns a :class:`BatchResult` whose ``next_cursor`` is
the cursor to resume from. Callers loop until ``completed`` is true.

Writes are flushed but never committed here. The caller commits them
together with the job's progress, either after the batch or from the
``on_progress`` callback, which student-indexed phases invoke after each
student.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.integrations.mindbody_client import MindbodyClient, MindbodyClientError
from app.models import AttendanceStatus, ClassSchedule, Student, StudioClass
from app.models.mixins import as_utc
from app.services import import_storage
from app.services.visit_matching import ScheduleMatcher, build_schedule_matcher

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]

# Data problems in a single external record; anything else aborts the batch.
_RECORD_ERRORS = (KeyError, TypeError, ValueError, AttributeError, ArithmeticError)

SALES_SOURCE_SALES = "sales"
SALES_SOURCE_TRANSACTIONS = "transactions"

_TRANSACTION_DATE_FIELDS = (
    "SaleDateTime",
    "CreatedDateTime",
    "TransactionDate",
    "CompletedDate",
    "SettlementDate",
    "SettlementDateTime",
    "TransactionTime",
    "AuthTime",
)


@dataclass(slots=True)
class BatchResult:
    """Outcome of one batch: counters plus the resumption cursor."""

    imported: int
    next_cursor: int
    completed: bool
    updated: int = 0
    skipped: int = 0
    total: int | None = None


@dataclass
class ImportContext:
    """Per-run settings and caches shared by consecutive batches of a job."""

    organization_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    job_id: uuid.UUID | None = None
    page_size: int = 200
    student_batch_size: int = 25
    batch_delay_ms: int = 500
    match_tolerance_seconds: int = 0
    on_progress: ProgressCallback | None = None
    schedule_matcher: ScheduleMatcher | None = field(default=None, repr=False)
    sales_source: str | None = None


def format_datetime(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_date(value: datetime) -> str:
    return as_utc(value).date().isoformat()


def parse_datetime(value: Any) -> datetime | None:
    """Parse the provider's timestamps; nested ``{"DateTime": ...}`` is accepted."""
    if isinstance(value, dict):
        value = value.get("DateTime")
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return as_utc(parsed)


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


async def _finish_batch(
    context: ImportContext,
    *,
    next_cursor: int,
    total: int,
    completed: bool,
    report: bool = True,
) -> None:
    if report and context.on_progress is not None:
        await context.on_progress(next_cursor, total)
    if not completed and context.batch_delay_ms > 0:
        await asyncio.sleep(context.batch_delay_ms / 1000)


async def _report_student(context: ImportContext, index: int, total: int) -> None:
    if context.on_progress is not None:
        await context.on_progress(index, total)


async def _skip(
    session: AsyncSession,
    context: ImportContext,
    *,
    data_type: str,
    reason: str,
    record: dict[str, Any],
    mindbody_id: Any | None = None,
) -> None:
    logger.warning("Skipping %s %s: %s", data_type, mindbody_id, reason)
    await import_storage.record_skipped(
        session,
        organization_id=context.organization_id,
        import_job_id=context.job_id,
        data_type=data_type,
        mindbody_id=mindbody_id,
        reason=reason,
        raw_data=record,
    )


async def import_clients_batch(
    session: AsyncSession,
    client: MindbodyClient,
    context: ImportContext,
    *,
    offset: int = 0,
) -> BatchResult:
    """Import one page of clients modified since the job's start date."""
    page = await client.fetch_page(
        "/client/clients",
        "Clients",
        offset=offset,
        limit=context.page_size,
        params={"LastModifiedDate": format_datetime(context.start_date)},
    )
    if not page.results:
        return BatchResult(
            imported=0, next_cursor=offset, completed=True, total=page.total_results
        )

    students = await import_storage.load_students_by_mindbody_id(
        session, organization_id=context.organization_id
    )
    imported = updated = skipped = 0
    for record in page.results:
        client_id = _as_str(record.get("Id"))
        try:
            first_name = record.get("FirstName")
            last_name = record.get("LastName")
            if not client_id or not first_name or not last_name:
                await _skip(
                    session,
                    context,
                    data_type="client",
                    mindbody_id=client_id,
                    reason=(
                        f"Missing name (FirstName: {first_name or 'null'}, "
                        f"LastName: {last_name or 'null'})"
                    ),
                    record=record,
                )
                skipped += 1
                continue

            values = {
                "first_name": first_name,
                "last_name": last_name,
                "email": record.get("Email") or None,
                "phone": record.get("MobilePhone") or None,
                "status": "active" if record.get("Status") == "Active" else "inactive",
                "join_date": parse_datetime(record.get("CreationDate")),
            }
            student = students.get(client_id)
            if student is None:
                student = Student(
                    organization_id=context.organization_id,
                    mindbody_client_id=client_id,
                    **values,
                )
                session.add(student)
                students[client_id] = student
                imported += 1
            else:
                for key, value in values.items():
                    setattr(student, key, value)
                updated += 1
        except _RECORD_ERRORS:
            logger.exception("Failed to import client %s", client_id)
            skipped += 1
    await session.flush()

    next_offset = offset + len(page.results)
    completed = next_offset >= page.total_results
    await _finish_batch(
        context, next_cursor=next_offset, total=page.total_results, completed=completed
    )
    return BatchResult(
        imported=imported,
        updated=updated,
        skipped=skipped,
        next_cursor=next_offset,
        completed=completed,
        total=page.total_results,
    )


async def import_classes_batch(
    session: AsyncSession,
    client: MindbodyClient,
    context: ImportContext,
    *,
    offset: int = 0,
) -> BatchResult:
    """Import one page of class occurrences inside the job's date range."""
    page = await client.fetch_page(
        "/class/classes",
        "Classes",
        offset=offset,
        limit=context.page_size,
        params={
            "StartDateTime": format_datetime(context.start_date),
            "EndDateTime": format_datetime(context.end_date),
        },
    )
    if not page.results:
        return BatchResult(
            imported=0, next_cursor=offset, completed=True, total=page.total_results
        )

    class_rows = await session.execute(
        select(StudioClass).where(
            StudioClass.organization_id == context.organization_id
        )
    )
    classes = {
        row.mindbody_class_id: row
        for row in class_rows.scalars()
        if row.mindbody_class_id
    }
    schedule_rows = await import_storage.load_schedules(
        session, organization_id=context.organization_id
    )
    schedules = {(row.class_id, as_utc(row.start_time)): row for row in schedule_rows}

    imported = updated = skipped = 0
    for record in page.results:
        schedule_id = _as_str(record.get("ClassScheduleId"))
        try:
            description = record.get("ClassDescription") or {}
            class_id = _as_str(description.get("Id"))
            start_time = parse_datetime(record.get("StartDateTime"))
            end_time = parse_datetime(record.get("EndDateTime"))
            if not class_id or not schedule_id or start_time is None or end_time is None:
                await _skip(
                    session,
                    context,
                    data_type="class",
                    mindbody_id=schedule_id or record.get("Id"),
                    reason="Missing class description, schedule id or start/end time",
                    record=record,
                )
                skipped += 1
                continue

            studio_class = classes.get(class_id)
            if studio_class is None:
                studio_class = StudioClass(
                    organization_id=context.organization_id,
                    mindbody_class_id=class_id,
                    name=description.get("Name") or "Unknown Class",
                    description=description.get("Description") or None,
                    instructor_name=(record.get("Staff") or {}).get("Name") or None,
                    capacity=record.get("MaxCapacity") or None,
                )
                session.add(studio_class)
                await session.flush()
                classes[class_id] = studio_class

            location = (record.get("Location") or {}).get("Name") or None
            key = (studio_class.id, start_time)
            schedule = schedules.get(key)
            if schedule is None:
                schedule = ClassSchedule(
                    organization_id=context.organization_id,
                    class_id=studio_class.id,
                    mindbody_schedule_id=schedule_id,
                    start_time=start_time,
                    end_time=end_time,
                    location=location,
                )
                session.add(schedule)
                schedules[key] = schedule
                imported += 1
            else:
                schedule.mindbody_schedule_id = schedule_id
                schedule.end_time = end_time
                schedule.location = location
                updated += 1
        except _RECORD_ERRORS:
            logger.exception("Failed to import class %s", schedule_id)
            skipped += 1
    await session.flush()
    if imported:
        context.schedule_matcher = None

    next_offset = offset + len(page.results)
    completed = next_offset >= page.total_results
    await _finish_batch(
        context, next_cursor=next_offset, total=page.total_results, completed=completed
    )
    return BatchResult(
        imported=imported,
        updated=updated,
        skipped=skipped,
        next_cursor=next_offset,
        completed=completed,
        total=page.total_results,
    )


async def get_schedule_matcher(
    session: AsyncSession, context: ImportContext
) -> ScheduleMatcher:
    """Load the organization's schedules once per run and cache the matcher."""
    if context.schedule_matcher is None:
        schedules = await import_storage.load_schedules(
            session, organization_id=context.organization_id
        )
        context.schedule_matcher = build_schedule_matcher(
            schedules, tolerance_seconds=context.match_tolerance_seconds
        )
        logger.info(
            "Loaded %s class schedules for visit matching (org %s)",
            len(schedules),
            context.organization_id,
        )
    return context.schedule_matcher


async def _student_window(
    session: AsyncSession, context: ImportContext, start_index: int
) -> tuple[list[Student], int]:
    """Return the students of one sub-batch and the organization's total."""
    students = await import_storage.list_students_for_import(
        session, organization_id=context.organization_id
    )
    window = students[start_index : start_index + context.student_batch_size]
    return window, len(students)


async def import_visits_batch(
    session: AsyncSession,
    client: MindbodyClient,
    context: ImportContext,
    *,
    offset: int = 0,
) -> BatchResult:
    """Import class visits for one sub-batch of students.

    ``offset`` is a student index into the organization's students ordered by
    external client id. Every student in the window counts as processed, even
    when none of their visits match a local class schedule.
    """
    matcher = await get_schedule_matcher(session, context)
    students, total = await _student_window(session, context, offset)

    imported = skipped = skipped_no_schedule = 0
    index = offset
    for student in students:
        visits = await client.fetch_all_pages(
            "/client/clientvisits",
            "Visits",
            page_size=context.page_size,
            params={
                "ClientId": student.mindbody_client_id,
                "StartDate": format_date(context.start_date),
                "EndDate": format_date(context.end_date),
            },
        )
        for record in visits:
            visit_id = _as_str(record.get("Id"))
            try:
                start_time = parse_datetime(record.get("StartDateTime"))
                if start_time is None:
                    await _skip(
                        session,
                        context,
                        data_type="visit",
                        mindbody_id=visit_id,
                        reason="Missing StartDateTime",
                        record=record,
                    )
                    skipped += 1
                    continue

                schedule = matcher.match(start_time)
                if schedule is None:
                    await _skip(
                        session,
                        context,
                        data_type="visit",
                        mindbody_id=visit_id,
                        reason=f"No class schedule starting at {start_time.isoformat()}",
                        record=record,
                    )
                    skipped += 1
                    skipped_no_schedule += 1
                    continue

                _, created = await import_storage.create_attendance(
                    session,
                    organization_id=context.organization_id,
                    student_id=student.id,
                    schedule_id=schedule.id,
                    attended_at=start_time,
                    status=(
                        AttendanceStatus.ATTENDED
                        if record.get("SignedIn")
                        else AttendanceStatus.NOSHOW
                    ),
                )
                if created:
                    imported += 1
            except _RECORD_ERRORS:
                logger.exception("Failed to import visit %s", visit_id)
                skipped += 1
        await session.flush()
        index += 1
        await _report_student(context, index, total)

    completed = index >= total
    logger.info(
        "Visits batch for students %s-%s of %s: imported %s, no schedule %s",
        offset,
        index,
        total,
        imported,
        skipped_no_schedule,
    )
    await _finish_batch(
        context, next_cursor=index, total=total, completed=completed, report=False
    )
    return BatchResult(
        imported=imported,
        skipped=skipped,
        next_cursor=index,
        completed=completed,
        total=total,
    )


def _purchased_items(sale: dict[str, Any]) -> list[dict[str, Any]]:
    items = sale.get("PurchasedItems")
    if isinstance(items, list):
        return items
    if items:
        return [items]
    return []


def _item_amount(item: dict[str, Any]) -> Decimal | None:
    amount = _to_decimal(item.get("Amount"))
    if amount is None:
        unit_price = _to_decimal(item.get("UnitPrice"))
        quantity = _to_decimal(item.get("Quantity"))
        if unit_price and quantity:
            amount = unit_price * quantity
    if amount is None or amount == 0:
        return None
    return amount


def _item_description(item: dict[str, Any]) -> str:
    description = item.get("Name") or item.get("Description") or "Unknown item"
    quantity = item.get("Quantity")
    if isinstance(quantity, (int, float)) and quantity > 1:
        description = f"{description} (Qty: {quantity:g})"
    return description


def _item_type(item: dict[str, Any]) -> str:
    if item.get("IsService"):
        return "Service"
    return item.get("Type") or "Product"


async def _store_sale_items(
    session: AsyncSession,
    context: ImportContext,
    *,
    sale_id: str | None,
    items: list[dict[str, Any]],
    student_id: uuid.UUID | None,
    transaction_date: datetime,
) -> tuple[int, int]:
    imported = updated = 0
    for item in items:
        amount = _item_amount(item)
        if amount is None:
            continue
        _, created = await import_storage.upsert_revenue(
            session,
            organization_id=context.organization_id,
            student_id=student_id,
            mindbody_sale_id=sale_id,
            mindbody_item_id=_as_str(item.get("Id")) or _as_str(item.get("SaleDetailId")),
            amount=amount,
            type=_item_type(item),
            description=_item_description(item),
            transaction_date=transaction_date,
        )
        if created:
            imported += 1
        else:
            updated += 1
    return imported, updated


async def _resolve_sales_source(client: MindbodyClient, context: ImportContext) -> str:
    if context.sales_source is None:
        probe = await client.fetch_page(
            "/sale/sales",
            "Sales",
            offset=0,
            limit=10,
            params={
                "StartDate": format_date(context.start_date),
                "EndDate": format_date(context.end_date),
            },
        )
        if probe.total_results == 0:
            logger.info("/sale/sales returned 0 results, falling back to /sale/transactions")
            context.sales_source = SALES_SOURCE_TRANSACTIONS
        else:
            context.sales_source = SALES_SOURCE_SALES
    return context.sales_source


@dataclass(slots=True)
class _RevenueCounts:
    imported: int = 0
    updated: int = 0
    skipped: int = 0


async def import_sales_batch(
    session: AsyncSession,
    client: MindbodyClient,
    context: ImportContext,
    *,
    offset: int = 0,
) -> BatchResult:
    """Import sales for one sub-batch of students, from transactions when sales are empty.

    Like visits, ``offset`` is a student index rather than a page offset.
    """
    source = await _resolve_sales_source(client, context)
    students, total = await _student_window(session, context, offset)

    counts = _RevenueCounts()
    index = offset
    for student in students:
        if source == SALES_SOURCE_TRANSACTIONS:
            await _import_student_transactions(session, client, context, student, counts)
        else:
            await _import_student_sales(session, client, context, student, counts)
        await session.flush()
        index += 1
        await _report_student(context, index, total)

    completed = index >= total
    await _finish_batch(
        context, next_cursor=index, total=total, completed=completed, report=False
    )
    return BatchResult(
        imported=counts.imported,
        updated=counts.updated,
        skipped=counts.skipped,
        next_cursor=index,
        completed=completed,
        total=total,
    )


async def _import_student_sales(
    session: AsyncSession,
    client: MindbodyClient,
    context: ImportContext,
    student: Student,
    counts: _RevenueCounts,
) -> None:
    sales = await client.fetch_all_pages(
        "/sale/sales",
        "Sales",
        page_size=context.page_size,
        params={
            "ClientId": student.mindbody_client_id,
            "StartDate": format_date(context.start_date),
            "EndDate": format_date(context.end_date),
        },
    )
    window_start = as_utc(context.start_date)
    window_end = as_utc(context.end_date) + timedelta(days=1)

    filtered = 0
    for sale in sales:
        sale_id = _as_str(sale.get("Id"))
        try:
            sale_date = parse_datetime(sale.get("SaleDateTime"))
            if sale_date is None:
                await _skip(
                    session,
                    context,
                    data_type="sale",
                    mindbody_id=sale_id,
                    reason="Missing SaleDateTime",
                    record=sale,
                )
                counts.skipped += 1
                continue
            if sale_date < window_start or sale_date >= window_end:
                filtered += 1
                continue
            created, changed = await _store_sale_items(
                session,
                context,
                sale_id=sale_id,
                items=_purchased_items(sale),
                student_id=student.id,
                transaction_date=sale_date,
            )
            counts.imported += created
            counts.updated += changed
        except _RECORD_ERRORS:
            logger.exception("Failed to process sale %s", sale_id)
            counts.skipped += 1
    if filtered:
        logger.info(
            "Filtered out %s sales outside the requested range for client %s",
            filtered,
            student.mindbody_client_id,
        )


def _transaction_date(transaction: dict[str, Any]) -> datetime | None:
    for field_name in _TRANSACTION_DATE_FIELDS:
        value = transaction.get(field_name)
        if value:
            return parse_datetime(value)
    return None


def _transaction_description(transaction: dict[str, Any]) -> tuple[str, str]:
    method = transaction.get("Method") or transaction.get("CardType") or "Payment"
    last_four = transaction.get("CCLastFour") or transaction.get("LastFour") or ""
    status = transaction.get("Status") or "Completed"
    if last_four:
        return method, f"{method} ending in {last_four} ({status})"
    return method, f"{method} ({status})"


async def _import_student_transactions(
    session: AsyncSession,
    client: MindbodyClient,
    context: ImportContext,
    student: Student,
    counts: _RevenueCounts,
) -> None:
    transactions = await client.fetch_all_pages(
        "/sale/transactions",
        "Transactions",
        page_size=context.page_size,
        params={
            "ClientId": student.mindbody_client_id,
            "StartSaleDateTime": format_datetime(context.start_date),
            "EndSaleDateTime": format_datetime(context.end_date),
        },
    )

    for transaction in transactions:
        transaction_id = _as_str(transaction.get("TransactionId")) or _as_str(
            transaction.get("Id")
        )
        try:
            transaction_date = _transaction_date(transaction)
            if transaction_date is None:
                await _skip(
                    session,
                    context,
                    data_type="sale",
                    mindbody_id=transaction_id,
                    reason="Transaction has no valid date field",
                    record=transaction,
                )
                counts.skipped += 1
                continue

            sale_id = _as_str(transaction.get("SaleId"))
            items: list[dict[str, Any]] = []
            if sale_id:
                try:
                    detail = await client.get(f"/sale/sales/{sale_id}")
                    items = _purchased_items(detail.get("Sale") or {})
                except MindbodyClientError:
                    logger.info(
                        "Could not fetch sale details for %s, using transaction data",
                        sale_id,
                    )
            if items:
                created, changed = await _store_sale_items(
                    session,
                    context,
                    sale_id=sale_id,
                    items=items,
                    student_id=student.id,
                    transaction_date=transaction_date,
                )
            else:
                amount = _to_decimal(transaction.get("Amount"))
                if amount is None:
                    await _skip(
                        session,
                        context,
                        data_type="sale",
                        mindbody_id=transaction_id,
                        reason="Transaction has no amount",
                        record=transaction,
                    )
                    counts.skipped += 1
                    continue
                method, description = _transaction_description(transaction)
                _, was_created = await import_storage.upsert_revenue(
                    session,
                    organization_id=context.organization_id,
                    student_id=student.id,
                    mindbody_sale_id=sale_id or transaction_id,
                    mindbody_item_id=None,
                    amount=amount,
                    type=method,
                    description=description,
                    transaction_date=transaction_date,
                )
                created, changed = (1, 0) if was_created else (0, 1)
            counts.imported += created
            counts.updated += changed
        except _RECORD_ERRORS:
            logger.exception("Failed to import transaction %s", transaction_id)
            counts.skipped += 1


__all__ = [
    "BatchResult",
    "ImportContext",
    "format_date",
    "format_datetime",
    "import_classes_batch",
    "import_clients_batch",
    "import_sales_batch",
    "import_visits_batch",
    "parse_datetime",
]
