"""Shared fakes and seed helpers for the test suite."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.integrations.mindbody_client import MindbodyClient
from app.models import ClassSchedule, Student, StudioClass

SITE_ID = "-99"


class FakeMindbody:
    """In-memory stand-in for the provider API, served through ``httpx.MockTransport``.

    Datasets are paged with ``Limit``/``Offset`` and wrapped in a
    ``PaginationResponse`` envelope. A ``ClientId`` query parameter narrows a
    dataset to the records carrying that client id. Individual paths can be
    made to fail with queued status codes, drop the envelope, or report a
    different total.
    """

    def __init__(self) -> None:
        self.datasets: dict[str, tuple[str, list[dict[str, Any]]]] = {
            "/client/clients": ("Clients", []),
            "/class/classes": ("Classes", []),
            "/client/clientvisits": ("Visits", []),
            "/sale/sales": ("Sales", []),
            "/sale/transactions": ("Transactions", []),
        }
        self.sale_details: dict[str, dict[str, Any]] = {}
        self.failures: dict[str, list[int]] = {}
        self.without_pagination: set[str] = set()
        self.total_overrides: dict[str, int] = {}
        self.rejected_tokens: set[str] = set()
        self.requests: list[httpx.Request] = []
        self.tokens_issued = 0

    def set(self, path: str, records: list[dict[str, Any]]) -> None:
        key, _ = self.datasets[path]
        self.datasets[path] = (key, records)

    def fail(self, path: str, *statuses: int) -> None:
        self.failures.setdefault(path, []).extend(statuses)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/usertoken/issue":
            self.tokens_issued += 1
            return httpx.Response(200, json={"AccessToken": f"token-{self.tokens_issued}"})

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token in self.rejected_tokens:
            return httpx.Response(401, json={"Error": {"Message": "Invalid token"}})
        queued = self.failures.get(path)
        if queued:
            return httpx.Response(queued.pop(0), json={"Error": {"Message": "boom"}})

        if path.startswith("/sale/sales/"):
            sale_id = path.rsplit("/", 1)[-1]
            sale = self.sale_details.get(sale_id)
            if sale is None:
                return httpx.Response(404, json={"Error": {"Message": "not found"}})
            return httpx.Response(200, json={"Sale": sale})

        if path not in self.datasets:
            return httpx.Response(404, json={"Error": {"Message": "unknown endpoint"}})
        key, records = self.datasets[path]
        client_id = request.url.params.get("ClientId")
        if client_id is not None:
            records = [r for r in records if str(r.get("ClientId")) == client_id]
        offset = int(request.url.params.get("Offset", 0))
        limit = int(request.url.params.get("Limit", 100))
        page = records[offset : offset + limit]
        body: dict[str, Any] = {key: page}
        if path not in self.without_pagination:
            body["PaginationResponse"] = {
                "RequestedLimit": limit,
                "RequestedOffset": offset,
                "PageSize": len(page),
                "TotalResults": self.total_overrides.get(path, len(records)),
            }
        return httpx.Response(200, json=body)


def build_fake_client(fake: FakeMindbody, **overrides: Any) -> MindbodyClient:
    options: dict[str, Any] = {
        "api_key": "test-api-key",
        "site_id": SITE_ID,
        "username": "_YHC",
        "client_secret": "test-client-secret",
        "base_url": "https://mindbody.test",
        "retry_backoff_seconds": 0,
        "transport": httpx.MockTransport(fake.handler),
    }
    options.update(overrides)
    return MindbodyClient(**options)



async def seed_student(
    session: AsyncSession,
    organization_id,
    *,
    client_id: str | None,
    first_name: str = "Ada",
    last_name: str = "Lovelace",
    email: str | None = None,
) -> Student:
    student = Student(
        organization_id=organization_id,
        mindbody_client_id=client_id,
        first_name=first_name,
        last_name=last_name,
        email=email,
    )
    session.add(student)
    await session.commit()
    return student


async def seed_schedule(
    session: AsyncSession,
    organization_id,
    *,
    start: datetime,
    name: str = "Vinyasa Flow",
    class_id: str = "class-1",
    minutes: int = 60,
) -> ClassSchedule:
    """Create (or reuse) a class and add one occurrence starting at ``start``."""
    result = await session.execute(
        select(StudioClass).where(
            StudioClass.organization_id == organization_id,
            StudioClass.mindbody_class_id == class_id,
        )
    )
    studio_class = result.scalar_one_or_none()
    if studio_class is None:
        studio_class = StudioClass(
            organization_id=organization_id, mindbody_class_id=class_id, name=name
        )
        session.add(studio_class)
        await session.flush()
    schedule = ClassSchedule(
        organization_id=organization_id,
        class_id=studio_class.id,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
    )
    session.add(schedule)
    await session.commit()
    return schedule
