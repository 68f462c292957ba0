"""Import job lifecycle API tests."""

from __future__ import annotations

import asyncio
import uuid

import pytest

from app.services.import_worker import ImportPhase, import_worker
from app.services.mindbody_import_service import BatchResult

pytestmark = pytest.mark.asyncio

CLIENTS_ONLY = {"data_types": {"clients": True}}


def _blocking_phase(release: asyncio.Event, started: asyncio.Event) -> ImportPhase:
    async def _runner(session, client, context, *, offset=0) -> BatchResult:
        started.set()
        await release.wait()
        return BatchResult(
            imported=10, next_cursor=offset + 10, completed=offset + 10 >= 20, total=20
        )

    return ImportPhase("clients", "Students", _runner)


async def test_start_import_runs_to_completion(
    app_context, fake_mindbody, mindbody_worker
) -> None:
    client = app_context["client"]
    fake_mindbody.set(
        "/client/clients",
        [
            {"Id": "1", "FirstName": "Ada", "LastName": "Lovelace"},
            {"Id": "2", "FirstName": "Grace"},
        ],
    )

    response = await client.post(
        "/api/v1/imports",
        json={**CLIENTS_ONLY, "start_date": "2024-01-01T00:00:00Z"},
        headers=app_context["headers"],
    )
    assert response.status_code == 201, response.text
    payload = response.json()
    assert payload["status"] == "pending"
    assert payload["data_types"] == ["clients"]
    job_id = payload["id"]

    await import_worker.wait_idle()

    status_response = await client.get(
        f"/api/v1/imports/{job_id}", headers=app_context["headers"]
    )
    assert status_response.status_code == 200
    job = status_response.json()
    assert job["status"] == "completed"
    assert job["progress"]["clients"]["imported"] == 1
    assert job["progress"]["clients"]["skipped"] == 1
    assert job["progress"]["clients"]["completed"] is True

    skipped = await client.get(
        "/api/v1/imports/skipped",
        params={"data_type": "client", "job_id": job_id},
        headers=app_context["headers"],
    )
    assert skipped.status_code == 200
    records = skipped.json()
    assert len(records) == 1
    assert records[0]["mindbody_id"] == "2"
    assert records[0]["raw_data"]["FirstName"] == "Grace"

    history = await client.get("/api/v1/imports", headers=app_context["headers"])
    assert [item["id"] for item in history.json()] == [job_id]

    active = await client.get("/api/v1/imports/active", headers=app_context["headers"])
    assert active.status_code == 200
    assert active.json() is None


async def test_start_import_requires_a_data_type(app_context) -> None:
    response = await app_context["client"].post(
        "/api/v1/imports",
        json={"data_types": {}},
        headers=app_context["headers"],
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "At least one data type must be selected"


async def test_inverted_range_is_rejected(app_context) -> None:
    response = await app_context["client"].post(
        "/api/v1/imports",
        json={
            **CLIENTS_ONLY,
            "start_date": "2024-06-01T00:00:00Z",
            "end_date": "2024-01-01T00:00:00Z",
        },
        headers=app_context["headers"],
    )
    assert response.status_code == 400


async def test_pause_resume_and_conflicts(
    app_context, mindbody_worker, stub_phases
) -> None:
    client = app_context["client"]
    headers = app_context["staff_headers"]
    release = asyncio.Event()
    started = asyncio.Event()
    stub_phases(_blocking_phase(release, started))

    created = await client.post("/api/v1/imports", json=CLIENTS_ONLY, headers=headers)
    job_id = created.json()["id"]
    await asyncio.wait_for(started.wait(), timeout=5)

    conflict = await client.post("/api/v1/imports", json=CLIENTS_ONLY, headers=headers)
    assert conflict.status_code == 409
    assert conflict.json()["detail"] == {
        "message": "An import is already in progress",
        "job_id": job_id,
    }

    active = await client.get("/api/v1/imports/active", headers=headers)
    assert active.json()["status"] == "running"

    paused = await client.post(f"/api/v1/imports/{job_id}/pause", headers=headers)
    assert paused.status_code == 200
    assert paused.json()["status"] == "paused"
    assert paused.json()["paused_at"] is not None

    release.set()
    await import_worker.wait_idle()
    after_pause = await client.get(f"/api/v1/imports/{job_id}", headers=headers)
    assert after_pause.json()["status"] == "paused"
    assert after_pause.json()["progress"]["clients"]["current"] == 10

    again = await client.post(f"/api/v1/imports/{job_id}/pause", headers=headers)
    assert again.status_code == 400

    resumed = await client.post(f"/api/v1/imports/{job_id}/resume", headers=headers)
    assert resumed.status_code == 200
    assert resumed.json()["status"] == "pending"
    await import_worker.wait_idle()

    finished = await client.get(f"/api/v1/imports/{job_id}", headers=headers)
    assert finished.json()["status"] == "completed"
    assert finished.json()["progress"]["clients"]["imported"] == 20


async def test_force_cancel(app_context, mindbody_worker, stub_phases) -> None:
    client = app_context["client"]
    headers = app_context["headers"]

    missing = await client.post("/api/v1/imports/force-cancel", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "No active import found"

    release = asyncio.Event()
    started = asyncio.Event()
    stub_phases(_blocking_phase(release, started))
    created = await client.post("/api/v1/imports", json=CLIENTS_ONLY, headers=headers)
    await asyncio.wait_for(started.wait(), timeout=5)

    cancelled = await client.post("/api/v1/imports/force-cancel", headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["id"] == created.json()["id"]
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["error"] == "Force cancelled by user"

    release.set()
    await import_worker.wait_idle()
    final = await client.get(
        f"/api/v1/imports/{created.json()['id']}", headers=headers
    )
    assert final.json()["status"] == "cancelled"


async def test_unknown_job_returns_404(app_context) -> None:
    client = app_context["client"]
    headers = app_context["headers"]
    job_id = uuid.uuid4()
    missing = await client.get(f"/api/v1/imports/{job_id}", headers=headers)
    assert missing.status_code == 404
    assert (
        await client.post(f"/api/v1/imports/{job_id}/resume", headers=headers)
    ).status_code == 404
