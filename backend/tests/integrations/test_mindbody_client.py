"""Tests for the provider API client: paging, token refresh and retries."""

from __future__ import annotations

import httpx
import pytest

from app.integrations import mindbody_client
from app.integrations.mindbody_client import MindbodyAuthError, MindbodyClientError
from tests.support import FakeMindbody, build_fake_client

pytestmark = pytest.mark.asyncio


def _clients(count: int) -> list[dict[str, object]]:
    return [
        {"Id": str(100 + index), "FirstName": "Client", "LastName": str(index)}
        for index in range(count)
    ]


async def test_fetch_page_reports_has_more() -> None:
    fake = FakeMindbody()
    fake.set("/client/clients", _clients(5))
    async with build_fake_client(fake) as client:
        first = await client.fetch_page("/client/clients", "Clients", offset=0, limit=2)
        last = await client.fetch_page("/client/clients", "Clients", offset=4, limit=2)

    assert [item["Id"] for item in first.results] == ["100", "101"]
    assert first.total_results == 5
    assert first.has_more is True
    assert len(last.results) == 1
    assert last.has_more is False


async def test_fetch_page_empty_page_never_has_more() -> None:
    fake = FakeMindbody()
    fake.total_overrides["/client/clients"] = 50
    async with build_fake_client(fake) as client:
        page = await client.fetch_page("/client/clients", "Clients", offset=0, limit=10)
    assert page.results == []
    assert page.total_results == 50
    assert page.has_more is False


async def test_fetch_all_pages_walks_until_total() -> None:
    fake = FakeMindbody()
    fake.set("/client/clients", _clients(7))
    async with build_fake_client(fake) as client:
        records = await client.fetch_all_pages("/client/clients", "Clients", page_size=3)
        calls = client.api_call_count

    assert [record["Id"] for record in records] == [str(100 + i) for i in range(7)]
    assert calls == 3
    offsets = [
        request.url.params["Offset"]
        for request in fake.requests
        if request.url.path == "/client/clients"
    ]
    assert offsets == ["0", "3", "6"]


async def test_fetch_all_pages_stops_without_pagination_envelope() -> None:
    fake = FakeMindbody()
    fake.set("/client/clients", _clients(6))
    fake.without_pagination.add("/client/clients")
    async with build_fake_client(fake) as client:
        records = await client.fetch_all_pages("/client/clients", "Clients", page_size=2)
    assert len(records) == 2
    assert fake.paths().count("/client/clients") == 1


async def test_fetch_all_pages_stops_when_offset_passes_total() -> None:
    fake = FakeMindbody()
    fake.set("/client/clients", _clients(3))
    async with build_fake_client(fake) as client:
        records = await client.fetch_all_pages(
            "/client/clients", "Clients", page_size=2, start_offset=10
        )
    assert records == []
    assert fake.paths().count("/client/clients") == 1


async def test_fetch_all_pages_stops_on_empty_page_despite_total() -> None:
    fake = FakeMindbody()
    fake.set("/client/clients", _clients(2))
    fake.total_overrides["/client/clients"] = 10
    async with build_fake_client(fake) as client:
        records = await client.fetch_all_pages("/client/clients", "Clients", page_size=2)
    assert len(records) == 2
    assert fake.paths().count("/client/clients") == 2


async def test_unauthorized_response_refreshes_token_once() -> None:
    fake = FakeMindbody()
    fake.set("/client/clients", _clients(1))
    fake.rejected_tokens.add("token-1")
    async with build_fake_client(fake) as client:
        page = await client.fetch_page("/client/clients", "Clients", offset=0)

    assert len(page.results) == 1
    assert fake.tokens_issued == 2
    client_calls = [r for r in fake.requests if r.url.path == "/client/clients"]
    assert [r.headers["Authorization"] for r in client_calls] == [
        "Bearer token-1",
        "Bearer token-2",
    ]


async def test_second_unauthorized_response_raises_auth_error() -> None:
    fake = FakeMindbody()
    fake.rejected_tokens.update({"token-1", "token-2"})
    async with build_fake_client(fake) as client:
        with pytest.raises(MindbodyAuthError) as excinfo:
            await client.get("/client/clients")
    assert excinfo.value.status_code == 401
    assert fake.tokens_issued == 2


async def test_token_is_cached_between_calls() -> None:
    fake = FakeMindbody()
    async with build_fake_client(fake) as client:
        await client.get("/client/clients")
        await client.get("/class/classes")
    assert fake.tokens_issued == 1


async def test_server_errors_are_retried_with_exponential_backoff(monkeypatch) -> None:
    delays: list[float] = []

    async def _record_sleep(seconds: float) -> None:
        delays.append(seconds)

    monkeypatch.setattr(mindbody_client.asyncio, "sleep", _record_sleep)
    fake = FakeMindbody()
    fake.set("/client/clients", _clients(1))
    fake.fail("/client/clients", 503, 500)
    async with build_fake_client(fake, retry_backoff_seconds=1.0) as client:
        page = await client.fetch_page("/client/clients", "Clients", offset=0)

    assert len(page.results) == 1
    assert delays == [1.0, 2.0]


async def test_server_errors_fail_after_max_retries(monkeypatch) -> None:
    async def _no_sleep(seconds: float) -> None:
        return None

    monkeypatch.setattr(mindbody_client.asyncio, "sleep", _no_sleep)
    fake = FakeMindbody()
    fake.fail("/client/clients", 500, 500, 500, 500)
    async with build_fake_client(fake, max_retries=2) as client:
        with pytest.raises(MindbodyClientError) as excinfo:
            await client.get("/client/clients")
    assert excinfo.value.status_code == 500
    assert excinfo.value.endpoint == "/client/clients"
    assert fake.paths().count("/client/clients") == 3


async def test_client_errors_are_not_retried() -> None:
    fake = FakeMindbody()
    fake.fail("/client/clients", 429)
    async with build_fake_client(fake) as client:
        with pytest.raises(MindbodyClientError, match="429"):
            await client.get("/client/clients")
    assert fake.paths().count("/client/clients") == 1


async def test_missing_credentials_raise_auth_error() -> None:
    fake = FakeMindbody()
    async with build_fake_client(fake, client_secret=None) as client:
        with pytest.raises(MindbodyAuthError):
            await client.get("/client/clients")
    assert fake.requests == []


async def test_timeouts_surface_as_client_errors() -> None:
    def _slow(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/usertoken/issue":
            return httpx.Response(200, json={"AccessToken": "token"})
        raise httpx.ReadTimeout("timed out", request=request)

    client = mindbody_client.MindbodyClient(
        api_key="key",
        site_id="-99",
        username="_YHC",
        client_secret="secret",
        base_url="https://mindbody.test",
        transport=httpx.MockTransport(_slow),
    )
    async with client:
        with pytest.raises(MindbodyClientError, match="request timeout"):
            await client.get("/class/classvisits")
