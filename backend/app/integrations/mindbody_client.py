"""Async client for the scheduling platform's public REST API."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from app.core.settings import MindbodySettings, get_mindbody_settings

logger = logging.getLogger(__name__)

_RETRYABLE_STATUSES = frozenset({500, 503})


@dataclass(slots=True)
class PageResult:
    """One page of results plus the provider's pagination hints."""

    results: list[dict[str, Any]]
    total_results: int
    has_more: bool


class MindbodyClientError(RuntimeError):
    """Raised when an API call fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class MindbodyAuthError(MindbodyClientError):
    """Raised when a user token cannot be issued or is rejected twice."""


class MindbodyClient:
    """Wrapper around ``httpx.AsyncClient`` with token caching and retries.

    Every request carries the ``Api-Key``/``SiteId`` headers and a cached user
    token. A 401 clears the token and retries the request exactly once; 500
    and 503 responses are retried with exponential backoff.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        site_id: str,
        username: str,
        client_secret: str | None,
        base_url: str = "https://api.mindbodyonline.com/public/v6",
        timeout_seconds: float = 60.0,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
        token_ttl_minutes: int = 55,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._site_id = site_id
        self._username = username
        self._client_secret = client_secret
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._retry_backoff_seconds = retry_backoff_seconds
        self._token_ttl_seconds = token_ttl_minutes * 60
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._api_call_count = 0
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "MindbodyClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def api_call_count(self) -> int:
        return self._api_call_count

    @property
    def site_id(self) -> str:
        return self._site_id

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    def _base_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Api-Key": self._api_key or "",
            "SiteId": self._site_id,
        }

    async def get_user_token(self) -> str:
        """Return a cached user token, issuing a new one when expired."""
        now = time.monotonic()
        if self._token and now < self._token_expires_at:
            return self._token
        if not self._api_key or not self._client_secret:
            raise MindbodyAuthError(
                "MINDBODY_API_KEY and MINDBODY_CLIENT_SECRET required"
            )

        logger.info("Requesting user token for site %s", self._site_id)
        try:
            response = await self._http.post(
                "/usertoken/issue",
                headers=self._base_headers(),
                json={"Username": self._username, "Password": self._client_secret},
            )
        except httpx.HTTPError as exc:
            raise MindbodyAuthError(
                f"Failed to authenticate with Mindbody: {exc}"
            ) from exc
        if response.is_error:
            raise MindbodyAuthError(
                f"Failed to authenticate with Mindbody ({response.status_code})",
                status_code=response.status_code,
                endpoint="/usertoken/issue",
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise MindbodyAuthError("Mindbody auth returned invalid JSON") from exc
        token = payload.get("AccessToken") if isinstance(payload, dict) else None
        if not token:
            raise MindbodyAuthError("Mindbody auth response did not include a token")

        self._token = str(token)
        self._token_expires_at = now + self._token_ttl_seconds
        return self._token

    async def _send(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None,
        json: Any | None,
    ) -> httpx.Response:
        token = await self.get_user_token()
        headers = self._base_headers()
        headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._http.request(
                method, endpoint, params=params, json=json, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise MindbodyClientError(
                f"Mindbody API request timeout ({self._timeout_seconds:g}s): {endpoint}",
                endpoint=endpoint,
            ) from exc
        except httpx.HTTPError as exc:
            raise MindbodyClientError(
                f"Mindbody API request failed: {exc}", endpoint=endpoint
            ) from exc
        self._api_call_count += 1
        return response

    @staticmethod
    def _decode(response: httpx.Response, endpoint: str) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise MindbodyClientError(
                f"Mindbody API returned invalid JSON: {endpoint}",
                status_code=response.status_code,
                endpoint=endpoint,
            ) from exc
        if not isinstance(payload, dict):
            raise MindbodyClientError(
                f"Unexpected Mindbody payload for {endpoint}",
                status_code=response.status_code,
                endpoint=endpoint,
            )
        return payload

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,
    ) -> dict[str, Any]:
        """Perform an authenticated call and return the decoded JSON body."""
        attempt = 0
        while True:
            response = await self._send(method, endpoint, params=params, json=json)
            if response.status_code == 401:
                logger.warning(
                    "Mindbody rejected the user token for %s; refreshing", endpoint
                )
                self.invalidate_token()
                response = await self._send(method, endpoint, params=params, json=json)
                if response.is_error:
                    error_cls = (
                        MindbodyAuthError
                        if response.status_code == 401
                        else MindbodyClientError
                    )
                    raise error_cls(
                        f"Mindbody API error after token refresh: "
                        f"{response.status_code} {response.reason_phrase}",
                        status_code=response.status_code,
                        endpoint=endpoint,
                    )
                return self._decode(response, endpoint)

            if response.status_code in _RETRYABLE_STATUSES and attempt < self._max_retries:
                backoff = self._retry_backoff_seconds * (2**attempt)
                attempt += 1
                logger.warning(
                    "Mindbody API %s for %s, retrying in %.1fs (attempt %s/%s)",
                    response.status_code,
                    endpoint,
                    backoff,
                    attempt,
                    self._max_retries,
                )
                await asyncio.sleep(backoff)
                continue

            if response.is_error:
                logger.error(
                    "Mindbody API error %s for %s", response.status_code, endpoint
                )
                raise MindbodyClientError(
                    f"Mindbody API error: {response.status_code} {response.reason_phrase}",
                    status_code=response.status_code,
                    endpoint=endpoint,
                )
            return self._decode(response, endpoint)

    async def get(
        self, endpoint: str, *, params: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self.request("GET", endpoint, params=params)

    async def fetch_page(
        self,
        endpoint: str,
        results_key: str,
        *,
        offset: int,
        limit: int = 200,
        params: Mapping[str, Any] | None = None,
    ) -> PageResult:
        """Fetch a single page starting at ``offset``."""
        query = dict(params or {})
        query.update({"Limit": limit, "Offset": offset})
        data = await self.get(endpoint, params=query)
        results = list(data.get(results_key) or [])
        pagination = data.get("PaginationResponse") or {}
        total = int(pagination.get("TotalResults") or 0)
        has_more = offset + len(results) < total and len(results) > 0
        return PageResult(results=results, total_results=total, has_more=has_more)

    async def fetch_all_pages(
        self,
        endpoint: str,
        results_key: str,
        *,
        page_size: int = 200,
        params: Mapping[str, Any] | None = None,
        start_offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Walk every page of ``endpoint`` and return the concatenated results.

        The provider's pagination envelope is inconsistent across endpoints, so
        the walk stops as soon as any of these holds: no envelope, offset past
        the reported total, enough results accumulated, or an empty page. The
        offset advances by the number of results actually returned.
        """
        collected: list[dict[str, Any]] = []
        offset = start_offset
        while True:
            query = dict(params or {})
            query.update({"Limit": page_size, "Offset": offset})
            data = await self.get(endpoint, params=query)
            results = list(data.get(results_key) or [])
            collected.extend(results)

            pagination = data.get("PaginationResponse")
            if not pagination:
                break
            total = int(pagination.get("TotalResults") or 0)
            if offset >= total:
                logger.warning(
                    "Offset %s exceeds TotalResults %s for %s, stopping pagination",
                    offset,
                    total,
                    endpoint,
                )
                break
            if len(collected) >= total or not results:
                break
            reported_page_size = pagination.get("PageSize")
            if reported_page_size and int(reported_page_size) > len(results):
                logger.debug(
                    "PageSize %s > actual results %s for %s",
                    reported_page_size,
                    len(results),
                    endpoint,
                )
            offset += len(results)
        return collected


def build_mindbody_client(
    site_id: str | None = None,
    *,
    settings: MindbodySettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> MindbodyClient:
    """Create a client for an organization's site from configuration."""

    config = settings or get_mindbody_settings()
    resolved_site = site_id or config.default_site_id
    if not resolved_site:
        raise MindbodyClientError("Mindbody site id is not configured")
    return MindbodyClient(
        api_key=config.api_key,
        site_id=resolved_site,
        username=config.username,
        client_secret=config.client_secret,
        base_url=config.base_url,
        timeout_seconds=config.timeout_seconds,
        max_retries=config.max_retries,
        retry_backoff_seconds=config.retry_backoff_seconds,
        token_ttl_minutes=config.token_ttl_minutes,
        transport=transport,
    )


__all__ = [
    "MindbodyAuthError",
    "MindbodyClient",
    "MindbodyClientError",
    "PageResult",
    "build_mindbody_client",
]
