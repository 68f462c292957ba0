"""Specialized settings adapters for integrations."""

from __future__ import annotations

from pydantic import BaseModel

from app.core.config import get_settings


class MindbodySettings(BaseModel):
    """Slim view of the scheduling-platform API configuration."""

    base_url: str
    api_key: str | None = None
    username: str = "_YHC"
    client_secret: str | None = None
    default_site_id: str | None = None
    timeout_seconds: float = 60.0
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    token_ttl_minutes: int = 55
    page_size: int = 200
    batch_delay_ms: int = 500


def get_mindbody_settings() -> MindbodySettings:
    """Return configuration for the external data source."""

    settings = get_settings()
    return MindbodySettings(
        base_url=settings.mindbody_api_base.rstrip("/"),
        api_key=settings.mindbody_api_key or None,
        username=settings.mindbody_username,
        client_secret=settings.mindbody_client_secret or None,
        default_site_id=settings.mindbody_site_id or None,
        timeout_seconds=settings.mindbody_request_timeout_seconds,
        max_retries=settings.mindbody_max_retries,
        retry_backoff_seconds=settings.mindbody_retry_backoff_seconds,
        token_ttl_minutes=settings.mindbody_token_ttl_minutes,
        page_size=settings.import_page_size,
        batch_delay_ms=settings.import_batch_delay_ms,
    )
