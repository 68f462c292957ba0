"""Application configuration via pydantic settings."""

from functools import lru_cache
from pathlib import Path

from typing import Any

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed application configuration."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = "Studio Analytics API"
    api_v1_prefix: str = "/api/v1"

    database_url: str = Field(..., alias="DATABASE_URL")
    sync_database_url: str | None = Field(default=None, alias="SYNC_DATABASE_URL")

    secret_key: str = Field("change-me", alias="SECRET_KEY")
    jwt_secret_key: str = Field(default="", alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    bootstrap_organization_name: str = Field(
        "Default Studio", alias="BOOTSTRAP_ORGANIZATION_NAME"
    )
    bootstrap_admin_email: str | None = Field(
        default=None, alias="BOOTSTRAP_ADMIN_EMAIL"
    )
    bootstrap_admin_password: str | None = Field(
        default=None, alias="BOOTSTRAP_ADMIN_PASSWORD"
    )

    mindbody_api_base: str = Field(
        "https://api.mindbodyonline.com/public/v6", alias="MINDBODY_API_BASE"
    )
    mindbody_api_key: str | None = Field(default=None, alias="MINDBODY_API_KEY")
    mindbody_username: str = Field("_YHC", alias="MINDBODY_USERNAME")
    mindbody_client_secret: str | None = Field(
        default=None, alias="MINDBODY_CLIENT_SECRET"
    )
    mindbody_site_id: str | None = Field(default=None, alias="MINDBODY_SITE_ID")
    mindbody_request_timeout_seconds: float = Field(
        60.0, alias="MINDBODY_REQUEST_TIMEOUT_SECONDS"
    )
    mindbody_max_retries: int = Field(3, alias="MINDBODY_MAX_RETRIES")
    mindbody_retry_backoff_seconds: float = Field(
        1.0, alias="MINDBODY_RETRY_BACKOFF_SECONDS"
    )
    mindbody_token_ttl_minutes: int = Field(55, alias="MINDBODY_TOKEN_TTL_MINUTES")

    import_page_size: int = Field(200, alias="IMPORT_PAGE_SIZE")
    import_student_batch_size: int = Field(25, alias="IMPORT_STUDENT_BATCH_SIZE")
    import_batch_delay_ms: int = Field(500, alias="IMPORT_BATCH_DELAY_MS")
    import_default_lookback_months: int = Field(
        12, alias="IMPORT_DEFAULT_LOOKBACK_MONTHS"
    )
    visit_match_tolerance_seconds: int = Field(
        0, alias="VISIT_MATCH_TOLERANCE_SECONDS"
    )

    scheduler_enabled: bool = Field(True, alias="SCHEDULER_ENABLED")
    scheduler_sync_interval_minutes: int = Field(
        5, alias="SCHEDULER_SYNC_INTERVAL_MINUTES"
    )
    scheduled_min_interval_minutes: int = Field(
        10, alias="SCHEDULED_MIN_INTERVAL_MINUTES"
    )
    scheduled_poll_interval_seconds: float = Field(
        10.0, alias="SCHEDULED_POLL_INTERVAL_SECONDS"
    )
    scheduled_poll_timeout_hours: float = Field(
        4.0, alias="SCHEDULED_POLL_TIMEOUT_HOURS"
    )

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        alias="CORS_ALLOW_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=False, alias="CORS_ALLOW_CREDENTIALS")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        case_sensitive=False,
    )

    def model_post_init(self, __context: Any) -> None:
        """Populate JWT secret from the generic secret when not provided."""

        if not self.jwt_secret_key:
            object.__setattr__(self, "jwt_secret_key", self.secret_key)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()  # type: ignore[call-arg]
