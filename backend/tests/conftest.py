"""Test fixtures for the studio analytics backend."""
from __future__ import annotations

import os
from collections.abc import AsyncIterator, Callable, Iterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["IMPORT_BATCH_DELAY_MS"] = "0"
os.environ["MINDBODY_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["MINDBODY_API_KEY"] = "test-api-key"
os.environ["MINDBODY_CLIENT_SECRET"] = "test-client-secret"

from app.core.config import get_settings
from app.core.security import get_password_hash
from app.db.base import Base
from app.db.session import dispose_engine, get_sessionmaker
from app.main import app
from app.models import Organization, User, UserRole, UserStatus
from app.services.auth_service import create_access_token_for_user
from app.services.import_worker import DEFAULT_PHASES, import_worker

from tests.support import SITE_ID, FakeMindbody, build_fake_client


@pytest.fixture(scope="session")
def db_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Provide a temporary SQLite database URL for the test session."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    return f"sqlite+aiosqlite:///{db_path}"


@pytest_asyncio.fixture()
async def reset_database(db_url: str) -> AsyncIterator[None]:
    """Drop and recreate the database schema for an isolated test."""
    os.environ["DATABASE_URL"] = db_url
    get_settings.cache_clear()
    get_settings()

    await dispose_engine(db_url)
    engine = create_async_engine(db_url, future=True)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    await engine.dispose()
    yield
    await import_worker.stop()
    await dispose_engine(db_url)


@pytest_asyncio.fixture()
async def organization_id(reset_database: None, db_url: str):
    """Seed one organization linked to the fake provider site."""
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        organization = Organization(name="Sunrise Yoga", mindbody_site_id=SITE_ID)
        session.add(organization)
        await session.commit()
        return organization.id


@pytest.fixture()
def fake_mindbody() -> FakeMindbody:
    return FakeMindbody()


@pytest.fixture()
def mindbody_worker(fake_mindbody: FakeMindbody):
    """Point the shared worker at the fake provider with fail-fast retries."""
    original_factory = import_worker.client_factory
    import_worker.client_factory = lambda _organization: build_fake_client(
        fake_mindbody, max_retries=0
    )
    yield import_worker
    import_worker.client_factory = original_factory
    import_worker.phases = DEFAULT_PHASES


@pytest.fixture()
def stub_phases() -> Iterator[Callable[..., None]]:
    """Replace the worker's phases for the duration of a test."""

    def _install(*phases) -> None:
        import_worker.phases = tuple(phases)

    yield _install
    import_worker.phases = DEFAULT_PHASES


@pytest_asyncio.fixture()
async def app_context(
    organization_id, db_url: str
) -> AsyncIterator[dict[str, object]]:
    """Yield an async client plus a seeded admin and staff member."""
    sessionmaker = get_sessionmaker(db_url)
    admin_password = "Passw0rd!"
    async with sessionmaker() as session:
        admin = User(
            organization_id=organization_id,
            email="admin@example.com",
            hashed_password=get_password_hash(admin_password),
            first_name="Avery",
            last_name="Admin",
            role=UserRole.ADMIN,
            status=UserStatus.ACTIVE,
        )
        staff = User(
            organization_id=organization_id,
            email="staff@example.com",
            hashed_password=get_password_hash("Staff1234!"),
            first_name="Sam",
            last_name="Staff",
            role=UserRole.STAFF,
            status=UserStatus.ACTIVE,
        )
        session.add_all([admin, staff])
        await session.commit()

        context: dict[str, object] = {
            "organization_id": organization_id,
            "admin_email": admin.email,
            "admin_password": admin_password,
            "headers": {"Authorization": f"Bearer {create_access_token_for_user(admin)}"},
            "staff_headers": {
                "Authorization": f"Bearer {create_access_token_for_user(staff)}"
            },
        }

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        context["client"] = client
        yield context


@pytest_asyncio.fixture()
async def session(organization_id, db_url: str) -> AsyncIterator[AsyncSession]:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as db_session:
        yield db_session
