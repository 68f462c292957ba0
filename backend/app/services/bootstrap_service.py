"""Bootstrap the first organization and operator from configuration."""

from __future__ import annotations

import logging

from sqlalchemy import select

from app.core.config import get_settings
from app.db.session import session_scope
from app.models import Organization, User, UserRole
from app.schemas.user import UserCreate
from app.services.user_service import create_user

logger = logging.getLogger(__name__)


async def ensure_bootstrap_admin() -> User | None:
    """Create the configured admin (and its organization) if missing.

    Does nothing unless both ``BOOTSTRAP_ADMIN_EMAIL`` and
    ``BOOTSTRAP_ADMIN_PASSWORD`` are set.
    """
    settings = get_settings()
    email = settings.bootstrap_admin_email
    password = settings.bootstrap_admin_password
    if not email or not password:
        return None

    async with session_scope() as session:
        existing = await session.execute(select(User).where(User.email == email.lower()))
        user = existing.scalar_one_or_none()
        if user is not None:
            return user

        result = await session.execute(
            select(Organization).order_by(Organization.created_at.asc()).limit(1)
        )
        organization = result.scalar_one_or_none()
        if organization is None:
            organization = Organization(
                name=settings.bootstrap_organization_name,
                mindbody_site_id=settings.mindbody_site_id,
            )
            session.add(organization)
            await session.commit()
            await session.refresh(organization)

        payload = UserCreate(
            organization_id=organization.id,
            email=email,
            password=password,
            first_name="Studio",
            last_name="Admin",
            role=UserRole.ADMIN,
        )
        user = await create_user(session, payload)
        logger.info("Created bootstrap admin for organization %s", organization.id)
        return user
