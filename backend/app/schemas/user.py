"""User-related schemas."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from app.models.user import UserRole, UserStatus

_ALLOWED_DEV_EMAIL_DOMAINS = {"studio.local"}
_EMAIL_ADAPTER = TypeAdapter(EmailStr)


def _validate_relaxed_email(value: str) -> str:
    """Validate with ``EmailStr`` but allow ``*.local`` placeholder domains."""

    email = value.strip()
    try:
        return _EMAIL_ADAPTER.validate_python(email).lower()
    except ValidationError as exc:
        local_part, _, domain = email.partition("@")
        if local_part and domain and "@" not in domain:
            if domain.endswith(".local") or domain in _ALLOWED_DEV_EMAIL_DOMAINS:
                return email.lower()
        raise ValueError("Invalid email address") from exc


class UserCreate(BaseModel):
    """Payload for creating an operator account."""

    organization_id: uuid.UUID
    email: str
    password: str = Field(min_length=8)
    first_name: str
    last_name: str
    role: UserRole = UserRole.STAFF
    status: UserStatus = UserStatus.ACTIVE

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _validate_relaxed_email(value)


class UserRead(BaseModel):
    """Operator account returned from the API."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    role: UserRole
    status: UserStatus
    created_at: datetime
