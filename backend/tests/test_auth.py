"""Operator login tests."""

from __future__ import annotations

import pytest

pytestmark = pytest.mark.asyncio


async def test_login_issues_token_for_valid_credentials(app_context) -> None:
    client = app_context["client"]
    response = await client.post(
        "/api/v1/auth/token",
        data={
            "username": app_context["admin_email"],
            "password": app_context["admin_password"],
        },
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 200
    token = response.json()["access_token"]

    me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "admin@example.com"
    assert me.json()["organization_id"] == str(app_context["organization_id"])


async def test_login_rejects_wrong_password(app_context) -> None:
    response = await app_context["client"].post(
        "/api/v1/auth/token",
        data={"username": app_context["admin_email"], "password": "nope"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 401


async def test_protected_routes_require_token(app_context) -> None:
    response = await app_context["client"].get("/api/v1/imports")
    assert response.status_code == 401

    response = await app_context["client"].get(
        "/api/v1/imports", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401
