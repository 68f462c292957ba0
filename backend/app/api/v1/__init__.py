"""Versioned API router."""

from fastapi import APIRouter

from . import auth, csv_uploads, health, imports, scheduled_imports

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(imports.router, prefix="/imports", tags=["imports"])
router.include_router(
    scheduled_imports.router, prefix="/scheduled-imports", tags=["scheduled-imports"]
)
router.include_router(csv_uploads.router, tags=["csv-imports"])
