"""Health check endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter

from app.core.config import get_settings
from app.services.import_worker import import_worker

router = APIRouter()


@router.get("", summary="Service health status")
async def healthcheck() -> dict[str, object]:
    """Return application health metadata and worker state."""
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.app_env,
        "import_worker": {
            "processing": import_worker.is_processing,
            "queued": len(import_worker.queued_job_ids),
        },
    }
