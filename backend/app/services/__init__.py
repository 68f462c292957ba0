"""Service layer exports."""
from app.services import (
    auth_service,
    import_job_service,
    import_storage,
    scheduled_import_service,
    user_service,
)

__all__ = [
    "auth_service",
    "import_job_service",
    "import_storage",
    "scheduled_import_service",
    "user_service",
]
