"""Schema exports."""

from app.schemas.auth import Token
from app.schemas.csv_import import CsvImportResult
from app.schemas.import_job import (
    ImportDataTypes,
    ImportJobCreate,
    ImportJobRead,
    SkippedRecordRead,
)
from app.schemas.scheduled_import import (
    ScheduledImportRead,
    ScheduledImportUpdate,
    ScheduledRunStarted,
)
from app.schemas.user import UserCreate, UserRead

__all__ = [
    "CsvImportResult",
    "ImportDataTypes",
    "ImportJobCreate",
    "ImportJobRead",
    "ScheduledImportRead",
    "ScheduledImportUpdate",
    "ScheduledRunStarted",
    "SkippedRecordRead",
    "Token",
    "UserCreate",
    "UserRead",
]
