"""ORM models package export."""

from app.models.attendance import Attendance, AttendanceStatus
from app.models.import_job import (
    ACTIVE_JOB_STATUSES,
    BUSY_JOB_STATUSES,
    ImportJob,
    ImportJobStatus,
)
from app.models.organization import Organization
from app.models.revenue import Revenue
from app.models.scheduled_import import ScheduledImport
from app.models.skipped_import_record import SkippedImportRecord
from app.models.student import Student
from app.models.studio_class import ClassSchedule, StudioClass
from app.models.user import User, UserRole, UserStatus

__all__ = [
    "ACTIVE_JOB_STATUSES",
    "BUSY_JOB_STATUSES",
    "Attendance",
    "AttendanceStatus",
    "ClassSchedule",
    "ImportJob",
    "ImportJobStatus",
    "Organization",
    "Revenue",
    "ScheduledImport",
    "SkippedImportRecord",
    "Student",
    "StudioClass",
    "User",
    "UserRole",
    "UserStatus",
]
