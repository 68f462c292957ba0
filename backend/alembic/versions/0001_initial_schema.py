"""Initial studio analytics schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

JSONB_TYPE = postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def _organization_fk() -> sa.Column:
    return sa.Column(
        "organization_id",
        sa.Uuid(as_uuid=True),
        sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("mindbody_site_id", sa.String(length=64)),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _organization_fk(),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("role", sa.Enum("ADMIN", "STAFF", name="userrole"), nullable=False),
        sa.Column(
            "status", sa.Enum("ACTIVE", "SUSPENDED", name="userstatus"), nullable=False
        ),
        *_timestamps(),
    )

    op.create_table(
        "students",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _organization_fk(),
        sa.Column("mindbody_client_id", sa.String(length=64)),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=320)),
        sa.Column("phone", sa.String(length=64)),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("membership_type", sa.String(length=120)),
        sa.Column("join_date", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.UniqueConstraint(
            "organization_id", "mindbody_client_id", name="uq_students_org_client"
        ),
    )
    op.create_index("ix_students_org_email", "students", ["organization_id", "email"])

    op.create_table(
        "classes",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _organization_fk(),
        sa.Column("mindbody_class_id", sa.String(length=64)),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("instructor_name", sa.String(length=255)),
        sa.Column("capacity", sa.Integer()),
        sa.Column("duration", sa.Integer()),
        *_timestamps(),
        sa.UniqueConstraint(
            "organization_id", "mindbody_class_id", name="uq_classes_org_class"
        ),
    )

    op.create_table(
        "class_schedules",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _organization_fk(),
        sa.Column(
            "class_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("classes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("mindbody_schedule_id", sa.String(length=64)),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("location", sa.String(length=255)),
        *_timestamps(),
        sa.UniqueConstraint(
            "organization_id",
            "class_id",
            "start_time",
            name="uq_class_schedules_class_start",
        ),
    )
    op.create_index(
        "ix_class_schedules_org_start",
        "class_schedules",
        ["organization_id", "start_time"],
    )

    op.create_table(
        "attendance",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _organization_fk(),
        sa.Column(
            "student_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "schedule_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("class_schedules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("attended_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attended_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("ATTENDED", "NOSHOW", name="attendancestatus"),
            nullable=False,
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "organization_id",
            "student_id",
            "schedule_id",
            "attended_date",
            name="uq_attendance_student_schedule_date",
        ),
    )
    op.create_index(
        "ix_attendance_org_attended_at", "attendance", ["organization_id", "attended_at"]
    )

    op.create_table(
        "revenue",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _organization_fk(),
        sa.Column(
            "student_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("students.id", ondelete="SET NULL"),
        ),
        sa.Column("mindbody_sale_id", sa.String(length=64)),
        sa.Column("mindbody_item_id", sa.String(length=64)),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "organization_id",
            "mindbody_sale_id",
            "mindbody_item_id",
            name="uq_revenue_sale_item",
        ),
    )
    op.create_index("ix_revenue_org_sale", "revenue", ["organization_id", "mindbody_sale_id"])
    op.create_index("ix_revenue_org_date", "revenue", ["organization_id", "transaction_date"])

    op.create_table(
        "import_jobs",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _organization_fk(),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING",
                "RUNNING",
                "PAUSED",
                "CANCELLED",
                "COMPLETED",
                "FAILED",
                name="importjobstatus",
            ),
            nullable=False,
        ),
        sa.Column("data_types", sa.JSON(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("progress", sa.Text(), nullable=False),
        sa.Column("current_data_type", sa.String(length=32)),
        sa.Column("current_offset", sa.Integer(), nullable=False),
        sa.Column("error", sa.Text()),
        sa.Column("paused_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_import_jobs_org_status", "import_jobs", ["organization_id", "status"])
    op.create_index(
        "ix_import_jobs_org_created", "import_jobs", ["organization_id", "created_at"]
    )

    op.create_table(
        "scheduled_imports",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("schedule", sa.String(length=120), nullable=False),
        sa.Column("data_types", sa.String(length=255), nullable=False),
        sa.Column("days_to_import", sa.Integer(), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True)),
        sa.Column("last_run_status", sa.String(length=32)),
        sa.Column("last_run_error", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "skipped_import_records",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        _organization_fk(),
        sa.Column(
            "import_job_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("import_jobs.id", ondelete="SET NULL"),
        ),
        sa.Column("data_type", sa.String(length=32), nullable=False),
        sa.Column("mindbody_id", sa.String(length=64)),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("raw_data", JSONB_TYPE),
        *_timestamps(),
    )
    op.create_index(
        "ix_skipped_records_org_type",
        "skipped_import_records",
        ["organization_id", "data_type"],
    )


def downgrade() -> None:
    op.drop_index("ix_skipped_records_org_type", table_name="skipped_import_records")
    op.drop_table("skipped_import_records")
    op.drop_table("scheduled_imports")
    op.drop_index("ix_import_jobs_org_created", table_name="import_jobs")
    op.drop_index("ix_import_jobs_org_status", table_name="import_jobs")
    op.drop_table("import_jobs")
    op.drop_index("ix_revenue_org_date", table_name="revenue")
    op.drop_index("ix_revenue_org_sale", table_name="revenue")
    op.drop_table("revenue")
    op.drop_index("ix_attendance_org_attended_at", table_name="attendance")
    op.drop_table("attendance")
    op.drop_index("ix_class_schedules_org_start", table_name="class_schedules")
    op.drop_table("class_schedules")
    op.drop_table("classes")
    op.drop_index("ix_students_org_email", table_name="students")
    op.drop_table("students")
    op.drop_table("users")
    op.drop_table("organizations")

    bind = op.get_bind()
    for enum_name in ("importjobstatus", "attendancestatus", "userstatus", "userrole"):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
