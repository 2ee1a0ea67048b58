"""employees, announcements, schedule assignments and admin sessions

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "employees",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_employees_created_at", "employees", ["created_at"])

    op.create_table(
        "announcements",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("level", sa.String(length=10), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("level IN ('red', 'orange', 'green', 'blue')", name="ck_announcements_level"),
        sa.CheckConstraint("type IN ('announcement', 'info')", name="ck_announcements_type"),
        sa.CheckConstraint("status IN ('draft', 'published')", name="ck_announcements_status"),
    )
    op.create_index("ix_announcements_created_at", "announcements", ["created_at"])

    op.create_table(
        "schedule_assignments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("position_key", sa.String(length=64), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("employee_name", sa.String(length=255), nullable=False),
    )
    op.create_index("ix_schedule_assignments_work_date", "schedule_assignments", ["work_date"])
    op.create_index("ix_schedule_assignments_slot", "schedule_assignments", ["position_key", "work_date"])

    op.create_table(
        "admin_sessions",
        sa.Column("session_id", sa.String(length=128), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_admin_sessions_expires_at", "admin_sessions", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_admin_sessions_expires_at", table_name="admin_sessions")
    op.drop_table("admin_sessions")
    op.drop_index("ix_schedule_assignments_slot", table_name="schedule_assignments")
    op.drop_index("ix_schedule_assignments_work_date", table_name="schedule_assignments")
    op.drop_table("schedule_assignments")
    op.drop_index("ix_announcements_created_at", table_name="announcements")
    op.drop_table("announcements")
    op.drop_index("ix_employees_created_at", table_name="employees")
    op.drop_table("employees")
