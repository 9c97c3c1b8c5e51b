"""Initial schema -- tasks, notifications, task_locations, notification_ledger.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Enums are stored as plain strings (non-native) so the same models run on SQLite.

    # 1. tasks
    op.create_table(
        "tasks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("category", sa.String(13), nullable=False, server_default="general"),
        sa.Column("priority", sa.String(6), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(11), nullable=False, server_default="pending"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source", sa.String(12), nullable=False, server_default="manual"),
        sa.Column("source_app", sa.String(100), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("location_dependent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("weather_dependent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("time_dependent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # 2. notifications
    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("source_app", sa.String(100), nullable=False),
        sa.Column("title", sa.String(500), nullable=False, server_default=""),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("related_task_id", sa.Uuid(), sa.ForeignKey("tasks.id"), nullable=True),
        sa.Column("skip_reason", sa.String(255), nullable=True),
    )

    # 3. task_locations
    op.create_table(
        "task_locations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "task_id", sa.Uuid(), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.String(500), nullable=False, server_default=""),
        sa.Column("latitude", sa.Float(), nullable=False, server_default="0"),
        sa.Column("longitude", sa.Float(), nullable=False, server_default="0"),
        sa.Column("place_id", sa.String(255), nullable=False),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("is_open", sa.Boolean(), nullable=True),
        sa.Column("distance_meters", sa.Integer(), nullable=False, server_default="0"),
    )

    # 4. notification_ledger (no FK: rows outlive their task until reaped)
    op.create_table(
        "notification_ledger",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("notification_type", sa.String(8), nullable=False),
        sa.Column("last_sent_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notification_count", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("task_id", "notification_type", name="uq_ledger_task_type"),
    )

    # ── Indexes ──────────────────────────────────────────────────
    op.create_index("ix_tasks_source_app_created", "tasks", ["source_app", "created_at"])
    op.create_index("ix_tasks_status_deleted", "tasks", ["status", "is_deleted"])

    op.create_index("ix_notifications_processed_ts", "notifications", ["processed", "timestamp"])
    op.create_index("ix_notifications_source_ts", "notifications", ["source_app", "timestamp"])

    op.create_index("ix_task_locations_task_id", "task_locations", ["task_id"])
    op.create_index("ix_task_locations_place_id", "task_locations", ["place_id"])


def downgrade() -> None:
    op.drop_index("ix_task_locations_place_id", table_name="task_locations")
    op.drop_index("ix_task_locations_task_id", table_name="task_locations")
    op.drop_index("ix_notifications_source_ts", table_name="notifications")
    op.drop_index("ix_notifications_processed_ts", table_name="notifications")
    op.drop_index("ix_tasks_status_deleted", table_name="tasks")
    op.drop_index("ix_tasks_source_app_created", table_name="tasks")

    op.drop_table("notification_ledger")
    op.drop_table("task_locations")
    op.drop_table("notifications")
    op.drop_table("tasks")
