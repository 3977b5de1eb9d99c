"""Add scheduler state, run log and app settings tables.

Revision ID: 001_scheduler_tables
Revises:
Create Date: 2026-09-28
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001_scheduler_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "scheduler_state",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("last_daily_run_key", sa.String(10), nullable=True),
        sa.Column("last_daily_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.execute("INSERT INTO scheduler_state (id) VALUES ('global')")

    op.create_table(
        "scheduler_runs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("run_key", sa.String(64), nullable=False),
        sa.Column("function_name", sa.String(100), nullable=False),
        sa.Column("trigger_source", sa.String(32), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_scheduler_runs_fn_status_completed",
        "scheduler_runs",
        ["function_name", "status", "completed_at"],
    )
    op.create_index("idx_scheduler_runs_started", "scheduler_runs", ["started_at"])

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("app_settings")
    op.drop_index("idx_scheduler_runs_started", table_name="scheduler_runs")
    op.drop_index("idx_scheduler_runs_fn_status_completed", table_name="scheduler_runs")
    op.drop_table("scheduler_runs")
    op.drop_table("scheduler_state")
