"""Add organizations, prompts, llm_providers and the provider response log.

Revision ID: 002_catalog_and_responses
Revises: 001_scheduler_tables
Create Date: 2026-09-28
"""

from alembic import op
import sqlalchemy as sa

revision = "002_catalog_and_responses"
down_revision = "001_scheduler_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "prompts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("org_id", sa.String(36), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_prompts_org_id", "prompts", ["org_id"])

    op.create_table(
        "llm_providers",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default="true", nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "prompt_provider_responses",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("org_id", sa.String(36), nullable=False),
        sa.Column("prompt_id", sa.String(36), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("run_key", sa.String(10), nullable=True),
        sa.Column("correlation_id", sa.String(100), nullable=True),
        sa.Column("raw_response", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_responses_status_run_at", "prompt_provider_responses", ["status", "run_at"])
    op.create_index("idx_responses_org_prompt", "prompt_provider_responses", ["org_id", "prompt_id"])


def downgrade() -> None:
    op.drop_index("idx_responses_org_prompt", table_name="prompt_provider_responses")
    op.drop_index("idx_responses_status_run_at", table_name="prompt_provider_responses")
    op.drop_table("prompt_provider_responses")
    op.drop_table("llm_providers")
    op.drop_index("ix_prompts_org_id", table_name="prompts")
    op.drop_table("prompts")
    op.drop_table("organizations")
