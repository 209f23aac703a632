"""add ai_runs, knowledge_documents and application precheck columns

Revision ID: 20261019_ai_runs
Revises: 20261019_initial
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261019_ai_runs"
down_revision = "20261019_initial"
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "ai_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("run_type", sa.String(50), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("model_name", sa.String(100), nullable=True),
        sa.Column("prompt_redacted", sa.Text(), nullable=True),
        sa.Column("response_redacted", sa.Text(), nullable=True),
        sa.Column("token_usage", JSON_TYPE, nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("outcome", sa.String(50), nullable=False),
        sa.Column("correlation_id", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_ai_runs_org_created", "ai_runs", ["organization_id", "created_at"])
    op.create_index("ix_ai_runs_correlation_id", "ai_runs", ["correlation_id"])

    op.create_table(
        "knowledge_documents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("source_url", sa.String(1024), nullable=True),
        sa.Column("is_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index(
        "ix_knowledge_documents_org_approved", "knowledge_documents", ["organization_id", "is_approved"],
    )

    op.add_column("applications", sa.Column("needs_statement", sa.Text(), nullable=True))
    op.add_column("applications", sa.Column("eligibility_outcome", JSON_TYPE, nullable=True))
    op.add_column("applications", sa.Column("eligibility_confidence", sa.Float(), nullable=True))
    op.add_column("applications", sa.Column("missing_evidence", JSON_TYPE, nullable=True))
    op.add_column("applications", sa.Column("next_steps", JSON_TYPE, nullable=True))


def downgrade() -> None:
    op.drop_column("applications", "next_steps")
    op.drop_column("applications", "missing_evidence")
    op.drop_column("applications", "eligibility_confidence")
    op.drop_column("applications", "eligibility_outcome")
    op.drop_column("applications", "needs_statement")
    op.drop_index("ix_knowledge_documents_org_approved", table_name="knowledge_documents")
    op.drop_table("knowledge_documents")
    op.drop_index("ix_ai_runs_correlation_id", table_name="ai_runs")
    op.drop_index("ix_ai_runs_org_created", table_name="ai_runs")
    op.drop_table("ai_runs")
