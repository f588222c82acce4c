"""create_audit_requests

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "audit_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("website_name", sa.String(255), nullable=False),
        sa.Column("contact_method", sa.String(10), nullable=False),
        sa.Column("contact_value", sa.String(255), nullable=False),
        sa.Column("locale", sa.String(5), nullable=False, server_default="fr"),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("referer", sa.Text(), nullable=True),
        sa.Column("done", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "processing_status", sa.String(20), nullable=False, server_default="PENDING"
        ),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("step", sa.String(255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("normalized_url", sa.Text(), nullable=True),
        sa.Column("final_url", sa.Text(), nullable=True),
        sa.Column(
            "redirect_chain",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "key_checks", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
        sa.Column(
            "quick_wins", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column(
            "pillar_scores",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("summary_text", sa.Text(), nullable=True),
        sa.Column("full_report", postgresql.JSONB(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "processing_status IN ('PENDING', 'RUNNING', 'COMPLETED', 'FAILED')",
            name="ck_audit_requests_processing_status",
        ),
        sa.CheckConstraint(
            "contact_method IN ('EMAIL', 'PHONE')",
            name="ck_audit_requests_contact_method",
        ),
        sa.CheckConstraint(
            "progress >= 0 AND progress <= 100",
            name="ck_audit_requests_progress_range",
        ),
    )
    op.create_index(
        "ix_audit_requests_processing_status", "audit_requests", ["processing_status"]
    )


def downgrade() -> None:
    op.drop_index("ix_audit_requests_processing_status", table_name="audit_requests")
    op.drop_table("audit_requests")
