"""Initial schema — projects, KPIs, test sets, rows, results, mismatches.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Projects --
    op.create_table(
        "projects",
        sa.Column("project_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("site_description", sa.Text, nullable=True),
        sa.Column("target_language", sa.String(100), nullable=True),
        sa.Column("is_configured", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "project_kpis",
        sa.Column("project_id", UUID(as_uuid=True),
                  sa.ForeignKey("projects.project_id", ondelete="CASCADE"), primary_key=True),
        sa.Column("kpi_number", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("short_name", sa.String(10), nullable=False),
    )

    # -- Test sets --
    op.create_table(
        "test_sets",
        sa.Column("test_set_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("project_id", UUID(as_uuid=True),
                  sa.ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("kpis_snapshot", JSONB, nullable=False),
        sa.Column("status", sa.String(20), server_default="PENDING", nullable=False),
        sa.Column("mode", sa.String(20), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_test_sets_project_id", "test_sets", ["project_id"])

    op.create_table(
        "test_set_rows",
        sa.Column("test_set_id", UUID(as_uuid=True),
                  sa.ForeignKey("test_sets.test_set_id", ondelete="CASCADE"), primary_key=True),
        sa.Column("side", sa.String(10), primary_key=True),
        sa.Column("position", sa.Integer, primary_key=True),
        sa.Column("msid", sa.String(255), nullable=False),
        sa.Column("data", JSONB, nullable=False),
    )

    op.create_table(
        "test_results",
        sa.Column("test_set_id", UUID(as_uuid=True),
                  sa.ForeignKey("test_sets.test_set_id", ondelete="CASCADE"), primary_key=True),
        sa.Column("msid", sa.String(255), primary_key=True),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("scores", JSONB, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "data_mismatches",
        sa.Column("test_set_id", UUID(as_uuid=True),
                  sa.ForeignKey("test_sets.test_set_id", ondelete="CASCADE"), primary_key=True),
        sa.Column("position", sa.Integer, primary_key=True),
        sa.Column("msid", sa.String(255), nullable=False),
        sa.Column("field", sa.String(255), nullable=False),
        sa.Column("issue", sa.String(255), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("data_mismatches")
    op.drop_table("test_results")
    op.drop_table("test_set_rows")
    op.drop_index("ix_test_sets_project_id", table_name="test_sets")
    op.drop_table("test_sets")
    op.drop_table("project_kpis")
    op.drop_table("projects")
