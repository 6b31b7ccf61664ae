"""SQLAlchemy ORM table models for Kualitee.

Uses FlexJSON (JSONB on Postgres, JSON on SQLite) for uploaded rows, KPI
snapshots, and score lists.

Child rows carry an explicit ``position`` so datasets and results read back
in the order they were written.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from src.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectRow(Base):
    __tablename__ = "projects"

    project_id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    site_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_language: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_configured: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ProjectKPIRow(Base):
    """Ordered KPI definition. ``kpi_number`` is the KPI id within the project."""

    __tablename__ = "project_kpis"

    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("projects.project_id", ondelete="CASCADE"), primary_key=True,
    )
    kpi_number: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    short_name: Mapped[str] = mapped_column(String(10), nullable=False)


# ---------------------------------------------------------------------------
# Test sets
# ---------------------------------------------------------------------------


class TestSetRow(Base):
    """One uploaded dataset pair plus its KPI snapshot and run status."""

    __tablename__ = "test_sets"
    __test__ = False

    test_set_id: Mapped[UUID] = mapped_column(primary_key=True)
    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kpis_snapshot: Mapped[list] = mapped_column(FlexJSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TestSetDataRow(Base):
    """A single uploaded row. ``side`` is SOURCE or TARGET."""

    __tablename__ = "test_set_rows"
    __test__ = False

    test_set_id: Mapped[UUID] = mapped_column(
        ForeignKey("test_sets.test_set_id", ondelete="CASCADE"), primary_key=True,
    )
    side: Mapped[str] = mapped_column(String(10), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    msid: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[dict] = mapped_column(FlexJSON, nullable=False)


class TestResultRow(Base):
    """Latest scores for one record of a test set."""

    __tablename__ = "test_results"
    __test__ = False

    test_set_id: Mapped[UUID] = mapped_column(
        ForeignKey("test_sets.test_set_id", ondelete="CASCADE"), primary_key=True,
    )
    msid: Mapped[str] = mapped_column(String(255), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    scores: Mapped[list] = mapped_column(FlexJSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DataMismatchRow(Base):
    """Empty field found when the test set was joined."""

    __tablename__ = "data_mismatches"

    test_set_id: Mapped[UUID] = mapped_column(
        ForeignKey("test_sets.test_set_id", ondelete="CASCADE"), primary_key=True,
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    msid: Mapped[str] = mapped_column(String(255), nullable=False)
    field: Mapped[str] = mapped_column(String(255), nullable=False)
    issue: Mapped[str] = mapped_column(String(255), nullable=False)
