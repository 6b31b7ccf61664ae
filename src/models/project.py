"""Project and test set models.

A Project holds an ordered KPI list. A TestSet snapshots that list at
creation time together with the uploaded rows, the join mismatches, and
the latest evaluation results.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from src.models.common import KualiteeBase, UTCTimestamp, UUIDv7, utc_now
from src.models.dataset import DataMismatchEntry, Row
from src.models.evaluation import EvaluationResult, KPIStatistics
from src.models.kpi import KPI


class TestSetStatus(StrEnum):
    """Evaluation lifecycle of a test set."""

    __test__ = False

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


def default_test_set_name(existing_count: int, now: datetime | None = None) -> str:
    """``Run #<n> - <date>`` where n counts the project's test sets."""
    created = now or utc_now()
    return f"Run #{existing_count + 1} - {created.strftime('%Y-%m-%d')}"


class Project(KualiteeBase):
    project_id: UUIDv7
    name: str
    description: str | None = None
    site_description: str | None = None
    target_language: str | None = None
    is_configured: bool = False
    kpis: list[KPI] = Field(default_factory=list)
    created_at: UTCTimestamp
    updated_at: UTCTimestamp


class TestSetOverview(KualiteeBase):
    """Listing entry for a test set."""

    __test__ = False

    test_set_id: UUIDv7
    project_id: UUIDv7
    name: str
    status: TestSetStatus
    result_count: int = 0
    row_count: int = 0
    overall_score: float = 0.0
    created_at: UTCTimestamp


class TestSetDetail(TestSetOverview):
    """Full test set with rows, results, and per-KPI statistics."""

    kpis: list[KPI] = Field(default_factory=list)
    source_rows: list[Row] = Field(default_factory=list)
    target_rows: list[Row] = Field(default_factory=list)
    results: list[EvaluationResult] = Field(default_factory=list)
    mismatches: list[DataMismatchEntry] = Field(default_factory=list)
    statistics: list[KPIStatistics] = Field(default_factory=list)
    error_message: str | None = None
    mode: str | None = None
