"""Evaluation models — per-record scores, run reports, and KPI summaries.

Score 0 is a sentinel meaning "no valid score obtained". It is stored so
every record keeps one entry per KPI, but it never enters any statistic.
"""

from enum import StrEnum

from pydantic import Field

from src.models.common import KualiteeBase
from src.models.errors import SystemicEvaluationError
from src.models.kpi import KPI

FAILED_SCORE = 0
MIN_SCORE = 1
MAX_SCORE = 5
FALLBACK_EXPLANATION = "Evaluation failed"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ScoreStatus(StrEnum):
    """Status badge for an average score (4.5 / 3.5 / 2.5 thresholds)."""

    OPTIMAL = "OPTIMAL"
    GOOD = "GOOD"
    MARGINAL = "MARGINAL"
    CRITICAL = "CRITICAL"


class ExplanationBand(StrEnum):
    """Band used to pick summary explanation text (4 / 3 / 2 thresholds)."""

    OPTIMAL = "OPTIMAL"
    ACCEPTABLE = "ACCEPTABLE"
    BELOW_THRESHOLD = "BELOW_THRESHOLD"
    CRITICAL = "CRITICAL"


class RunStatus(StrEnum):
    """Outcome of a bulk evaluation run."""

    COMPLETED = "COMPLETED"  # Every record scored
    PARTIAL = "PARTIAL"      # Some records fell back to score 0
    FAILED = "FAILED"        # Non-empty input, no valid score at all
    CANCELLED = "CANCELLED"  # Stopped between batches


class EvaluationMode(StrEnum):
    """Which Evaluator produced the scores."""

    LIVE = "live"
    DEMO = "demo"


# ---------------------------------------------------------------------------
# Per-record results
# ---------------------------------------------------------------------------


class ScoreEntry(KualiteeBase):
    """Score and rationale for one KPI on one record."""

    kpi_id: int = Field(alias="kpiId")
    score: int = Field(ge=FAILED_SCORE, le=MAX_SCORE)
    explanation: str = ""

    @property
    def is_valid(self) -> bool:
        return self.score > FAILED_SCORE


class EvaluationResult(KualiteeBase):
    """All KPI scores for one record, in requested-KPI order."""

    msid: str
    scores: list[ScoreEntry] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        """True when no KPI received a valid score."""
        return not any(s.is_valid for s in self.scores)

    def score_for(self, kpi_id: int) -> ScoreEntry | None:
        for entry in self.scores:
            if entry.kpi_id == kpi_id:
                return entry
        return None


def fallback_result(msid: str, kpis: list[KPI]) -> EvaluationResult:
    """All-zero result substituted when a record could not be scored."""
    return EvaluationResult(
        msid=msid,
        scores=[
            ScoreEntry(kpi_id=kpi.id, score=FAILED_SCORE, explanation=FALLBACK_EXPLANATION)
            for kpi in kpis
        ],
    )


class EvaluationRun(KualiteeBase):
    """Report returned by a bulk run: results plus run-level diagnostics."""

    status: RunStatus
    results: list[EvaluationResult] = Field(default_factory=list)
    batch_count: int = 0
    batches_completed: int = 0
    failed_msids: list[str] = Field(default_factory=list)
    mode: EvaluationMode = EvaluationMode.LIVE

    def raise_for_status(self) -> None:
        """Raise SystemicEvaluationError if the run produced no valid score."""
        if self.status == RunStatus.FAILED:
            raise SystemicEvaluationError(
                f"All {len(self.results)} record(s) failed evaluation; "
                "check the Evaluator credentials and configuration.",
                run=self,
            )


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class EvaluationSummary(KualiteeBase):
    """Per-KPI aggregate shown in the executive summary."""

    kpi_id: int
    kpi_name: str
    short_name: str
    average_score: float = 0.0
    short_explanation: str = ""


class KPIStatistics(KualiteeBase):
    """Per-KPI mean/median/count over valid scores, rounded to 2 decimals."""

    kpi_id: int
    kpi_name: str
    short_name: str
    mean: float = 0.0
    median: float = 0.0
    count: int = 0
    status: ScoreStatus = ScoreStatus.CRITICAL
