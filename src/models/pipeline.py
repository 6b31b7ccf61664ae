"""Pipeline state — the domain state one evaluation session carries."""

from enum import StrEnum

from pydantic import Field

from src.models.common import KualiteeBase
from src.models.dataset import DataMismatchEntry, JoinedRecord, Row, ValidationError
from src.models.evaluation import EvaluationMode, EvaluationResult, EvaluationSummary, RunStatus
from src.models.kpi import KPI


class PipelinePhase(StrEnum):
    """Phase of an evaluation session.

    UPLOAD -> KPI_CONFIG -> EVALUATING -> RESULTS, with ERROR reachable
    from UPLOAD when the join fails. RESULTS may re-enter EVALUATING.
    """

    UPLOAD = "UPLOAD"
    KPI_CONFIG = "KPI_CONFIG"
    EVALUATING = "EVALUATING"
    RESULTS = "RESULTS"
    ERROR = "ERROR"


class PipelineState(KualiteeBase):
    """Mutable session state owned by EvaluationPipeline."""

    phase: PipelinePhase = PipelinePhase.UPLOAD
    source_rows: list[Row] = Field(default_factory=list)
    target_rows: list[Row] = Field(default_factory=list)
    joined: list[JoinedRecord] = Field(default_factory=list)
    mismatches: list[DataMismatchEntry] = Field(default_factory=list)
    kpis: list[KPI] = Field(default_factory=list)
    results: list[EvaluationResult] = Field(default_factory=list)
    summaries: list[EvaluationSummary] = Field(default_factory=list)
    validation_error: ValidationError | None = None
    run_status: RunStatus | None = None
    mode: EvaluationMode | None = None

    def record(self, msid: str) -> JoinedRecord | None:
        for record in self.joined:
            if record.msid == msid:
                return record
        return None
