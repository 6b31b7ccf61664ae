"""FastAPI stateless evaluation endpoints.

POST /v1/match     — validate and join two datasets
POST /v1/evaluate  — join, then score every record against the KPIs
PUT  /v1/evaluate  — re-evaluate one record with user feedback
POST /v1/summary   — per-KPI averages, statistics, explanations
POST /v1/query     — free-text question about a result set

Nothing is persisted; see testsets.py for the stored workflow.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.agents.evaluator import Evaluator
from src.agents.llm_client import LLMTransportError
from src.agents.orchestrator import EvaluationOrchestrator
from src.agents.query_responder import QueryResponder
from src.agents.summarizer import Summarizer
from src.api.dependencies import (
    get_evaluator,
    get_matcher,
    get_orchestrator,
    get_query_responder,
    get_summarizer,
)
from src.engine.matcher import RecordMatcher
from src.engine.summary import SummaryAggregator
from src.models.common import KEY_COLUMN
from src.models.dataset import DataMismatchEntry, JoinedRecord, Row
from src.models.errors import (
    EvaluationFailedError,
    EvaluatorNotConfiguredError,
    RecordMatchError,
    SystemicEvaluationError,
)
from src.models.evaluation import (
    EvaluationMode,
    EvaluationResult,
    EvaluationSummary,
    KPIStatistics,
    RunStatus,
)
from src.models.kpi import KPI, configured_kpis

router = APIRouter(prefix="/v1", tags=["evaluation"])

_aggregator = SummaryAggregator()


# ---------------------------------------------------------------------------
# Error mapping shared with the test set endpoints
# ---------------------------------------------------------------------------


def match_http_error(exc: RecordMatchError) -> HTTPException:
    """422 carrying the structured join error."""
    return HTTPException(status_code=422, detail=exc.error.model_dump(mode="json"))


def evaluation_http_error(exc: Exception) -> HTTPException:
    """Map Evaluator failures: 503 not configured, 502 upstream failure."""
    if isinstance(exc, EvaluatorNotConfiguredError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


def require_kpis(kpis: list[KPI]) -> list[KPI]:
    active = configured_kpis(kpis)
    if not active:
        raise HTTPException(
            status_code=422,
            detail="At least one KPI needs both a name and a description.",
        )
    return active


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class MatchRequest(BaseModel):
    source_rows: list[Row]
    target_rows: list[Row]


class MatchResponse(BaseModel):
    record_count: int
    joined: list[JoinedRecord]
    mismatches: list[DataMismatchEntry]


class EvaluateRequest(BaseModel):
    source_rows: list[Row]
    target_rows: list[Row]
    kpis: list[KPI]


class EvaluateResponse(BaseModel):
    status: RunStatus
    mode: EvaluationMode
    batch_count: int
    failed_msids: list[str] = Field(default_factory=list)
    results: list[EvaluationResult]
    summaries: list[EvaluationSummary]
    overall_score: float
    mismatches: list[DataMismatchEntry] = Field(default_factory=list)


class ReEvaluateRequest(BaseModel):
    source_row: Row
    target_row: Row
    kpis: list[KPI]
    feedback: str = ""


class SummaryRequest(BaseModel):
    results: list[EvaluationResult]
    kpis: list[KPI]


class SummaryResponse(BaseModel):
    summaries: list[EvaluationSummary]
    statistics: list[KPIStatistics]
    overall_score: float


class QueryRequest(BaseModel):
    question: str = Field(min_length=1)
    results: list[EvaluationResult]
    kpis: list[KPI]


class QueryResponse(BaseModel):
    response: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/match", response_model=MatchResponse)
async def match_datasets(
    body: MatchRequest,
    matcher: RecordMatcher = Depends(get_matcher),
) -> MatchResponse:
    """Validate key columns and parity, then join in target order."""
    try:
        match = matcher.match(body.source_rows, body.target_rows)
    except RecordMatchError as exc:
        raise match_http_error(exc) from exc
    return MatchResponse(
        record_count=len(match.joined),
        joined=match.joined,
        mismatches=match.mismatches,
    )


@router.post("/evaluate", response_model=EvaluateResponse)
async def evaluate(
    body: EvaluateRequest,
    matcher: RecordMatcher = Depends(get_matcher),
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
    evaluator: Evaluator = Depends(get_evaluator),
) -> EvaluateResponse:
    """Join the datasets and score every record in batches.

    Per-record failures appear as score 0 rows. A run where no record
    could be scored returns 502.
    """
    kpis = require_kpis(body.kpis)
    try:
        match = matcher.match(body.source_rows, body.target_rows)
    except RecordMatchError as exc:
        raise match_http_error(exc) from exc

    run = await orchestrator.run_all(match.joined, kpis, evaluator)
    try:
        run.raise_for_status()
    except SystemicEvaluationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    summaries = _aggregator.summarize(run.results, kpis)
    return EvaluateResponse(
        status=run.status,
        mode=run.mode,
        batch_count=run.batch_count,
        failed_msids=run.failed_msids,
        results=run.results,
        summaries=summaries,
        overall_score=_aggregator.overall(summaries),
        mismatches=match.mismatches,
    )


@router.put("/evaluate", response_model=EvaluationResult)
async def re_evaluate(
    body: ReEvaluateRequest,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
    evaluator: Evaluator = Depends(get_evaluator),
) -> EvaluationResult:
    """Re-score a single record, passing the user's feedback to the Evaluator."""
    kpis = require_kpis(body.kpis)
    if KEY_COLUMN not in body.target_row:
        raise HTTPException(status_code=422, detail=f"target_row must include {KEY_COLUMN}.")
    record = JoinedRecord(source=body.source_row, target=body.target_row)
    try:
        return await orchestrator.re_evaluate(record, kpis, body.feedback, evaluator)
    except (EvaluatorNotConfiguredError, EvaluationFailedError) as exc:
        raise evaluation_http_error(exc) from exc


@router.post("/summary", response_model=SummaryResponse)
async def summarize(
    body: SummaryRequest,
    summarizer: Summarizer = Depends(get_summarizer),
) -> SummaryResponse:
    """Per-KPI averages with explanations; falls back to band sentences."""
    summaries = _aggregator.summarize(body.results, body.kpis)
    explained = await summarizer.explain(summaries, body.kpis)
    return SummaryResponse(
        summaries=explained,
        statistics=_aggregator.statistics(body.results, body.kpis),
        overall_score=_aggregator.overall(explained),
    )


@router.post("/query", response_model=QueryResponse)
async def query(
    body: QueryRequest,
    responder: QueryResponder = Depends(get_query_responder),
) -> QueryResponse:
    """Answer a question about the supplied results."""
    try:
        answer = await responder.answer(body.question, body.results, body.kpis)
    except (EvaluatorNotConfiguredError, LLMTransportError) as exc:
        raise evaluation_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return QueryResponse(response=answer)
