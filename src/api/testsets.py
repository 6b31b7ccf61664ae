"""FastAPI test set endpoints.

GET    /v1/testsets/{test_set_id}                   — rows, results, statistics
DELETE /v1/testsets/{test_set_id}                   — delete with all data
POST   /v1/testsets/{test_set_id}/evaluate          — (re)run the evaluation
PUT    /v1/testsets/{test_set_id}/results/{msid}    — re-evaluate one record
POST   /v1/testsets/{test_set_id}/query             — question about results

Evaluation runs inline unless CELERY_BROKER_URL is set, in which case it is
dispatched to a worker and the test set stays PENDING until picked up.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.agents.evaluator import Evaluator
from src.agents.llm_client import LLMTransportError
from src.agents.orchestrator import EvaluationOrchestrator
from src.agents.query_responder import QueryResponder
from src.agents.tasks import dispatch_test_set_evaluation, run_test_set_evaluation
from src.api.dependencies import (
    get_evaluator,
    get_matcher,
    get_orchestrator,
    get_query_responder,
    get_test_set_repo,
)
from src.api.evaluation import evaluation_http_error, match_http_error
from src.config.settings import get_settings
from src.db.tables import TestSetRow
from src.engine.matcher import RecordMatcher
from src.engine.summary import SummaryAggregator
from src.models.common import DatasetSide
from src.models.errors import (
    EvaluationFailedError,
    EvaluatorNotConfiguredError,
    RecordMatchError,
)
from src.models.evaluation import EvaluationResult
from src.models.kpi import configured_kpis
from src.models.project import TestSetDetail, TestSetOverview, TestSetStatus
from src.repositories.testsets import TestSetRepository

router = APIRouter(prefix="/v1/testsets", tags=["testsets"])

_aggregator = SummaryAggregator()


async def build_overview(repo: TestSetRepository, row: TestSetRow) -> TestSetOverview:
    """Listing entry with result/row counts and the pooled score."""
    results = await repo.get_results(row.test_set_id)
    return TestSetOverview(
        test_set_id=row.test_set_id,
        project_id=row.project_id,
        name=row.name,
        status=TestSetStatus(row.status),
        result_count=len(results),
        row_count=await repo.count_rows(row.test_set_id, DatasetSide.SOURCE),
        overall_score=_aggregator.pooled_score(results),
        created_at=row.created_at,
    )


async def _get_or_404(repo: TestSetRepository, test_set_id: UUID) -> TestSetRow:
    row = await repo.get(test_set_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Test set {test_set_id} not found.")
    return row


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class EvaluateTestSetResponse(BaseModel):
    test_set_id: str
    status: TestSetStatus
    result_count: int = 0
    failed_count: int = 0
    mode: str | None = None


class ReEvaluateRecordRequest(BaseModel):
    feedback: str = ""


class TestSetQueryRequest(BaseModel):
    question: str = Field(min_length=1)


class TestSetQueryResponse(BaseModel):
    response: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/{test_set_id}", response_model=TestSetDetail)
async def get_test_set(
    test_set_id: UUID,
    repo: TestSetRepository = Depends(get_test_set_repo),
) -> TestSetDetail:
    row = await _get_or_404(repo, test_set_id)
    kpis = repo.kpis(row)
    results = await repo.get_results(test_set_id)
    overview = await build_overview(repo, row)
    return TestSetDetail(
        **overview.model_dump(),
        kpis=kpis,
        source_rows=await repo.get_rows(test_set_id, DatasetSide.SOURCE),
        target_rows=await repo.get_rows(test_set_id, DatasetSide.TARGET),
        results=results,
        mismatches=await repo.get_mismatches(test_set_id),
        statistics=_aggregator.statistics(results, kpis),
        error_message=row.error_message,
        mode=row.mode,
    )


@router.delete("/{test_set_id}", status_code=204)
async def delete_test_set(
    test_set_id: UUID,
    repo: TestSetRepository = Depends(get_test_set_repo),
) -> None:
    if not await repo.delete(test_set_id):
        raise HTTPException(status_code=404, detail=f"Test set {test_set_id} not found.")


@router.post("/{test_set_id}/evaluate", response_model=EvaluateTestSetResponse)
async def evaluate_test_set(
    test_set_id: UUID,
    repo: TestSetRepository = Depends(get_test_set_repo),
    evaluator: Evaluator = Depends(get_evaluator),
) -> EvaluateTestSetResponse:
    """Score every record of the test set, replacing earlier results.

    A run with no valid score is stored with status FAILED and returned
    as such; the caller checks ``status``.
    """
    row = await _get_or_404(repo, test_set_id)
    if not configured_kpis(repo.kpis(row)):
        raise HTTPException(status_code=422, detail="Test set has no configured KPI.")

    settings = get_settings()
    if settings.celery_enabled:
        await repo.update_status(test_set_id, TestSetStatus.PENDING)
        dispatch_test_set_evaluation(test_set_id=test_set_id)
        return EvaluateTestSetResponse(
            test_set_id=str(test_set_id),
            status=TestSetStatus.PENDING,
        )

    try:
        run = await run_test_set_evaluation(
            test_set_id=test_set_id, repo=repo, evaluator=evaluator,
        )
    except RecordMatchError as exc:
        raise match_http_error(exc) from exc

    status = TestSetStatus(run.status.value)
    return EvaluateTestSetResponse(
        test_set_id=str(test_set_id),
        status=status,
        result_count=len(run.results),
        failed_count=len(run.failed_msids),
        mode=run.mode.value,
    )


@router.put("/{test_set_id}/results/{msid}", response_model=EvaluationResult)
async def re_evaluate_record(
    test_set_id: UUID,
    msid: str,
    body: ReEvaluateRecordRequest,
    repo: TestSetRepository = Depends(get_test_set_repo),
    matcher: RecordMatcher = Depends(get_matcher),
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
    evaluator: Evaluator = Depends(get_evaluator),
) -> EvaluationResult:
    """Re-score one record with feedback and splice it into stored results."""
    row = await _get_or_404(repo, test_set_id)
    kpis = configured_kpis(repo.kpis(row))
    if not kpis:
        raise HTTPException(status_code=422, detail="Test set has no configured KPI.")

    try:
        match = matcher.match(
            await repo.get_rows(test_set_id, DatasetSide.SOURCE),
            await repo.get_rows(test_set_id, DatasetSide.TARGET),
        )
    except RecordMatchError as exc:
        raise match_http_error(exc) from exc

    record = next((r for r in match.joined if r.msid == msid), None)
    if record is None:
        raise HTTPException(status_code=404, detail=f"MSID {msid} not found in test set.")

    try:
        result = await orchestrator.re_evaluate(record, kpis, body.feedback, evaluator)
    except (EvaluatorNotConfiguredError, EvaluationFailedError) as exc:
        raise evaluation_http_error(exc) from exc

    await repo.upsert_result(test_set_id, result)
    return result


@router.post("/{test_set_id}/query", response_model=TestSetQueryResponse)
async def query_test_set(
    test_set_id: UUID,
    body: TestSetQueryRequest,
    repo: TestSetRepository = Depends(get_test_set_repo),
    responder: QueryResponder = Depends(get_query_responder),
) -> TestSetQueryResponse:
    row = await _get_or_404(repo, test_set_id)
    results = await repo.get_results(test_set_id)
    try:
        answer = await responder.answer(body.question, results, repo.kpis(row))
    except (EvaluatorNotConfiguredError, LLMTransportError) as exc:
        raise evaluation_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return TestSetQueryResponse(response=answer)
