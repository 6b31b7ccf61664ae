"""Test set evaluation tasks.

When CELERY_BROKER_URL is configured, test set evaluations run in a Celery
worker. When empty (dev/test), they run inline in the request.

run_test_set_evaluation holds the shared logic used by both paths.
"""

import asyncio
import logging
from uuid import UUID

from src.agents.evaluator import Evaluator, build_evaluator
from src.agents.orchestrator import EvaluationOrchestrator
from src.config.settings import get_settings
from src.engine.matcher import RecordMatcher
from src.models.common import DatasetSide
from src.models.errors import EvaluatorNotConfiguredError, RecordMatchError
from src.models.evaluation import EvaluationRun, RunStatus
from src.models.kpi import configured_kpis
from src.models.project import TestSetStatus
from src.repositories.testsets import TestSetRepository

logger = logging.getLogger(__name__)

_RUN_TO_TEST_SET_STATUS: dict[RunStatus, TestSetStatus] = {
    RunStatus.COMPLETED: TestSetStatus.COMPLETED,
    RunStatus.PARTIAL: TestSetStatus.PARTIAL,
    RunStatus.FAILED: TestSetStatus.FAILED,
    RunStatus.CANCELLED: TestSetStatus.CANCELLED,
}


async def run_test_set_evaluation(
    *,
    test_set_id: UUID,
    repo: TestSetRepository,
    evaluator: Evaluator | None = None,
) -> EvaluationRun:
    """Evaluate every record of a stored test set and replace its results.

    Rows are re-joined from storage, scored with the test set's KPI
    snapshot, and the run outcome is written to the test set status.

    Raises:
        KeyError: unknown test set.
        ValueError: no configured KPI in the snapshot.
        RecordMatchError: stored rows no longer join.
        EvaluatorNotConfiguredError: no credential and DEMO_MODE off.
    """
    settings = get_settings()
    row = await repo.get(test_set_id)
    if row is None:
        raise KeyError(f"Test set {test_set_id} not found")

    kpis = configured_kpis(repo.kpis(row))
    if not kpis:
        raise ValueError("Test set has no configured KPI to evaluate")

    source = await repo.get_rows(test_set_id, DatasetSide.SOURCE)
    target = await repo.get_rows(test_set_id, DatasetSide.TARGET)

    try:
        match = RecordMatcher(
            reject_duplicates=settings.MATCH_REJECT_DUPLICATE_KEYS,
        ).match(source, target)
        if evaluator is None:
            evaluator = build_evaluator(settings)
    except (RecordMatchError, EvaluatorNotConfiguredError) as exc:
        await repo.update_status(test_set_id, TestSetStatus.FAILED, error_message=str(exc))
        raise

    await repo.update_status(test_set_id, TestSetStatus.RUNNING, mode=evaluator.mode.value)

    orchestrator = EvaluationOrchestrator(
        batch_size=settings.EVALUATION_BATCH_SIZE,
        timeout=settings.EVALUATION_TIMEOUT_SECONDS,
    )
    run = await orchestrator.run_all(match.joined, kpis, evaluator)

    await repo.replace_results(test_set_id, run.results)
    await repo.replace_mismatches(test_set_id, match.mismatches)

    error_message = None
    if run.status == RunStatus.FAILED:
        error_message = f"All {len(run.results)} record(s) failed evaluation"
    elif run.failed_msids:
        error_message = f"{len(run.failed_msids)} record(s) failed evaluation"
    await repo.update_status(
        test_set_id,
        _RUN_TO_TEST_SET_STATUS[run.status],
        mode=run.mode.value,
        error_message=error_message,
    )
    logger.info(
        "Test set %s evaluated: %s, %d results", test_set_id, run.status.value, len(run.results),
    )
    return run


# ---------------------------------------------------------------------------
# Celery task wrapper
# ---------------------------------------------------------------------------


def _celery_evaluation_task(test_set_id_str: str) -> str:
    """Celery task that evaluates a test set in a worker process.

    Creates its own async session and runs the shared evaluation function.
    """
    from src.db.session import session_scope

    async def _run() -> str:
        async with session_scope() as session:
            repo = TestSetRepository(session)
            try:
                run = await run_test_set_evaluation(
                    test_set_id=UUID(test_set_id_str), repo=repo,
                )
            except (RecordMatchError, EvaluatorNotConfiguredError, ValueError) as exc:
                # Join and credential failures were marked FAILED before the raise.
                logger.error("Test set %s evaluation failed: %s", test_set_id_str, exc)
                return TestSetStatus.FAILED.value
            return _RUN_TO_TEST_SET_STATUS[run.status].value

    return asyncio.run(_run())


def dispatch_test_set_evaluation(*, test_set_id: UUID) -> None:
    """Dispatch a test set evaluation to a Celery worker."""
    settings = get_settings()
    if not settings.celery_enabled:
        logger.warning(
            "dispatch_test_set_evaluation called but CELERY_BROKER_URL not set"
        )
        return

    from celery import Celery

    app = Celery("kualitee", broker=settings.CELERY_BROKER_URL, backend=settings.REDIS_URL)
    app.conf.task_serializer = "json"
    app.conf.result_serializer = "json"

    task = app.task(name="kualitee.evaluate_test_set")(_celery_evaluation_task)
    task.delay(str(test_set_id))
