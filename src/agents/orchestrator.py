"""Evaluation orchestrator — batched bulk scoring and single-record re-evaluation.

Bulk run:
1. Partition joined records with BatchPlanner.
2. Score batches strictly one after another; within a batch every record
   is scored concurrently and the batch is joined before the next starts.
3. A record whose scoring failed (error, timeout, bad output) gets the
   all-zero fallback result. A batch that fails as a whole falls back for
   every record in it. The run itself never raises for scoring errors.
4. Results come back one per record, in submission order.

Status semantics:
- COMPLETED: every record received valid scores
- PARTIAL: some records fell back to score 0
- FAILED: non-empty input and no record received a valid score
- CANCELLED: stopped between batches; results so far are kept

Re-evaluation raises EvaluationFailedError instead of falling back.
"""

import asyncio
import logging

from src.agents.evaluator import Evaluator
from src.engine.batch import DEFAULT_BATCH_SIZE, BatchPlanner
from src.models.dataset import JoinedRecord
from src.models.errors import EvaluationFailedError, EvaluatorNotConfiguredError
from src.models.evaluation import (
    EvaluationResult,
    EvaluationRun,
    RunStatus,
    fallback_result,
)
from src.models.kpi import KPI

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


def splice_result(
    results: list[EvaluationResult],
    new: EvaluationResult,
) -> list[EvaluationResult]:
    """Return ``results`` with the entry for ``new.msid`` replaced.

    Other entries and their order are untouched. Appends when no entry
    for that MSID exists.
    """
    spliced = list(results)
    for i, existing in enumerate(spliced):
        if existing.msid == new.msid:
            spliced[i] = new
            return spliced
    spliced.append(new)
    return spliced


def _final_status(
    results: list[EvaluationResult],
    failed: list[str],
    cancelled: bool,
) -> RunStatus:
    if cancelled:
        return RunStatus.CANCELLED
    if results and len(failed) == len(results):
        return RunStatus.FAILED
    if failed:
        return RunStatus.PARTIAL
    return RunStatus.COMPLETED


class EvaluationOrchestrator:
    """Drive an Evaluator over joined records in bounded-size batches."""

    def __init__(
        self,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._planner = BatchPlanner(batch_size)
        self.timeout = timeout

    @property
    def batch_size(self) -> int:
        return self._planner.batch_size

    async def run_all(
        self,
        records: list[JoinedRecord],
        kpis: list[KPI],
        evaluator: Evaluator,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> EvaluationRun:
        """Score every record and return the run report.

        Raises:
            ValueError: ``kpis`` is empty.
        """
        if not kpis:
            raise ValueError("At least one configured KPI is required to evaluate")

        batches = self._planner.plan(records)
        results: list[EvaluationResult] = []
        failed: list[str] = []
        completed = 0
        cancelled = False

        logger.info(
            "Starting evaluation of %d records in %d batches (%s mode)",
            len(records), len(batches), evaluator.mode.value,
        )

        for number, batch in enumerate(batches, start=1):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "Evaluation cancelled before batch %d/%d; %d results kept",
                    number, len(batches), len(results),
                )
                cancelled = True
                break

            logger.info(
                "Processing batch %d/%d (%d records)", number, len(batches), len(batch),
            )
            batch_results = await self._run_batch(batch, kpis, evaluator)
            for result in batch_results:
                if result.failed:
                    failed.append(result.msid)
            results.extend(batch_results)
            completed += 1

        status = _final_status(results, failed, cancelled)
        if status == RunStatus.FAILED:
            logger.error(
                "Evaluation produced no valid scores for %d records; "
                "check the Evaluator configuration",
                len(results),
            )
        else:
            logger.info(
                "Evaluation %s: %d results, %d failed",
                status.value.lower(), len(results), len(failed),
            )

        return EvaluationRun(
            status=status,
            results=results,
            batch_count=len(batches),
            batches_completed=completed,
            failed_msids=failed,
            mode=evaluator.mode,
        )

    async def _run_batch(
        self,
        batch: list[JoinedRecord],
        kpis: list[KPI],
        evaluator: Evaluator,
    ) -> list[EvaluationResult]:
        pairs = [(record.source, record.target) for record in batch]
        try:
            outcomes = await evaluator.score_batch(pairs, kpis, timeout=self.timeout)
        except Exception as exc:
            logger.exception("Batch of %d records failed: %s", len(batch), exc)
            return [fallback_result(record.msid, kpis) for record in batch]

        if len(outcomes) != len(batch):
            logger.error(
                "Evaluator returned %d outcomes for a batch of %d; discarding batch",
                len(outcomes), len(batch),
            )
            return [fallback_result(record.msid, kpis) for record in batch]

        results: list[EvaluationResult] = []
        for record, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Evaluation failed for MSID %s: %s",
                    record.msid, _describe(outcome),
                )
                results.append(fallback_result(record.msid, kpis))
            elif outcome.msid != record.msid:
                logger.warning(
                    "Evaluator returned MSID %s for record %s; using fallback",
                    outcome.msid, record.msid,
                )
                results.append(fallback_result(record.msid, kpis))
            else:
                results.append(outcome)
        return results

    async def re_evaluate(
        self,
        record: JoinedRecord,
        kpis: list[KPI],
        feedback: str,
        evaluator: Evaluator,
    ) -> EvaluationResult:
        """Re-score one record with corrective ``feedback``.

        Raises:
            EvaluatorNotConfiguredError: no scoring credential configured.
            EvaluationFailedError: the call failed, timed out, or returned
                output that could not be validated.
        """
        if not kpis:
            raise ValueError("At least one configured KPI is required to evaluate")

        logger.info("Re-evaluating MSID %s with user feedback", record.msid)
        coro = evaluator.score_one(record.source, record.target, kpis, feedback)
        try:
            if self.timeout is None:
                result = await coro
            else:
                result = await asyncio.wait_for(coro, self.timeout)
        except EvaluatorNotConfiguredError:
            raise
        except TimeoutError as exc:
            raise EvaluationFailedError(
                record.msid, f"timed out after {self.timeout}s"
            ) from exc
        except Exception as exc:
            raise EvaluationFailedError(record.msid, _describe(exc)) from exc

        if result.msid != record.msid:
            raise EvaluationFailedError(
                record.msid, f"evaluator returned MSID {result.msid}"
            )
        logger.info("Re-evaluation complete for MSID %s", record.msid)
        return result


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
