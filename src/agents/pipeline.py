"""Evaluation pipeline — drive one session through match, score, summarize.

Owns a PipelineState and exposes the operations each phase transition
invokes. Illegal transitions raise RuntimeError and leave state unchanged.
"""

import asyncio
import logging

from src.agents.evaluator import Evaluator
from src.agents.orchestrator import EvaluationOrchestrator, splice_result
from src.agents.summarizer import RuleSummarizer, Summarizer
from src.engine.matcher import RecordMatcher
from src.engine.summary import SummaryAggregator
from src.models.dataset import Row
from src.models.errors import RecordMatchError
from src.models.evaluation import EvaluationResult, EvaluationRun, EvaluationSummary
from src.models.kpi import KPI, configured_kpis
from src.models.pipeline import PipelinePhase, PipelineState

logger = logging.getLogger(__name__)


class EvaluationPipeline:
    """Explicit state holder for the UPLOAD -> RESULTS flow."""

    def __init__(
        self,
        evaluator: Evaluator,
        *,
        matcher: RecordMatcher | None = None,
        orchestrator: EvaluationOrchestrator | None = None,
        aggregator: SummaryAggregator | None = None,
        summarizer: Summarizer | None = None,
        state: PipelineState | None = None,
    ) -> None:
        self.evaluator = evaluator
        self.matcher = matcher or RecordMatcher()
        self.orchestrator = orchestrator or EvaluationOrchestrator()
        self.aggregator = aggregator or SummaryAggregator()
        self.summarizer = summarizer or RuleSummarizer()
        self.state = state or PipelineState()

    def _require(self, *phases: PipelinePhase) -> None:
        if self.state.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise RuntimeError(
                f"Operation not allowed in phase {self.state.phase.value} (expected {allowed})"
            )

    def load(self, source_rows: list[Row], target_rows: list[Row]) -> PipelineState:
        """Join uploaded datasets. Moves to KPI_CONFIG, or ERROR on failure.

        The RecordMatchError is re-raised after the state records it.
        """
        self._require(PipelinePhase.UPLOAD, PipelinePhase.ERROR)
        self.state.source_rows = source_rows
        self.state.target_rows = target_rows
        try:
            match = self.matcher.match(source_rows, target_rows)
        except RecordMatchError as exc:
            self.state.validation_error = exc.error
            self.state.joined = []
            self.state.mismatches = []
            self.state.phase = PipelinePhase.ERROR
            raise
        self.state.validation_error = None
        self.state.joined = match.joined
        self.state.mismatches = match.mismatches
        self.state.phase = PipelinePhase.KPI_CONFIG
        return self.state

    def configure_kpis(self, kpis: list[KPI]) -> list[KPI]:
        """Keep the configured KPIs. Raises ValueError if none qualify."""
        self._require(PipelinePhase.KPI_CONFIG, PipelinePhase.RESULTS)
        active = configured_kpis(kpis)
        if not active:
            raise ValueError("At least one KPI needs both a name and a description")
        self.state.kpis = active
        return active

    async def evaluate(self, *, cancel_event: asyncio.Event | None = None) -> EvaluationRun:
        """Score every joined record and move to RESULTS.

        A systemic failure still lands in RESULTS with the fallback rows so
        they can be inspected; the caller checks ``run.status``.
        """
        self._require(PipelinePhase.KPI_CONFIG, PipelinePhase.RESULTS)
        if not self.state.kpis:
            raise ValueError("Configure at least one KPI before evaluating")

        previous = self.state.phase
        self.state.phase = PipelinePhase.EVALUATING
        try:
            run = await self.orchestrator.run_all(
                self.state.joined,
                self.state.kpis,
                self.evaluator,
                cancel_event=cancel_event,
            )
        except Exception:
            self.state.phase = previous
            raise

        self.state.results = run.results
        self.state.run_status = run.status
        self.state.mode = run.mode
        self.state.summaries = self.aggregator.summarize(run.results, self.state.kpis)
        self.state.phase = PipelinePhase.RESULTS
        return run

    async def re_evaluate(self, msid: str, feedback: str) -> EvaluationResult:
        """Re-score one record and splice it into the current results.

        Raises KeyError for an unknown MSID and EvaluationFailedError when
        the Evaluator fails; existing results are kept in either case.
        """
        self._require(PipelinePhase.RESULTS)
        record = self.state.record(msid)
        if record is None:
            raise KeyError(f"MSID {msid} not found")

        self.state.phase = PipelinePhase.EVALUATING
        try:
            result = await self.orchestrator.re_evaluate(
                record, self.state.kpis, feedback, self.evaluator,
            )
        finally:
            self.state.phase = PipelinePhase.RESULTS

        self.state.results = splice_result(self.state.results, result)
        self.state.summaries = self.aggregator.summarize(self.state.results, self.state.kpis)
        return result

    async def summarize(self) -> list[EvaluationSummary]:
        """Refresh summaries with the configured summarizer's explanations."""
        self._require(PipelinePhase.RESULTS)
        base = self.aggregator.summarize(self.state.results, self.state.kpis)
        self.state.summaries = await self.summarizer.explain(base, self.state.kpis)
        return self.state.summaries

    def overall(self) -> float:
        return self.aggregator.overall(self.state.summaries)

    def reset(self) -> PipelineState:
        """Discard everything and return to UPLOAD."""
        self.state = PipelineState()
        logger.info("Pipeline reset")
        return self.state
