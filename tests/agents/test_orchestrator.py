"""Tests for EvaluationOrchestrator.

Covers: one result per record in submission order, per-record and
whole-batch fallback, sequential batches, cancellation between batches,
run status (COMPLETED / PARTIAL / FAILED / CANCELLED), re-evaluation
errors and timeout, and splicing a re-evaluated result.
"""

import asyncio

import pytest

from src.agents.evaluator import Evaluator, Pair
from src.agents.orchestrator import EvaluationOrchestrator, splice_result
from src.models.dataset import JoinedRecord, Row
from src.models.errors import (
    EvaluationFailedError,
    EvaluatorNotConfiguredError,
    SystemicEvaluationError,
)
from src.models.evaluation import (
    FALLBACK_EXPLANATION,
    EvaluationMode,
    EvaluationResult,
    RunStatus,
    ScoreEntry,
)
from src.models.kpi import KPI


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _records(*msids: str) -> list[JoinedRecord]:
    return [
        JoinedRecord(source={"MSID": m, "in": f"in {m}"}, target={"MSID": m, "out": f"out {m}"})
        for m in msids
    ]


def _result(msid: str, kpis: list[KPI], score: int = 4) -> EvaluationResult:
    return EvaluationResult(
        msid=msid,
        scores=[ScoreEntry(kpi_id=k.id, score=score, explanation="fine") for k in kpis],
    )


class FakeEvaluator(Evaluator):
    """Records calls; fails, delays or mislabels selected MSIDs."""

    def __init__(
        self,
        *,
        fail: set[str] | None = None,
        delays: dict[str, float] | None = None,
        wrong_msid: set[str] | None = None,
        on_batch=None,
    ) -> None:
        self.fail = fail or set()
        self.delays = delays or {}
        self.wrong_msid = wrong_msid or set()
        self.on_batch = on_batch
        self.batches: list[list[str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.feedback: list[str] = []

    async def score_pair(self, source: Row, target: Row, kpis: list[KPI]) -> EvaluationResult:
        msid = str(target["MSID"])
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(msid, 0))
            if msid in self.fail:
                raise RuntimeError(f"provider error for {msid}")
            return _result("other" if msid in self.wrong_msid else msid, kpis)
        finally:
            self.in_flight -= 1

    async def score_one(self, source, target, kpis, feedback=""):
        self.feedback.append(feedback)
        return await self.score_pair(source, target, kpis)

    async def score_batch(self, pairs: list[Pair], kpis: list[KPI], *, timeout=None):
        self.batches.append([str(target["MSID"]) for _, target in pairs])
        if self.on_batch is not None:
            self.on_batch(len(self.batches))
        return await super().score_batch(pairs, kpis, timeout=timeout)


class BrokenBatchEvaluator(FakeEvaluator):
    async def score_batch(self, pairs, kpis, *, timeout=None):
        raise ConnectionError("provider unreachable")


class ShortBatchEvaluator(FakeEvaluator):
    async def score_batch(self, pairs, kpis, *, timeout=None):
        outcomes = await super().score_batch(pairs, kpis, timeout=timeout)
        return outcomes[:-1]


# ===================================================================
# Bulk run
# ===================================================================


class TestRunAll:
    @pytest.mark.anyio
    async def test_one_result_per_record_in_order(self, kpis: list[KPI]) -> None:
        # Later records finish first; order must follow submission.
        evaluator = FakeEvaluator(delays={"A": 0.03, "B": 0.02, "C": 0.01, "D": 0.0})
        run = await EvaluationOrchestrator(batch_size=4).run_all(
            _records("A", "B", "C", "D"), kpis, evaluator,
        )
        assert [r.msid for r in run.results] == ["A", "B", "C", "D"]
        assert run.status == RunStatus.COMPLETED
        assert run.failed_msids == []

    @pytest.mark.anyio
    async def test_batches_run_sequentially(self, kpis: list[KPI]) -> None:
        evaluator = FakeEvaluator(delays={m: 0.01 for m in "ABCDE"})
        run = await EvaluationOrchestrator(batch_size=2).run_all(
            _records(*"ABCDE"), kpis, evaluator,
        )
        assert evaluator.batches == [["A", "B"], ["C", "D"], ["E"]]
        assert evaluator.max_in_flight == 2
        assert run.batch_count == 3
        assert run.batches_completed == 3

    @pytest.mark.anyio
    async def test_failed_record_gets_fallback(self, kpis: list[KPI]) -> None:
        evaluator = FakeEvaluator(fail={"B"})
        run = await EvaluationOrchestrator().run_all(_records("A", "B", "C"), kpis, evaluator)

        assert [r.msid for r in run.results] == ["A", "B", "C"]
        fallback = run.results[1]
        assert [s.score for s in fallback.scores] == [0, 0]
        assert all(s.explanation == FALLBACK_EXPLANATION for s in fallback.scores)
        assert [s.kpi_id for s in fallback.scores] == [1, 2]
        assert run.status == RunStatus.PARTIAL
        assert run.failed_msids == ["B"]

    @pytest.mark.anyio
    async def test_timeout_falls_back(self, kpis: list[KPI]) -> None:
        evaluator = FakeEvaluator(delays={"B": 1.0})
        run = await EvaluationOrchestrator(timeout=0.05).run_all(
            _records("A", "B"), kpis, evaluator,
        )
        assert run.failed_msids == ["B"]
        assert run.results[0].scores[0].score == 4

    @pytest.mark.anyio
    async def test_mislabelled_result_falls_back(self, kpis: list[KPI]) -> None:
        evaluator = FakeEvaluator(wrong_msid={"A"})
        run = await EvaluationOrchestrator().run_all(_records("A", "B"), kpis, evaluator)
        assert run.results[0].msid == "A"
        assert run.results[0].failed
        assert run.failed_msids == ["A"]

    @pytest.mark.anyio
    async def test_whole_batch_failure_falls_back(self, kpis: list[KPI]) -> None:
        run = await EvaluationOrchestrator(batch_size=2).run_all(
            _records("A", "B", "C"), kpis, BrokenBatchEvaluator(),
        )
        assert [r.msid for r in run.results] == ["A", "B", "C"]
        assert all(r.failed for r in run.results)
        assert run.status == RunStatus.FAILED

    @pytest.mark.anyio
    async def test_misaligned_batch_is_discarded(self, kpis: list[KPI]) -> None:
        run = await EvaluationOrchestrator().run_all(
            _records("A", "B"), kpis, ShortBatchEvaluator(),
        )
        assert len(run.results) == 2
        assert all(r.failed for r in run.results)

    @pytest.mark.anyio
    async def test_all_failed_is_systemic(self, kpis: list[KPI]) -> None:
        run = await EvaluationOrchestrator().run_all(
            _records("A", "B"), kpis, FakeEvaluator(fail={"A", "B"}),
        )
        assert run.status == RunStatus.FAILED
        with pytest.raises(SystemicEvaluationError) as excinfo:
            run.raise_for_status()
        assert excinfo.value.run is run

    @pytest.mark.anyio
    async def test_empty_input_completes(self, kpis: list[KPI]) -> None:
        run = await EvaluationOrchestrator().run_all([], kpis, FakeEvaluator())
        assert run.status == RunStatus.COMPLETED
        assert run.results == []
        assert run.batch_count == 0
        run.raise_for_status()

    @pytest.mark.anyio
    async def test_requires_kpis(self) -> None:
        with pytest.raises(ValueError):
            await EvaluationOrchestrator().run_all(_records("A"), [], FakeEvaluator())

    @pytest.mark.anyio
    async def test_mode_reported(self, kpis: list[KPI]) -> None:
        run = await EvaluationOrchestrator().run_all(_records("A"), kpis, FakeEvaluator())
        assert run.mode == EvaluationMode.LIVE


class TestCancellation:
    @pytest.mark.anyio
    async def test_stops_between_batches(self, kpis: list[KPI]) -> None:
        cancel = asyncio.Event()

        def cancel_after_first(batch_number: int) -> None:
            if batch_number == 1:
                cancel.set()

        evaluator = FakeEvaluator(on_batch=cancel_after_first)
        run = await EvaluationOrchestrator(batch_size=2).run_all(
            _records(*"ABCDE"), kpis, evaluator, cancel_event=cancel,
        )

        # The in-flight batch finishes; no further batch starts.
        assert evaluator.batches == [["A", "B"]]
        assert [r.msid for r in run.results] == ["A", "B"]
        assert run.status == RunStatus.CANCELLED
        assert run.batches_completed == 1
        assert run.batch_count == 3

    @pytest.mark.anyio
    async def test_cancelled_before_start(self, kpis: list[KPI]) -> None:
        cancel = asyncio.Event()
        cancel.set()
        evaluator = FakeEvaluator()
        run = await EvaluationOrchestrator().run_all(
            _records("A"), kpis, evaluator, cancel_event=cancel,
        )
        assert evaluator.batches == []
        assert run.results == []
        assert run.status == RunStatus.CANCELLED


# ===================================================================
# Re-evaluation
# ===================================================================


class TestReEvaluate:
    @pytest.mark.anyio
    async def test_returns_new_result(self, kpis: list[KPI]) -> None:
        evaluator = FakeEvaluator()
        [record] = _records("A")
        result = await EvaluationOrchestrator().re_evaluate(
            record, kpis, "Tone is fine.", evaluator,
        )
        assert result.msid == "A"
        assert evaluator.feedback == ["Tone is fine."]

    @pytest.mark.anyio
    async def test_failure_raises(self, kpis: list[KPI]) -> None:
        [record] = _records("A")
        with pytest.raises(EvaluationFailedError) as excinfo:
            await EvaluationOrchestrator().re_evaluate(
                record, kpis, "", FakeEvaluator(fail={"A"}),
            )
        assert excinfo.value.msid == "A"
        assert "provider error" in excinfo.value.reason

    @pytest.mark.anyio
    async def test_timeout_raises(self, kpis: list[KPI]) -> None:
        [record] = _records("A")
        with pytest.raises(EvaluationFailedError, match="timed out"):
            await EvaluationOrchestrator(timeout=0.05).re_evaluate(
                record, kpis, "", FakeEvaluator(delays={"A": 1.0}),
            )

    @pytest.mark.anyio
    async def test_wrong_msid_raises(self, kpis: list[KPI]) -> None:
        [record] = _records("A")
        with pytest.raises(EvaluationFailedError):
            await EvaluationOrchestrator().re_evaluate(
                record, kpis, "", FakeEvaluator(wrong_msid={"A"}),
            )

    @pytest.mark.anyio
    async def test_not_configured_propagates(self, kpis: list[KPI]) -> None:
        class Unconfigured(FakeEvaluator):
            async def score_one(self, source, target, kpis, feedback=""):
                raise EvaluatorNotConfiguredError("no key")

        [record] = _records("A")
        with pytest.raises(EvaluatorNotConfiguredError):
            await EvaluationOrchestrator().re_evaluate(record, kpis, "", Unconfigured())


class TestSpliceResult:
    def test_replaces_only_matching_entry(self, kpis: list[KPI]) -> None:
        results = [_result("A", kpis), _result("B", kpis), _result("C", kpis)]
        new = _result("B", kpis, score=1)

        spliced = splice_result(results, new)

        assert [r.msid for r in spliced] == ["A", "B", "C"]
        assert spliced[1] is new
        assert spliced[0] is results[0]
        assert spliced[2] is results[2]
        assert results[1].scores[0].score == 4

    def test_unknown_msid_appends(self, kpis: list[KPI]) -> None:
        results = [_result("A", kpis)]
        spliced = splice_result(results, _result("Z", kpis))
        assert [r.msid for r in spliced] == ["A", "Z"]
