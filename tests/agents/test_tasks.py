"""Tests for the shared test set evaluation task."""

import pytest
from uuid_extensions import uuid7

from src.agents.evaluator import DemoEvaluator
from src.agents.tasks import run_test_set_evaluation
from src.models.common import DatasetSide
from src.models.errors import EvaluatorNotConfiguredError, KeyParityError
from src.models.evaluation import RunStatus
from src.models.kpi import KPI
from src.models.project import TestSetStatus
from src.repositories.projects import ProjectRepository
from src.repositories.testsets import TestSetRepository


class AlwaysFailingEvaluator(DemoEvaluator):
    async def score_pair(self, source, target, kpis):
        raise RuntimeError("provider down")


async def _make_test_set(db_session, kpis: list[KPI], *, target=None):
    project_id = uuid7()
    await ProjectRepository(db_session).create(project_id=project_id, name="Docs", kpis=kpis)
    repo = TestSetRepository(db_session)
    row = await repo.create(
        test_set_id=uuid7(),
        project_id=project_id,
        name="Run #1",
        kpis=kpis,
        source_rows=[{"MSID": "A", "text": "one"}, {"MSID": "B", "text": ""}],
        target_rows=target or [{"MSID": "B", "out": "deux"}, {"MSID": "A", "out": "un"}],
    )
    return repo, row.test_set_id


class TestRunTestSetEvaluation:
    @pytest.mark.anyio
    async def test_stores_results_and_status(self, db_session, kpis: list[KPI]) -> None:
        repo, test_set_id = await _make_test_set(db_session, kpis)

        run = await run_test_set_evaluation(
            test_set_id=test_set_id, repo=repo, evaluator=DemoEvaluator(),
        )

        assert run.status == RunStatus.COMPLETED
        stored = await repo.get_results(test_set_id)
        assert [r.msid for r in stored] == ["B", "A"]
        assert stored == run.results
        row = await repo.get(test_set_id)
        assert row.status == TestSetStatus.COMPLETED.value
        assert row.mode == "demo"
        assert row.error_message is None
        mismatches = await repo.get_mismatches(test_set_id)
        assert [m.field for m in mismatches] == ["SOURCE.text"]

    @pytest.mark.anyio
    async def test_rerun_replaces_results(self, db_session, kpis: list[KPI]) -> None:
        repo, test_set_id = await _make_test_set(db_session, kpis)
        await run_test_set_evaluation(test_set_id=test_set_id, repo=repo, evaluator=DemoEvaluator())
        await run_test_set_evaluation(test_set_id=test_set_id, repo=repo, evaluator=DemoEvaluator())
        assert len(await repo.get_results(test_set_id)) == 2

    @pytest.mark.anyio
    async def test_systemic_failure_is_stored(self, db_session, kpis: list[KPI]) -> None:
        repo, test_set_id = await _make_test_set(db_session, kpis)

        run = await run_test_set_evaluation(
            test_set_id=test_set_id, repo=repo, evaluator=AlwaysFailingEvaluator(),
        )

        assert run.status == RunStatus.FAILED
        row = await repo.get(test_set_id)
        assert row.status == TestSetStatus.FAILED.value
        assert "All 2 record(s) failed" in row.error_message
        assert all(r.failed for r in await repo.get_results(test_set_id))

    @pytest.mark.anyio
    async def test_join_failure_marks_failed(self, db_session, kpis: list[KPI]) -> None:
        repo, test_set_id = await _make_test_set(
            db_session, kpis, target=[{"MSID": "A", "out": "un"}],
        )
        with pytest.raises(KeyParityError):
            await run_test_set_evaluation(
                test_set_id=test_set_id, repo=repo, evaluator=DemoEvaluator(),
            )
        row = await repo.get(test_set_id)
        assert row.status == TestSetStatus.FAILED.value
        assert await repo.count_rows(test_set_id, DatasetSide.SOURCE) == 2

    @pytest.mark.anyio
    async def test_no_evaluator_configured(self, db_session, kpis: list[KPI]) -> None:
        repo, test_set_id = await _make_test_set(db_session, kpis)
        with pytest.raises(EvaluatorNotConfiguredError):
            await run_test_set_evaluation(test_set_id=test_set_id, repo=repo)
        assert (await repo.get(test_set_id)).status == TestSetStatus.FAILED.value

    @pytest.mark.anyio
    async def test_demo_mode_from_settings(
        self, db_session, kpis: list[KPI], monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("DEMO_MODE", "true")
        repo, test_set_id = await _make_test_set(db_session, kpis)
        run = await run_test_set_evaluation(test_set_id=test_set_id, repo=repo)
        assert run.mode.value == "demo"

    @pytest.mark.anyio
    async def test_unknown_test_set(self, db_session) -> None:
        with pytest.raises(KeyError):
            await run_test_set_evaluation(
                test_set_id=uuid7(), repo=TestSetRepository(db_session),
            )
