"""Tests for the Kualitee domain models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.models.common import DatasetSide, new_uuid7
from src.models.dataset import JoinedRecord
from src.models.evaluation import (
    FALLBACK_EXPLANATION,
    EvaluationResult,
    ScoreEntry,
    fallback_result,
)
from src.models.kpi import KPI, configured_kpis, derive_short_name
from src.models.pipeline import PipelineState
from src.models.project import default_test_set_name


# ===================================================================
# KPI
# ===================================================================


class TestKPI:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("Tone of voice", "TONE"),
            ("internationalization quality", "INTERNATIO"),
            ("  accuracy ", "ACCURACY"),
            ("", "KPI4"),
        ],
    )
    def test_short_name_derived(self, name: str, expected: str) -> None:
        assert derive_short_name(name, 4) == expected
        assert KPI(id=4, name=name).short_name == expected

    def test_explicit_short_name_normalized(self) -> None:
        kpi = KPI.model_validate({"id": 1, "name": "Accuracy", "shortName": " facts "})
        assert kpi.short_name == "FACTS"

    def test_configured_needs_name_and_description(self) -> None:
        kpis = [
            KPI(id=1, name="Accuracy", description="Facts hold."),
            KPI(id=2, name="Tone", description="  "),
            KPI(id=3, name="", description="No name"),
        ]
        assert [k.id for k in configured_kpis(kpis)] == [1]

    def test_id_must_be_positive(self) -> None:
        with pytest.raises(PydanticValidationError):
            KPI(id=0, name="x", description="y")

    def test_frozen(self) -> None:
        kpi = KPI(id=1, name="Accuracy", description="Facts hold.")
        with pytest.raises(PydanticValidationError):
            kpi.name = "Other"


# ===================================================================
# Datasets
# ===================================================================


class TestDataset:
    def test_side_labels(self) -> None:
        assert DatasetSide.SOURCE.label == "SOURCE_INPUT"
        assert DatasetSide.TARGET.label == "TARGET_OUTPUT"
        assert DatasetSide.SOURCE.other == DatasetSide.TARGET

    def test_joined_record_msid_from_target(self) -> None:
        record = JoinedRecord(source={"MSID": "1"}, target={"MSID": "1", "x": None})
        assert record.msid == "1"

    def test_uuid7_is_time_ordered(self) -> None:
        first, second = new_uuid7(), new_uuid7()
        assert first.version == 7
        assert first < second


# ===================================================================
# Evaluation results
# ===================================================================


class TestEvaluationResult:
    def test_score_bounds(self) -> None:
        ScoreEntry(kpi_id=1, score=0)
        ScoreEntry(kpi_id=1, score=5)
        with pytest.raises(PydanticValidationError):
            ScoreEntry(kpi_id=1, score=6)

    def test_alias_round_trip(self) -> None:
        entry = ScoreEntry.model_validate({"kpiId": 2, "score": 3, "explanation": "ok"})
        assert entry.kpi_id == 2
        assert entry.model_dump(by_alias=True)["kpiId"] == 2

    def test_fallback_has_zero_per_kpi(self) -> None:
        kpis = [KPI(id=3, name="a", description="b"), KPI(id=1, name="c", description="d")]
        result = fallback_result("M-1", kpis)
        assert [(s.kpi_id, s.score) for s in result.scores] == [(3, 0), (1, 0)]
        assert all(s.explanation == FALLBACK_EXPLANATION for s in result.scores)
        assert result.failed

    def test_partially_scored_is_not_failed(self) -> None:
        result = EvaluationResult(
            msid="A",
            scores=[ScoreEntry(kpi_id=1, score=0), ScoreEntry(kpi_id=2, score=3)],
        )
        assert not result.failed
        assert result.score_for(2).score == 3
        assert result.score_for(9) is None


# ===================================================================
# Projects and pipeline state
# ===================================================================


def test_default_test_set_name() -> None:
    now = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
    assert default_test_set_name(0, now) == "Run #1 - 2026-10-18"
    assert default_test_set_name(4, now) == "Run #5 - 2026-10-18"


def test_pipeline_state_record_lookup() -> None:
    state = PipelineState(
        joined=[JoinedRecord(source={"MSID": "A"}, target={"MSID": "A"})],
    )
    assert state.record("A") is not None
    assert state.record("B") is None
