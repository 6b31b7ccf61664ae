"""Tests for prompt templates: scoring, re-evaluation, summary, query."""

from src.agents.prompts import evaluation, query, summary
from src.models.evaluation import EvaluationResult, EvaluationSummary, ScoreEntry
from src.models.kpi import KPI


SOURCE = {"MSID": "M-1", "headline": "Rates rise", "notes": None}
TARGET = {"MSID": "M-1", "translation": "Les taux montent"}


class TestEvaluationPrompt:
    def test_user_prompt_lists_fields_without_key(self, kpis: list[KPI]) -> None:
        prompt = evaluation.build_user_prompt(SOURCE, TARGET, kpis)
        assert prompt.startswith("EVALUATION REQUEST")
        assert "MSID: M-1" in prompt
        assert "headline: Rates rise" in prompt
        assert "notes: \n" in prompt
        assert "translation: Les taux montent" in prompt
        assert "KPI 2 - Tone of voice: Friendly, on-brand wording." in prompt
        assert prompt.count("MSID") == 1

    def test_system_prompt_has_scale_and_format(self, kpis: list[KPI]) -> None:
        prompt = evaluation.build_system_prompt(kpis)
        assert "5 = Optimal" in prompt
        assert '"kpiId": 1' in prompt
        assert '"kpiId": 2' in prompt

    def test_reevaluation_appends_feedback(self, kpis: list[KPI]) -> None:
        prompt = evaluation.build_reevaluation_prompt(SOURCE, TARGET, kpis, "  Too harsh.  ")
        base = evaluation.build_user_prompt(SOURCE, TARGET, kpis)
        assert prompt == f"{base}\n\nUSER FEEDBACK FOR RECONSIDERATION:\nToo harsh."

    def test_blank_feedback_gets_default_note(self, kpis: list[KPI]) -> None:
        prompt = evaluation.build_reevaluation_prompt(SOURCE, TARGET, kpis, "")
        assert prompt.endswith("Please review more carefully.")


class TestSummaryPrompt:
    def test_lists_averages_and_definitions(self, kpis: list[KPI]) -> None:
        summaries = [
            EvaluationSummary(kpi_id=1, kpi_name="Accuracy", short_name="ACCURACY",
                              average_score=4.256),
        ]
        prompt = summary.build_prompt(summaries, kpis)
        assert "Accuracy (ACCURACY): Average Score 4.26/5" in prompt
        assert "Tone of voice: Friendly, on-brand wording." in prompt
        assert '"explanations"' in prompt


class TestQueryPrompt:
    def _results(self, n: int) -> list[EvaluationResult]:
        return [
            EvaluationResult(
                msid=f"M-{i}",
                scores=[ScoreEntry(kpi_id=1, score=3, explanation="average")],
            )
            for i in range(n)
        ]

    def test_sample_is_bounded(self, kpis: list[KPI]) -> None:
        prompt = query.build_prompt("Which failed?", self._results(5), kpis, [],
                                    context_limit=2)
        assert "- 5 total evaluated records" in prompt
        assert "MSID M-1: KPI_1: 3/5 (average)" in prompt
        assert "MSID M-2" not in prompt
        assert prompt.endswith("USER QUESTION: Which failed?")

    def test_statistics_line(self, kpis: list[KPI]) -> None:
        summaries = [
            EvaluationSummary(kpi_id=1, kpi_name="Accuracy", short_name="ACCURACY",
                              average_score=3.0),
            EvaluationSummary(kpi_id=2, kpi_name="Tone of voice", short_name="TONE",
                              average_score=4.5),
        ]
        prompt = query.build_prompt("q", [], kpis, summaries)
        assert "Statistics: KPI_1 Average: 3.00, KPI_2 Average: 4.50" in prompt
        assert "KPI_2 (TONE): Tone of voice - Friendly, on-brand wording." in prompt
