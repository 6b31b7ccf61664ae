"""Summary aggregator — per-KPI statistics and status classification.

Two classifiers live here and must stay separate:
- ``classify_status`` (4.5 / 3.5 / 2.5) drives the status badge.
- ``explanation_band`` (4 / 3 / 2) picks the summary explanation text.

Zero scores mark failed evaluations and are excluded from every
statistic. Deterministic, no LLM calls.
"""

from __future__ import annotations

import numpy as np

from src.models.evaluation import (
    FAILED_SCORE,
    EvaluationResult,
    EvaluationSummary,
    ExplanationBand,
    KPIStatistics,
    ScoreStatus,
)
from src.models.kpi import KPI

# Status badge thresholds, checked in order.
_STATUS_THRESHOLDS: list[tuple[float, ScoreStatus]] = [
    (4.5, ScoreStatus.OPTIMAL),
    (3.5, ScoreStatus.GOOD),
    (2.5, ScoreStatus.MARGINAL),
]

# Explanation band thresholds, checked in order.
_BAND_THRESHOLDS: list[tuple[float, ExplanationBand]] = [
    (4.0, ExplanationBand.OPTIMAL),
    (3.0, ExplanationBand.ACCEPTABLE),
    (2.0, ExplanationBand.BELOW_THRESHOLD),
]

BAND_EXPLANATIONS: dict[ExplanationBand, str] = {
    ExplanationBand.OPTIMAL: "Performance meets optimal standards. Quality targets achieved.",
    ExplanationBand.ACCEPTABLE: "Acceptable performance with room for improvement.",
    ExplanationBand.BELOW_THRESHOLD: "Below threshold. Review and remediation recommended.",
    ExplanationBand.CRITICAL: "Critical issues detected. Immediate attention required.",
}

FAILURE_THRESHOLD = 3


def classify_status(score: float) -> ScoreStatus:
    """Status badge for an average score."""
    for threshold, status in _STATUS_THRESHOLDS:
        if score >= threshold:
            return status
    return ScoreStatus.CRITICAL


def explanation_band(score: float) -> ExplanationBand:
    """Explanation band for an average score."""
    for threshold, band in _BAND_THRESHOLDS:
        if score >= threshold:
            return band
    return ExplanationBand.CRITICAL


def band_explanation(score: float) -> str:
    """Deterministic one-sentence explanation for an average score."""
    return BAND_EXPLANATIONS[explanation_band(score)]


def valid_scores(results: list[EvaluationResult], kpi_id: int) -> list[int]:
    """All scores > 0 recorded for ``kpi_id``, in result order."""
    scores: list[int] = []
    for result in results:
        for entry in result.scores:
            if entry.kpi_id == kpi_id and entry.score > FAILED_SCORE:
                scores.append(entry.score)
    return scores


def mean(scores: list[int]) -> float:
    return float(np.mean(scores)) if scores else 0.0


def median(scores: list[int]) -> float:
    """Median with the even-length midpoint average; 0.0 when empty."""
    return float(np.median(scores)) if scores else 0.0


class SummaryAggregator:
    """Compute per-KPI aggregates over a result set."""

    def summarize(
        self,
        results: list[EvaluationResult],
        kpis: list[KPI],
    ) -> list[EvaluationSummary]:
        """Average score per KPI with a rule-table explanation.

        KPIs with no valid score get an average of 0.0.
        """
        summaries: list[EvaluationSummary] = []
        for kpi in kpis:
            average = mean(valid_scores(results, kpi.id))
            summaries.append(
                EvaluationSummary(
                    kpi_id=kpi.id,
                    kpi_name=kpi.name,
                    short_name=kpi.short_name,
                    average_score=average,
                    short_explanation=band_explanation(average),
                )
            )
        return summaries

    def statistics(
        self,
        results: list[EvaluationResult],
        kpis: list[KPI],
    ) -> list[KPIStatistics]:
        """Mean, median, and count per KPI, rounded to 2 decimals."""
        stats: list[KPIStatistics] = []
        for kpi in kpis:
            scores = valid_scores(results, kpi.id)
            kpi_mean = round(mean(scores), 2)
            stats.append(
                KPIStatistics(
                    kpi_id=kpi.id,
                    kpi_name=kpi.name,
                    short_name=kpi.short_name,
                    mean=kpi_mean,
                    median=round(median(scores), 2),
                    count=len(scores),
                    status=classify_status(kpi_mean),
                )
            )
        return stats

    @staticmethod
    def overall(summaries: list[EvaluationSummary]) -> float:
        """Mean of per-KPI averages. KPIs without valid scores count as 0."""
        if not summaries:
            return 0.0
        return float(np.mean([s.average_score for s in summaries]))

    @staticmethod
    def pooled_score(results: list[EvaluationResult]) -> float:
        """Mean of every valid score across all records and KPIs (2 dp)."""
        scores = [
            entry.score
            for result in results
            for entry in result.scores
            if entry.score > FAILED_SCORE
        ]
        return round(mean(scores), 2)

    @staticmethod
    def failures(
        results: list[EvaluationResult],
        threshold: int = FAILURE_THRESHOLD,
    ) -> list[EvaluationResult]:
        """Records with at least one score below ``threshold`` (failed 0s included)."""
        return [
            result for result in results
            if any(entry.score < threshold for entry in result.scores)
        ]
