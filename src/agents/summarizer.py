"""Summary explanation generators.

Attach a one-sentence ``short_explanation`` to each EvaluationSummary.
RuleSummarizer uses the fixed score-band sentences; LLMSummarizer asks an
LLM and falls back to the band sentence for any KPI it cannot explain.
"""

import logging
from abc import ABC, abstractmethod

from pydantic import Field

from src.agents.llm_client import LLMClient, LLMRequest, LLMTask
from src.agents.prompts import summary as summary_prompt
from src.engine.summary import band_explanation
from src.models.common import KualiteeBase
from src.models.evaluation import EvaluationSummary
from src.models.kpi import KPI

logger = logging.getLogger(__name__)


class KPIExplanation(KualiteeBase):
    kpi_id: int = Field(alias="kpiId")
    explanation: str


class ExplanationResponse(KualiteeBase):
    """Validated summary reply: ``{"explanations": [{kpiId, explanation}]}``."""

    explanations: list[KPIExplanation]


class Summarizer(ABC):
    """Produce short explanations for per-KPI averages."""

    @abstractmethod
    async def explain(
        self,
        summaries: list[EvaluationSummary],
        kpis: list[KPI],
    ) -> list[EvaluationSummary]:
        ...


class RuleSummarizer(Summarizer):
    """Deterministic band sentences (4 / 3 / 2 thresholds)."""

    async def explain(
        self,
        summaries: list[EvaluationSummary],
        kpis: list[KPI],
    ) -> list[EvaluationSummary]:
        return [
            s.model_copy(update={"short_explanation": band_explanation(s.average_score)})
            for s in summaries
        ]


class LLMSummarizer(Summarizer):
    """LLM-written explanations with a per-KPI band-sentence fallback."""

    def __init__(self, llm_client: LLMClient, *, max_tokens: int = 1000) -> None:
        self._client = llm_client
        self._max_tokens = max_tokens

    async def explain(
        self,
        summaries: list[EvaluationSummary],
        kpis: list[KPI],
    ) -> list[EvaluationSummary]:
        if not summaries:
            return []

        generated: dict[int, str] = {}
        if self._client.is_available_for(LLMTask.SUMMARY):
            request = LLMRequest(
                system_prompt=summary_prompt.SYSTEM_PROMPT,
                user_prompt=summary_prompt.build_prompt(summaries, kpis),
                output_schema=ExplanationResponse,
                max_tokens=self._max_tokens,
            )
            try:
                response = await self._client.complete(request, task=LLMTask.SUMMARY)
                generated = {
                    item.kpi_id: item.explanation.strip()
                    for item in response.parsed.explanations
                    if item.explanation.strip()
                }
            except Exception as exc:
                logger.warning("Summary generation failed, using fallback: %s", exc)
        else:
            logger.info("No LLM configured for summaries; using fallback explanations")

        return [
            s.model_copy(
                update={
                    "short_explanation": generated.get(s.kpi_id)
                    or band_explanation(s.average_score),
                }
            )
            for s in summaries
        ]


def build_summarizer(llm_client: LLMClient | None) -> Summarizer:
    if llm_client is None:
        return RuleSummarizer()
    return LLMSummarizer(llm_client)
