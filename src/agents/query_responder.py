"""Query responder — answer free-text questions about a result set."""

import logging
from abc import ABC, abstractmethod

from src.agents.llm_client import LLMClient, LLMRequest, LLMTask
from src.agents.prompts import query as query_prompt
from src.engine.summary import SummaryAggregator
from src.models.evaluation import EvaluationResult
from src.models.kpi import KPI

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response generated"


class QueryResponder(ABC):
    """Stateless answerer over results and KPI definitions."""

    @abstractmethod
    async def answer(
        self,
        question: str,
        results: list[EvaluationResult],
        kpis: list[KPI],
    ) -> str:
        ...


class LLMQueryResponder(QueryResponder):
    """Answer by embedding statistics and a bounded result sample in a prompt.

    Errors propagate: EvaluatorNotConfiguredError without credentials,
    LLMTransportError when the provider cannot be reached.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        *,
        context_limit: int = 50,
        max_tokens: int = 1000,
        aggregator: SummaryAggregator | None = None,
    ) -> None:
        self._client = llm_client
        self._context_limit = context_limit
        self._max_tokens = max_tokens
        self._aggregator = aggregator or SummaryAggregator()

    async def answer(
        self,
        question: str,
        results: list[EvaluationResult],
        kpis: list[KPI],
    ) -> str:
        question = question.strip()
        if not question:
            raise ValueError("Question must not be empty")

        summaries = self._aggregator.summarize(results, kpis)
        request = LLMRequest(
            system_prompt=query_prompt.SYSTEM_PROMPT,
            user_prompt=query_prompt.build_prompt(
                question,
                results,
                kpis,
                summaries,
                context_limit=self._context_limit,
            ),
            max_tokens=self._max_tokens,
        )
        logger.info(
            "Answering query over %d results (%d in context)",
            len(results), min(len(results), self._context_limit),
        )
        response = await self._client.complete(request, task=LLMTask.QUERY)
        return response.content.strip() or NO_RESPONSE
