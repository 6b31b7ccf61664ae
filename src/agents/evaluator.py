"""Evaluators — score source/target pairs against KPIs.

An Evaluator is the external scoring capability behind the orchestrator.
``score_batch`` fans a batch out concurrently and returns one entry per
pair, positionally: an EvaluationResult or the exception that pair raised.
Only the orchestrator decides what a failed pair becomes.

Two implementations:
- LLMEvaluator: prompts an LLM through LLMClient, validates the JSON reply.
- DemoEvaluator: deterministic weighted scores seeded by MSID, for demos
  without credentials.
"""

import asyncio
import hashlib
import logging
import random
from abc import ABC, abstractmethod

from pydantic import Field

from src.agents.llm_client import LLMClient, LLMRequest, LLMTask
from src.agents.prompts.evaluation import (
    build_reevaluation_prompt,
    build_system_prompt,
    build_user_prompt,
)
from src.config.settings import Settings
from src.models.common import KEY_COLUMN, KualiteeBase
from src.models.dataset import Row
from src.models.errors import EvaluatorNotConfiguredError
from src.models.evaluation import (
    MAX_SCORE,
    MIN_SCORE,
    EvaluationMode,
    EvaluationResult,
    ScoreEntry,
)
from src.models.kpi import KPI

logger = logging.getLogger(__name__)

Pair = tuple[Row, Row]


def _msid(target: Row) -> str:
    value = target.get(KEY_COLUMN)
    return "" if value is None else str(value)


# ---------------------------------------------------------------------------
# Response schema
# ---------------------------------------------------------------------------


class ScoredKPI(KualiteeBase):
    """One KPI score as returned by the model. Only 1-5 is accepted."""

    kpi_id: int = Field(alias="kpiId")
    score: int = Field(ge=MIN_SCORE, le=MAX_SCORE)
    explanation: str = ""


class ScoreResponse(KualiteeBase):
    """Validated scoring reply: ``{"scores": [{kpiId, score, explanation}]}``."""

    scores: list[ScoredKPI]

    def to_result(self, msid: str, kpis: list[KPI]) -> EvaluationResult:
        """Map the reply onto ``kpis`` in requested order.

        Raises ValueError when a requested KPI has no score.
        """
        by_id = {entry.kpi_id: entry for entry in self.scores}
        missing = [kpi.id for kpi in kpis if kpi.id not in by_id]
        if missing:
            raise ValueError(f"Response for MSID {msid} has no score for KPI(s) {missing}")
        return EvaluationResult(
            msid=msid,
            scores=[
                ScoreEntry(
                    kpi_id=kpi.id,
                    score=by_id[kpi.id].score,
                    explanation=by_id[kpi.id].explanation,
                )
                for kpi in kpis
            ],
        )


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class Evaluator(ABC):
    """Scoring capability used by EvaluationOrchestrator."""

    mode: EvaluationMode = EvaluationMode.LIVE

    @abstractmethod
    async def score_pair(
        self,
        source: Row,
        target: Row,
        kpis: list[KPI],
    ) -> EvaluationResult:
        """Score one pair. Raise on any failure; never return score 0."""
        ...

    @abstractmethod
    async def score_one(
        self,
        source: Row,
        target: Row,
        kpis: list[KPI],
        feedback: str = "",
    ) -> EvaluationResult:
        """Re-score one pair, reconsidering the prior judgment given ``feedback``."""
        ...

    async def score_batch(
        self,
        pairs: list[Pair],
        kpis: list[KPI],
        *,
        timeout: float | None = None,
    ) -> list[EvaluationResult | BaseException]:
        """Score every pair concurrently and wait for all of them.

        The returned list is aligned with ``pairs`` regardless of which
        call finished first. A call that exceeds ``timeout`` yields a
        TimeoutError in its slot.
        """

        async def _one(source: Row, target: Row) -> EvaluationResult:
            coro = self.score_pair(source, target, kpis)
            if timeout is None:
                return await coro
            return await asyncio.wait_for(coro, timeout)

        return await asyncio.gather(
            *(_one(source, target) for source, target in pairs),
            return_exceptions=True,
        )


# ---------------------------------------------------------------------------
# LLM-backed evaluator
# ---------------------------------------------------------------------------


class LLMEvaluator(Evaluator):
    """Score pairs by prompting an LLM for structured KPI scores."""

    mode = EvaluationMode.LIVE

    def __init__(
        self,
        llm_client: LLMClient,
        *,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> None:
        self._client = llm_client
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def score_pair(
        self,
        source: Row,
        target: Row,
        kpis: list[KPI],
    ) -> EvaluationResult:
        request = LLMRequest(
            system_prompt=build_system_prompt(kpis),
            user_prompt=build_user_prompt(source, target, kpis),
            output_schema=ScoreResponse,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        response = await self._client.complete(request, task=LLMTask.EVALUATION)
        return response.parsed.to_result(_msid(target), kpis)

    async def score_one(
        self,
        source: Row,
        target: Row,
        kpis: list[KPI],
        feedback: str = "",
    ) -> EvaluationResult:
        request = LLMRequest(
            system_prompt=build_system_prompt(kpis, reevaluation=True),
            user_prompt=build_reevaluation_prompt(source, target, kpis, feedback),
            output_schema=ScoreResponse,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        response = await self._client.complete(request, task=LLMTask.REEVALUATION)
        return response.parsed.to_result(_msid(target), kpis)


# ---------------------------------------------------------------------------
# Demo evaluator
# ---------------------------------------------------------------------------

# Probability of scores 1..5.
DEMO_WEIGHTS = [0.05, 0.15, 0.35, 0.30, 0.15]

DEMO_EXPLANATIONS: dict[int, list[str]] = {
    5: ["Excellent quality output", "Meets all criteria optimally", "Outstanding performance"],
    4: ["Good quality with minor issues", "Solid performance overall", "Above average output"],
    3: ["Acceptable but needs improvement", "Meets basic requirements", "Average quality"],
    2: ["Below expectations", "Multiple issues detected", "Needs significant work"],
    1: ["Critical failure detected", "Does not meet requirements", "Major quality issues"],
}


class DemoEvaluator(Evaluator):
    """Credential-free evaluator producing plausible, repeatable scores.

    Scores are drawn from DEMO_WEIGHTS with a generator seeded by the MSID
    (and the feedback text for re-evaluations), so the same record always
    gets the same scores.
    """

    mode = EvaluationMode.DEMO

    def _generate(self, msid: str, kpis: list[KPI], salt: str = "") -> EvaluationResult:
        digest = hashlib.sha256(f"{msid}\x00{salt}".encode()).hexdigest()
        rng = random.Random(int(digest[:16], 16))
        scores: list[ScoreEntry] = []
        for kpi in kpis:
            score = rng.choices(range(MIN_SCORE, MAX_SCORE + 1), weights=DEMO_WEIGHTS)[0]
            scores.append(
                ScoreEntry(
                    kpi_id=kpi.id,
                    score=score,
                    explanation=rng.choice(DEMO_EXPLANATIONS[score]),
                )
            )
        return EvaluationResult(msid=msid, scores=scores)

    async def score_pair(
        self,
        source: Row,
        target: Row,
        kpis: list[KPI],
    ) -> EvaluationResult:
        return self._generate(_msid(target), kpis)

    async def score_one(
        self,
        source: Row,
        target: Row,
        kpis: list[KPI],
        feedback: str = "",
    ) -> EvaluationResult:
        return self._generate(_msid(target), kpis, salt=feedback)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_llm_client(settings: Settings) -> LLMClient:
    """LLMClient configured from settings."""
    return LLMClient(
        anthropic_key=settings.ANTHROPIC_API_KEY,
        openai_key=settings.OPENAI_API_KEY,
        anthropic_model=settings.ANTHROPIC_MODEL,
        openai_model=settings.OPENAI_MODEL,
        max_retries=settings.LLM_MAX_RETRIES,
        base_delay=settings.LLM_BASE_DELAY,
        timeout=settings.EVALUATION_TIMEOUT_SECONDS,
    )


def build_evaluator(settings: Settings, llm_client: LLMClient | None = None) -> Evaluator:
    """Pick the Evaluator for the current configuration.

    A configured credential always wins. Without one, DEMO_MODE selects the
    DemoEvaluator; otherwise EvaluatorNotConfiguredError is raised.
    """
    client = llm_client or build_llm_client(settings)
    if client.is_available_for(LLMTask.EVALUATION):
        return LLMEvaluator(
            client,
            temperature=settings.EVALUATION_TEMPERATURE,
            max_tokens=settings.EVALUATION_MAX_TOKENS,
        )
    if settings.DEMO_MODE:
        logger.info("No LLM credential configured; using demo evaluator")
        return DemoEvaluator()
    raise EvaluatorNotConfiguredError(
        "No Evaluator configured: set ANTHROPIC_API_KEY or OPENAI_API_KEY, "
        "or enable DEMO_MODE."
    )
