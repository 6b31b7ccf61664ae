"""FastAPI dependency injection factories.

Repository factories take AsyncSession via Depends(get_async_session).
Agent factories build the Evaluator, summarizer, and query responder from
settings. API endpoints use these via Depends(); tests override them.
"""

import logging
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from src.agents.evaluator import Evaluator, build_evaluator, build_llm_client
from src.agents.llm_client import LLMClient
from src.agents.orchestrator import EvaluationOrchestrator
from src.agents.query_responder import LLMQueryResponder, QueryResponder
from src.agents.summarizer import Summarizer, build_summarizer
from src.config.settings import Settings, get_settings
from src.db.session import get_async_session
from src.engine.matcher import RecordMatcher
from src.models.errors import EvaluatorNotConfiguredError
from src.repositories.projects import ProjectRepository
from src.repositories.testsets import TestSetRepository

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


async def get_project_repo(
    session: AsyncSession = Depends(get_async_session),
) -> ProjectRepository:
    return ProjectRepository(session)


async def get_test_set_repo(
    session: AsyncSession = Depends(get_async_session),
) -> TestSetRepository:
    return TestSetRepository(session)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def get_matcher(settings: Settings = Depends(get_settings)) -> RecordMatcher:
    return RecordMatcher(reject_duplicates=settings.MATCH_REJECT_DUPLICATE_KEYS)


def get_orchestrator(settings: Settings = Depends(get_settings)) -> EvaluationOrchestrator:
    return EvaluationOrchestrator(
        batch_size=settings.EVALUATION_BATCH_SIZE,
        timeout=settings.EVALUATION_TIMEOUT_SECONDS,
    )


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------


async def get_llm_client(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[LLMClient, None]:
    """Yield a per-request LLM client; log its token usage and close it afterwards."""
    client = build_llm_client(settings)
    try:
        yield client
    finally:
        if client.usage.calls:
            logger.info(
                "LLM usage: %d call(s), %d tokens (%s)",
                client.usage.calls,
                client.usage.total().total_tokens,
                ", ".join(
                    f"{task.value}={usage.total_tokens}"
                    for task, usage in client.usage.by_task.items()
                ),
            )
        await client.aclose()


def get_evaluator(
    settings: Settings = Depends(get_settings),
    llm_client: LLMClient = Depends(get_llm_client),
) -> Evaluator:
    """Evaluator for this request; 503 when no credential is configured."""
    try:
        return build_evaluator(settings, llm_client)
    except EvaluatorNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def get_summarizer(llm_client: LLMClient = Depends(get_llm_client)) -> Summarizer:
    return build_summarizer(llm_client)


def get_query_responder(
    settings: Settings = Depends(get_settings),
    llm_client: LLMClient = Depends(get_llm_client),
) -> QueryResponder:
    return LLMQueryResponder(llm_client, context_limit=settings.QUERY_CONTEXT_LIMIT)
