"""FastAPI application entry point for Kualitee.

Mounts the stateless evaluation routes (/v1/match, /v1/evaluate, ...) and
the persisted project / test set routes, plus /health and /api/version.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from src.agents.prompts import PROMPT_PACK_VERSION
from src.api.evaluation import router as evaluation_router
from src.api.projects import router as projects_router
from src.api.testsets import router as testsets_router
from src.config.settings import Environment, Settings, get_settings

APP_VERSION = "0.1.0"


def configure_logging(settings: Settings) -> None:
    """structlog for the API process, stdlib logging for library modules.

    Dev gets a console renderer; staging and prod emit one JSON object per line.
    """
    level = logging.getLevelNamesMapping()[settings.LOG_LEVEL.value]
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.ENVIRONMENT == Environment.DEV
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # Provider HTTP calls are logged by llm_client; drop httpx request lines.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


settings = get_settings()
configure_logging(settings)

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "kualitee_started",
        version=APP_VERSION,
        environment=settings.ENVIRONMENT.value,
        celery=settings.celery_enabled,
        demo_mode=settings.DEMO_MODE,
    )
    yield
    from src.db.session import engine

    await engine.dispose()


app = FastAPI(
    title="Kualitee API",
    description="Batch LLM output evaluation against user-defined KPIs.",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == Environment.DEV else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(evaluation_router)
app.include_router(projects_router)
app.include_router(testsets_router)


async def _database_reachable() -> bool:
    from src.db.session import engine

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("health_check_database_failed", error=str(exc))
        return False
    return True


@app.get("/health")
async def health_check() -> dict:
    """Always 200; ``status`` is "degraded" when a component is down.

    ``evaluator`` reports which scoring mode new runs would use.
    """
    checks = {"api": True, "database": await _database_reachable()}
    if settings.llm_configured:
        evaluator = "llm"
    else:
        evaluator = "demo" if settings.DEMO_MODE else "unconfigured"

    return {
        "status": "ok" if all(checks.values()) else "degraded",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
        "evaluator": evaluator,
        "checks": checks,
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Application name, version, prompt pack, and environment."""
    return {
        "name": "Kualitee",
        "version": APP_VERSION,
        "prompt_pack": PROMPT_PACK_VERSION,
        "environment": settings.ENVIRONMENT.value,
    }
