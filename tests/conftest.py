"""Shared pytest fixtures for the Kualitee test suite.

Database tests run against in-memory SQLite (aiosqlite). Every test gets
its own outer transaction that is rolled back at teardown; commits made by
application code only release a SAVEPOINT inside it.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.agents.evaluator import DemoEvaluator
from src.db.session import Base, get_async_session
from src.models.kpi import KPI
import src.db.tables  # noqa: F401  registers the tables on Base.metadata

_PROVIDER_ENV = ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "CELERY_BROKER_URL", "DEMO_MODE")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """No test reaches a real LLM provider or Celery broker."""
    for name in _PROVIDER_ENV:
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    async with db_engine.connect() as conn:
        outer = await conn.begin()
        session = AsyncSession(
            bind=conn,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )
        try:
            yield session
        finally:
            await session.close()
            await outer.rollback()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(db_session):
    """App client sharing ``db_session`` and scoring with DemoEvaluator."""
    from src.api.dependencies import get_evaluator
    from src.api.main import app

    async def _session():
        yield db_session

    app.dependency_overrides.update({
        get_async_session: _session,
        get_evaluator: DemoEvaluator,
    })
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Shared data
# ---------------------------------------------------------------------------


@pytest.fixture
def kpis() -> list[KPI]:
    return [
        KPI(id=1, name="Accuracy", description="Output matches the source facts."),
        KPI(id=2, name="Tone of voice", description="Friendly, on-brand wording."),
    ]
