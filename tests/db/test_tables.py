"""Tests for the SQLAlchemy ORM models in src/db/tables.py.

Tests verify:
- All 6 tables are created from Base.metadata
- FlexJSON columns round-trip nested rows and score lists on SQLite
- Composite primary keys on child tables
- build_engine() against a SQLite file and the constraint naming convention
"""

import pytest
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.session import Base, build_engine
from src.db.tables import (
    DataMismatchRow,
    ProjectKPIRow,
    ProjectRow,
    TestResultRow,
    TestSetDataRow,
    TestSetRow,
)
from src.models.common import new_uuid7, utc_now


async def _project(session: AsyncSession) -> ProjectRow:
    now = utc_now()
    row = ProjectRow(project_id=new_uuid7(), name="Docs", created_at=now, updated_at=now)
    session.add(row)
    await session.flush()
    return row


async def _test_set(session: AsyncSession) -> TestSetRow:
    project = await _project(session)
    now = utc_now()
    row = TestSetRow(
        test_set_id=new_uuid7(),
        project_id=project.project_id,
        name="Run #1",
        kpis_snapshot=[{"id": 1, "name": "Accuracy", "description": "d", "short_name": "ACCURACY"}],
        created_at=now,
        updated_at=now,
    )
    session.add(row)
    await session.flush()
    return row


# ---------------------------------------------------------------------------
# Table existence
# ---------------------------------------------------------------------------


class TestTableCreation:
    EXPECTED_TABLES = {
        "projects",
        "project_kpis",
        "test_sets",
        "test_set_rows",
        "test_results",
        "data_mismatches",
    }

    @pytest.mark.anyio
    async def test_all_tables_exist(self, db_engine) -> None:
        async with db_engine.connect() as conn:
            table_names = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names()
            )
        assert self.EXPECTED_TABLES == set(table_names)

    def test_metadata_matches(self) -> None:
        assert set(Base.metadata.tables) == self.EXPECTED_TABLES


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


class TestProjectRows:
    @pytest.mark.anyio
    async def test_project_defaults(self, db_session: AsyncSession) -> None:
        row = await _project(db_session)
        fetched = await db_session.get(ProjectRow, row.project_id)
        assert fetched.is_configured is False
        assert fetched.description is None

    @pytest.mark.anyio
    async def test_kpi_composite_key(self, db_session: AsyncSession) -> None:
        project = await _project(db_session)
        db_session.add(ProjectKPIRow(
            project_id=project.project_id, kpi_number=1,
            name="Accuracy", description="d", short_name="ACCURACY",
        ))
        await db_session.flush()
        fetched = await db_session.get(ProjectKPIRow, (project.project_id, 1))
        assert fetched.short_name == "ACCURACY"


class TestTestSetRows:
    @pytest.mark.anyio
    async def test_status_default(self, db_session: AsyncSession) -> None:
        row = await _test_set(db_session)
        assert row.status == "PENDING"
        assert row.kpis_snapshot[0]["short_name"] == "ACCURACY"

    @pytest.mark.anyio
    async def test_data_row_json(self, db_session: AsyncSession) -> None:
        test_set = await _test_set(db_session)
        db_session.add(TestSetDataRow(
            test_set_id=test_set.test_set_id, side="SOURCE", position=0,
            msid="A", data={"MSID": "A", "n": 3, "flag": True, "empty": None},
        ))
        await db_session.flush()
        fetched = await db_session.get(TestSetDataRow, (test_set.test_set_id, "SOURCE", 0))
        assert fetched.data == {"MSID": "A", "n": 3, "flag": True, "empty": None}

    @pytest.mark.anyio
    async def test_result_and_mismatch_rows(self, db_session: AsyncSession) -> None:
        test_set = await _test_set(db_session)
        db_session.add(TestResultRow(
            test_set_id=test_set.test_set_id, msid="A", position=0,
            scores=[{"kpiId": 1, "score": 4, "explanation": "ok"}], updated_at=utc_now(),
        ))
        db_session.add(DataMismatchRow(
            test_set_id=test_set.test_set_id, position=0,
            msid="A", field="TARGET.out", issue="Empty cell detected",
        ))
        await db_session.flush()

        result = await db_session.get(TestResultRow, (test_set.test_set_id, "A"))
        assert result.scores[0]["score"] == 4
        mismatch = await db_session.get(DataMismatchRow, (test_set.test_set_id, 0))
        assert mismatch.field == "TARGET.out"


# ---------------------------------------------------------------------------
# Engine factory and naming convention
# ---------------------------------------------------------------------------


class TestEngineFactory:
    def test_primary_keys_follow_naming_convention(self) -> None:
        assert Base.metadata.tables["projects"].primary_key.name == "pk_projects"

    @pytest.mark.anyio
    async def test_sqlite_engine_creates_schema(self, tmp_path) -> None:
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'kualitee.db'}")
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
                names = await conn.run_sync(
                    lambda sync_conn: inspect(sync_conn).get_table_names()
                )
        finally:
            await engine.dispose()
        assert "test_sets" in names
