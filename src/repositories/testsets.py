"""Test set repository — uploaded rows, KPI snapshots, results, mismatches.

Repos take AsyncSession, call add()/flush()/delete() only and never commit().
"""

from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import DataMismatchRow, TestResultRow, TestSetDataRow, TestSetRow
from src.models.common import KEY_COLUMN, DatasetSide, utc_now
from src.models.dataset import DataMismatchEntry, Row
from src.models.evaluation import EvaluationResult, ScoreEntry
from src.models.kpi import KPI
from src.models.project import TestSetStatus


def result_from_row(row: TestResultRow) -> EvaluationResult:
    return EvaluationResult(
        msid=row.msid,
        scores=[ScoreEntry.model_validate(entry) for entry in row.scores],
    )


def _dump_scores(result: EvaluationResult) -> list[dict]:
    return [entry.model_dump(by_alias=True) for entry in result.scores]


class TestSetRepository:
    """Repository for test sets and everything stored under them."""

    __test__ = False

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        test_set_id: UUID,
        project_id: UUID,
        name: str,
        kpis: list[KPI],
        source_rows: list[Row],
        target_rows: list[Row],
        mismatches: list[DataMismatchEntry] | None = None,
    ) -> TestSetRow:
        now = utc_now()
        row = TestSetRow(
            test_set_id=test_set_id,
            project_id=project_id,
            name=name,
            kpis_snapshot=[kpi.model_dump(by_alias=True) for kpi in kpis],
            status=TestSetStatus.PENDING.value,
            mode=None,
            error_message=None,
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()

        for side, rows in ((DatasetSide.SOURCE, source_rows), (DatasetSide.TARGET, target_rows)):
            for position, data in enumerate(rows):
                self._session.add(
                    TestSetDataRow(
                        test_set_id=test_set_id,
                        side=side.value,
                        position=position,
                        msid=str(data.get(KEY_COLUMN, "")),
                        data=dict(data),
                    )
                )
        await self.replace_mismatches(test_set_id, mismatches or [])
        return row

    async def get(self, test_set_id: UUID) -> TestSetRow | None:
        return await self._session.get(TestSetRow, test_set_id)

    async def list_by_project(self, project_id: UUID) -> list[TestSetRow]:
        result = await self._session.execute(
            select(TestSetRow)
            .where(TestSetRow.project_id == project_id)
            .order_by(TestSetRow.created_at.desc())
        )
        return list(result.scalars().all())

    async def count_by_project(self, project_id: UUID) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(TestSetRow).where(TestSetRow.project_id == project_id)
        )
        return int(result.scalar_one())

    def kpis(self, row: TestSetRow) -> list[KPI]:
        """KPI snapshot taken when the test set was created."""
        return [KPI.model_validate(item) for item in row.kpis_snapshot]

    async def get_rows(self, test_set_id: UUID, side: DatasetSide) -> list[Row]:
        result = await self._session.execute(
            select(TestSetDataRow)
            .where(TestSetDataRow.test_set_id == test_set_id, TestSetDataRow.side == side.value)
            .order_by(TestSetDataRow.position)
        )
        return [dict(row.data) for row in result.scalars().all()]

    async def count_rows(self, test_set_id: UUID, side: DatasetSide) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(TestSetDataRow)
            .where(TestSetDataRow.test_set_id == test_set_id, TestSetDataRow.side == side.value)
        )
        return int(result.scalar_one())

    # ----- Results -----

    async def get_results(self, test_set_id: UUID) -> list[EvaluationResult]:
        result = await self._session.execute(
            select(TestResultRow)
            .where(TestResultRow.test_set_id == test_set_id)
            .order_by(TestResultRow.position)
        )
        return [result_from_row(row) for row in result.scalars().all()]

    async def replace_results(self, test_set_id: UUID, results: list[EvaluationResult]) -> None:
        """Drop all stored results and write ``results`` in order."""
        await self._session.execute(
            delete(TestResultRow).where(TestResultRow.test_set_id == test_set_id)
        )
        now = utc_now()
        for position, item in enumerate(results):
            self._session.add(
                TestResultRow(
                    test_set_id=test_set_id,
                    msid=item.msid,
                    position=position,
                    scores=_dump_scores(item),
                    updated_at=now,
                )
            )
        await self._session.flush()

    async def upsert_result(self, test_set_id: UUID, item: EvaluationResult) -> None:
        """Replace the stored result for ``item.msid``, or append it."""
        existing = await self._session.get(TestResultRow, (test_set_id, item.msid))
        if existing is not None:
            existing.scores = _dump_scores(item)
            existing.updated_at = utc_now()
        else:
            result = await self._session.execute(
                select(func.max(TestResultRow.position))
                .where(TestResultRow.test_set_id == test_set_id)
            )
            last = result.scalar_one_or_none()
            self._session.add(
                TestResultRow(
                    test_set_id=test_set_id,
                    msid=item.msid,
                    position=0 if last is None else last + 1,
                    scores=_dump_scores(item),
                    updated_at=utc_now(),
                )
            )
        await self._session.flush()

    # ----- Mismatches -----

    async def get_mismatches(self, test_set_id: UUID) -> list[DataMismatchEntry]:
        result = await self._session.execute(
            select(DataMismatchRow)
            .where(DataMismatchRow.test_set_id == test_set_id)
            .order_by(DataMismatchRow.position)
        )
        return [
            DataMismatchEntry(msid=row.msid, field=row.field, issue=row.issue)
            for row in result.scalars().all()
        ]

    async def replace_mismatches(
        self,
        test_set_id: UUID,
        mismatches: list[DataMismatchEntry],
    ) -> None:
        await self._session.execute(
            delete(DataMismatchRow).where(DataMismatchRow.test_set_id == test_set_id)
        )
        for position, entry in enumerate(mismatches):
            self._session.add(
                DataMismatchRow(
                    test_set_id=test_set_id,
                    position=position,
                    msid=entry.msid,
                    field=entry.field,
                    issue=entry.issue,
                )
            )
        await self._session.flush()

    # ----- Status -----

    async def update_status(
        self,
        test_set_id: UUID,
        status: TestSetStatus,
        *,
        mode: str | None = None,
        error_message: str | None = None,
    ) -> TestSetRow | None:
        row = await self.get(test_set_id)
        if row is not None:
            row.status = status.value
            row.error_message = error_message
            if mode is not None:
                row.mode = mode
            row.updated_at = utc_now()
            await self._session.flush()
        return row

    async def delete(self, test_set_id: UUID) -> bool:
        """Delete the test set with its rows, results, and mismatches."""
        row = await self.get(test_set_id)
        if row is None:
            return False
        for table in (TestSetDataRow, TestResultRow, DataMismatchRow):
            await self._session.execute(
                delete(table).where(table.test_set_id == test_set_id)
            )
        await self._session.delete(row)
        await self._session.flush()
        return True
