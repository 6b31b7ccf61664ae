"""Project repository — projects and their ordered KPI definitions.

Repos take AsyncSession, call add()/flush()/delete() only and never commit().
The session dependency handles commit/rollback (Unit-of-Work).
"""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import ProjectKPIRow, ProjectRow
from src.models.common import utc_now
from src.models.kpi import KPI

_UNSET = object()


def kpi_from_row(row: ProjectKPIRow) -> KPI:
    return KPI(
        id=row.kpi_number,
        name=row.name,
        description=row.description,
        short_name=row.short_name,
    )


class ProjectRepository:
    """Repository for projects and their KPI lists."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        project_id: UUID,
        name: str,
        description: str | None = None,
        site_description: str | None = None,
        target_language: str | None = None,
        kpis: list[KPI] | None = None,
    ) -> ProjectRow:
        now = utc_now()
        row = ProjectRow(
            project_id=project_id,
            name=name,
            description=description,
            site_description=site_description,
            target_language=target_language,
            is_configured=False,
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        if kpis:
            await self._write_kpis(project_id, kpis)
        return row

    async def get(self, project_id: UUID) -> ProjectRow | None:
        return await self._session.get(ProjectRow, project_id)

    async def list_all(self) -> list[ProjectRow]:
        result = await self._session.execute(
            select(ProjectRow).order_by(ProjectRow.updated_at.desc())
        )
        return list(result.scalars().all())

    async def get_kpis(self, project_id: UUID) -> list[KPI]:
        result = await self._session.execute(
            select(ProjectKPIRow)
            .where(ProjectKPIRow.project_id == project_id)
            .order_by(ProjectKPIRow.kpi_number)
        )
        return [kpi_from_row(row) for row in result.scalars().all()]

    async def update(
        self,
        project_id: UUID,
        *,
        name: str | None = None,
        description: str | None | object = _UNSET,
        site_description: str | None | object = _UNSET,
        target_language: str | None | object = _UNSET,
        kpis: list[KPI] | None = None,
        mark_configured: bool = False,
    ) -> ProjectRow | None:
        """Update project fields; a non-None ``kpis`` replaces the KPI list.

        KPIs are renumbered 1..n in the given order.
        """
        row = await self.get(project_id)
        if row is None:
            return None
        if name is not None:
            row.name = name
        if description is not _UNSET:
            row.description = description
        if site_description is not _UNSET:
            row.site_description = site_description
        if target_language is not _UNSET:
            row.target_language = target_language
        if mark_configured:
            row.is_configured = True
        row.updated_at = utc_now()
        if kpis is not None:
            await self._session.execute(
                delete(ProjectKPIRow).where(ProjectKPIRow.project_id == project_id)
            )
            await self._write_kpis(project_id, kpis)
        await self._session.flush()
        return row

    async def touch(self, project_id: UUID) -> None:
        row = await self.get(project_id)
        if row is not None:
            row.updated_at = utc_now()
            await self._session.flush()

    async def delete(self, project_id: UUID) -> bool:
        """Delete the project and its KPIs. Test sets are removed by the caller."""
        row = await self.get(project_id)
        if row is None:
            return False
        await self._session.execute(
            delete(ProjectKPIRow).where(ProjectKPIRow.project_id == project_id)
        )
        await self._session.delete(row)
        await self._session.flush()
        return True

    async def _write_kpis(self, project_id: UUID, kpis: list[KPI]) -> None:
        for number, kpi in enumerate(kpis, start=1):
            self._session.add(
                ProjectKPIRow(
                    project_id=project_id,
                    kpi_number=number,
                    name=kpi.name,
                    description=kpi.description,
                    short_name=kpi.short_name,
                )
            )
        await self._session.flush()
