"""FastAPI project endpoints.

GET    /v1/projects                                   — list with scores
POST   /v1/projects                                   — create with KPIs
GET    /v1/projects/{project_id}                      — detail with test sets
PUT    /v1/projects/{project_id}                      — update fields / KPIs
DELETE /v1/projects/{project_id}                      — delete with test sets
GET    /v1/projects/{project_id}/testsets             — list test sets
POST   /v1/projects/{project_id}/testsets             — create from JSON rows
POST   /v1/projects/{project_id}/testsets/upload      — create from CSV/XLSX files
"""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field

from src.api.dependencies import get_matcher, get_project_repo, get_test_set_repo
from src.api.evaluation import match_http_error
from src.api.testsets import build_overview
from src.db.tables import ProjectRow
from src.engine.matcher import RecordMatcher, canonicalize_rows, find_key_column
from src.engine.summary import SummaryAggregator
from src.ingestion.tabular import read_table
from src.models.common import new_uuid7
from src.models.dataset import Row
from src.models.errors import RecordMatchError
from src.models.evaluation import EvaluationResult
from src.models.kpi import KPI, configured_kpis
from src.models.project import Project, TestSetOverview, default_test_set_name
from src.repositories.projects import ProjectRepository
from src.repositories.testsets import TestSetRepository

router = APIRouter(prefix="/v1/projects", tags=["projects"])

_aggregator = SummaryAggregator()


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class CreateProjectRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    site_description: str | None = None
    target_language: str | None = None
    kpis: list[KPI] = Field(default_factory=list)


class UpdateProjectRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    site_description: str | None = None
    target_language: str | None = None
    kpis: list[KPI] | None = None
    mark_as_configured: bool = False


class ProjectListItem(Project):
    test_set_count: int = 0
    last_test_set: TestSetOverview | None = None
    overall_score: float | None = None
    kpi_averages: dict[str, float | None] = Field(default_factory=dict)


class ProjectDetail(Project):
    test_sets: list[TestSetOverview] = Field(default_factory=list)


class CreateTestSetRequest(BaseModel):
    name: str | None = None
    source_rows: list[Row]
    target_rows: list[Row]
    kpis: list[KPI] | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _clean(value: str | None) -> str | None:
    """Strip text; blank becomes None."""
    if value is None:
        return None
    return value.strip() or None


def _canonical(rows: list[Row]) -> list[Row]:
    column = find_key_column(rows)
    return canonicalize_rows(rows, column) if column else rows


async def _to_project(repo: ProjectRepository, row: ProjectRow) -> Project:
    return Project(
        project_id=row.project_id,
        name=row.name,
        description=row.description,
        site_description=row.site_description,
        target_language=row.target_language,
        is_configured=row.is_configured,
        kpis=await repo.get_kpis(row.project_id),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


async def _get_or_404(repo: ProjectRepository, project_id: UUID) -> ProjectRow:
    row = await repo.get(project_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found.")
    return row


async def _create_test_set(
    *,
    project_id: UUID,
    name: str | None,
    source_rows: list[Row],
    target_rows: list[Row],
    kpis: list[KPI] | None,
    project_repo: ProjectRepository,
    test_set_repo: TestSetRepository,
    matcher: RecordMatcher,
) -> TestSetOverview:
    await _get_or_404(project_repo, project_id)

    try:
        match = matcher.match(source_rows, target_rows)
    except RecordMatchError as exc:
        raise match_http_error(exc) from exc

    snapshot = kpis if kpis is not None else await project_repo.get_kpis(project_id)
    if not configured_kpis(snapshot):
        raise HTTPException(
            status_code=422,
            detail="At least one KPI needs both a name and a description.",
        )

    if not (name and name.strip()):
        name = default_test_set_name(await test_set_repo.count_by_project(project_id))

    # Stored with the canonical MSID column, in upload order.
    row = await test_set_repo.create(
        test_set_id=new_uuid7(),
        project_id=project_id,
        name=name.strip(),
        kpis=snapshot,
        source_rows=_canonical(source_rows),
        target_rows=_canonical(target_rows),
        mismatches=match.mismatches,
    )
    await project_repo.touch(project_id)
    return await build_overview(test_set_repo, row)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@router.get("", response_model=list[ProjectListItem])
async def list_projects(
    repo: ProjectRepository = Depends(get_project_repo),
    test_set_repo: TestSetRepository = Depends(get_test_set_repo),
) -> list[ProjectListItem]:
    """All projects, most recently updated first, with pooled scores."""
    items: list[ProjectListItem] = []
    for row in await repo.list_all():
        project = await _to_project(repo, row)
        test_sets = await test_set_repo.list_by_project(row.project_id)

        results: list[EvaluationResult] = []
        for test_set in test_sets:
            results.extend(await test_set_repo.get_results(test_set.test_set_id))
        stats = _aggregator.statistics(results, project.kpis)

        items.append(
            ProjectListItem(
                **project.model_dump(),
                test_set_count=len(test_sets),
                last_test_set=(
                    await build_overview(test_set_repo, test_sets[0]) if test_sets else None
                ),
                overall_score=_aggregator.pooled_score(results) if results else None,
                kpi_averages={s.short_name: (s.mean if s.count else None) for s in stats},
            )
        )
    return items


@router.post("", status_code=201, response_model=Project)
async def create_project(
    body: CreateProjectRequest,
    repo: ProjectRepository = Depends(get_project_repo),
) -> Project:
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Project name is required.")
    row = await repo.create(
        project_id=new_uuid7(),
        name=name,
        description=_clean(body.description),
        site_description=_clean(body.site_description),
        target_language=_clean(body.target_language),
        kpis=configured_kpis(body.kpis),
    )
    return await _to_project(repo, row)


@router.get("/{project_id}", response_model=ProjectDetail)
async def get_project(
    project_id: UUID,
    repo: ProjectRepository = Depends(get_project_repo),
    test_set_repo: TestSetRepository = Depends(get_test_set_repo),
) -> ProjectDetail:
    row = await _get_or_404(repo, project_id)
    project = await _to_project(repo, row)
    test_sets = [
        await build_overview(test_set_repo, ts)
        for ts in await test_set_repo.list_by_project(project_id)
    ]
    return ProjectDetail(**project.model_dump(), test_sets=test_sets)


@router.put("/{project_id}", response_model=Project)
async def update_project(
    project_id: UUID,
    body: UpdateProjectRequest,
    repo: ProjectRepository = Depends(get_project_repo),
) -> Project:
    """Update supplied fields. A ``kpis`` list replaces the KPI set.

    Unconfigured KPIs are dropped and the rest renumbered 1..n.
    """
    await _get_or_404(repo, project_id)
    fields = body.model_fields_set
    changes: dict = {}
    if body.name is not None:
        name = body.name.strip()
        if not name:
            raise HTTPException(status_code=422, detail="Project name must not be blank.")
        changes["name"] = name
    for field in ("description", "site_description", "target_language"):
        if field in fields:
            changes[field] = _clean(getattr(body, field))

    kpis = None
    if body.kpis is not None:
        kpis = [
            KPI(id=number, name=kpi.name.strip(), description=kpi.description.strip(),
                short_name=kpi.short_name)
            for number, kpi in enumerate(configured_kpis(body.kpis), start=1)
        ]

    row = await repo.update(
        project_id, kpis=kpis, mark_configured=body.mark_as_configured, **changes,
    )
    return await _to_project(repo, row)


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project_id: UUID,
    repo: ProjectRepository = Depends(get_project_repo),
    test_set_repo: TestSetRepository = Depends(get_test_set_repo),
) -> None:
    await _get_or_404(repo, project_id)
    for test_set in await test_set_repo.list_by_project(project_id):
        await test_set_repo.delete(test_set.test_set_id)
    await repo.delete(project_id)


# ---------------------------------------------------------------------------
# Project test sets
# ---------------------------------------------------------------------------


@router.get("/{project_id}/testsets", response_model=list[TestSetOverview])
async def list_test_sets(
    project_id: UUID,
    repo: ProjectRepository = Depends(get_project_repo),
    test_set_repo: TestSetRepository = Depends(get_test_set_repo),
) -> list[TestSetOverview]:
    await _get_or_404(repo, project_id)
    return [
        await build_overview(test_set_repo, ts)
        for ts in await test_set_repo.list_by_project(project_id)
    ]


@router.post("/{project_id}/testsets", status_code=201, response_model=TestSetOverview)
async def create_test_set(
    project_id: UUID,
    body: CreateTestSetRequest,
    repo: ProjectRepository = Depends(get_project_repo),
    test_set_repo: TestSetRepository = Depends(get_test_set_repo),
    matcher: RecordMatcher = Depends(get_matcher),
) -> TestSetOverview:
    """Join the rows and store them with a KPI snapshot.

    Uses the project's KPIs unless ``kpis`` is given. Join errors return 422.
    """
    return await _create_test_set(
        project_id=project_id,
        name=body.name,
        source_rows=body.source_rows,
        target_rows=body.target_rows,
        kpis=body.kpis,
        project_repo=repo,
        test_set_repo=test_set_repo,
        matcher=matcher,
    )


@router.post("/{project_id}/testsets/upload", status_code=201, response_model=TestSetOverview)
async def upload_test_set(
    project_id: UUID,
    source_file: UploadFile = File(...),
    target_file: UploadFile = File(...),
    name: str | None = Form(default=None),
    repo: ProjectRepository = Depends(get_project_repo),
    test_set_repo: TestSetRepository = Depends(get_test_set_repo),
    matcher: RecordMatcher = Depends(get_matcher),
) -> TestSetOverview:
    """Create a test set from uploaded SOURCE_INPUT and TARGET_OUTPUT files."""
    parsed: list[list[Row]] = []
    for upload in (source_file, target_file):
        content = await upload.read()
        if not content:
            raise HTTPException(
                status_code=422, detail=f"File {upload.filename} must not be empty.",
            )
        try:
            parsed.append(
                read_table(
                    content,
                    filename=upload.filename or "",
                    content_type=upload.content_type or "",
                )
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    return await _create_test_set(
        project_id=project_id,
        name=name,
        source_rows=parsed[0],
        target_rows=parsed[1],
        kpis=None,
        project_repo=repo,
        test_set_repo=test_set_repo,
        matcher=matcher,
    )
