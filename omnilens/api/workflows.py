# omnilens/api/workflows.py
import logging
import re
from datetime import date, datetime, timedelta, timezone

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from omnilens.api.deps import get_current_user, get_github_client
from omnilens.core.db import get_db
from omnilens.core.errors import validation_details
from omnilens.github_client import GitHubAPIError, GitHubClient
from omnilens.models import Repository, User
from omnilens.services import repo_storage
from omnilens.services.run_metrics import average_duration, calculate_metrics, health_summary
from omnilens.services.workflow_runs import (
    active_workflows_only,
    calculate_hourly_breakdown,
    calculate_hourly_statistics,
    calculate_missing_workflows,
    calculate_overview_data,
    calculate_success_rate,
    get_workflow_runs_for_date,
    get_workflow_runs_for_date_grouped,
    get_workflow_runs_for_date_range,
    utc_today,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
FRESH_WORKFLOWS_WINDOW = timedelta(minutes=5)
WORKFLOW_CACHE_CONTROL = "public, max-age=300"
MAX_SELECTED_RUNS = 100


# ----- Pydantic schemas -----

class WorkflowIn(BaseModel):
    id: int
    name: str
    path: str
    state: str


# ----- Helpers -----

def parse_date_param(value: str) -> date | None:
    if not DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _require_repo(db: Session, slug: str, user_id: str, detail: str = "Repository not found in dashboard") -> Repository:
    repo = repo_storage.get_user_repo(db, slug, user_id)
    if not repo:
        raise HTTPException(status_code=404, detail=detail)
    return repo


def _repository_ref(repo: Repository) -> dict:
    return {"slug": repo.slug, "displayName": repo.display_name, "repoPath": repo.repo_path}


def _workflow_item(workflow: dict) -> dict:
    return {
        "id": workflow["id"],
        "name": workflow["name"],
        "path": workflow["path"],
        "state": workflow["state"],
        "createdAt": workflow.get("created_at"),
        "updatedAt": workflow.get("updated_at"),
        "deletedAt": workflow.get("deleted_at"),
    }


def empty_overview() -> dict:
    return {
        "completedRuns": 0,
        "inProgressRuns": 0,
        "passedRuns": 0,
        "failedRuns": 0,
        "totalRuntime": 0,
        "didntRunCount": 0,
        "totalWorkflows": 0,
        "missingWorkflows": [],
        "successRate": 0,
        "passRate": 0,
    }


async def _workflow_runs_for_day(
    client: GitHubClient, repo: Repository, day: date, grouped: bool
) -> dict:
    try:
        active = active_workflows_only(await client.list_workflows(repo.repo_path))
    except GitHubAPIError:
        logger.warning("Failed to fetch workflows for %s", repo.repo_path, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch workflows from GitHub")

    try:
        await client.get_repository(repo.repo_path)
    except GitHubAPIError:
        raise HTTPException(status_code=500, detail="Failed to fetch repository information")

    active_ids = {wf["id"] for wf in active}
    try:
        if grouped:
            all_runs = await get_workflow_runs_for_date_grouped(client, repo.repo_path, day)
        else:
            all_runs = await get_workflow_runs_for_date(client, repo.repo_path, day)
    except GitHubAPIError:
        logger.exception("Error fetching workflow runs for %s", repo.repo_path)
        raise HTTPException(status_code=500, detail="Internal server error")
    runs = [run for run in all_runs if run.get("workflow_id") in active_ids]

    missing = calculate_missing_workflows(active, runs)
    runs_by_hour = calculate_hourly_breakdown(runs)
    hourly = calculate_hourly_statistics(runs_by_hour)
    overview = {
        **calculate_overview_data(runs),
        "didntRunCount": len(missing),
        "totalWorkflows": len(active),
        "missingWorkflows": missing,
        "runsByHour": runs_by_hour,
        "avgRunsPerHour": hourly["avgRunsPerHour"],
        "minRunsPerHour": hourly["minRunsPerHour"],
        "maxRunsPerHour": hourly["maxRunsPerHour"],
    }
    return {"workflowRuns": runs, "overviewData": overview}


# ----- /workflow/{slug} -----

@router.get("/workflow/{slug}")
async def get_workflows(
    slug: str,
    date_param: str | None = Query(default=None, alias="date"),
    grouped: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: GitHubClient = Depends(get_github_client),
):
    """Stored or freshly fetched workflows; with ``date``, that day's runs and overview."""
    repo = _require_repo(db, slug, user.id)

    if date_param:
        day = parse_date_param(date_param)
        if day is None:
            raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD format.")
        return await _workflow_runs_for_day(client, repo, day, grouped)

    saved = repo_storage.get_workflows(db, slug, user.id)
    fresh_after = datetime.utcnow() - FRESH_WORKFLOWS_WINDOW
    if any(wf.updated_at and wf.updated_at > fresh_after for wf in saved):
        workflows = [wf.to_dict() for wf in saved]
        return JSONResponse(
            {"repository": _repository_ref(repo), "workflows": workflows, "totalCount": len(workflows)},
            headers={"Cache-Control": WORKFLOW_CACHE_CONTROL, "X-Cache": "HIT"},
        )

    try:
        await client.get_repository(repo.repo_path)
    except GitHubAPIError:
        raise HTTPException(status_code=500, detail="Failed to fetch repository information")

    try:
        fetched = await client.list_workflows(repo.repo_path)
    except GitHubAPIError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail="Repository not found on GitHub")
        if e.status_code == 403:
            raise HTTPException(status_code=403, detail="Access denied to repository workflows")
        logger.error("GitHub API error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch workflows from GitHub")

    workflows = [_workflow_item(wf) for wf in active_workflows_only(fetched)]
    try:
        repo_storage.save_workflows(db, slug, workflows, user.id)
    except SQLAlchemyError:
        # Serve the GitHub data anyway
        logger.warning("Error saving workflows to database for %s", slug)

    return JSONResponse(
        {"repository": _repository_ref(repo), "workflows": workflows, "totalCount": len(workflows)},
        headers={"Cache-Control": WORKFLOW_CACHE_CONTROL, "X-Cache": "MISS"},
    )


@router.put("/workflow/{slug}")
def put_workflows(
    slug: str,
    body: dict = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = body.get("workflows")
    if not isinstance(items, list):
        raise HTTPException(status_code=400, detail="Workflows must be an array")

    try:
        workflows = [WorkflowIn.model_validate(item).model_dump() for item in items]
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid workflow data", "details": validation_details(e.errors())},
        )

    repo_storage.save_workflows(db, slug, workflows, user.id)
    return {
        "success": True,
        "message": f"Successfully saved {len(workflows)} workflows for {slug}",
        "workflows": workflows,
    }


@router.delete("/workflow/{slug}")
def delete_workflows(slug: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_repo(db, slug, user.id, detail="Repository not found")
    repo_storage.delete_workflows(db, slug, user.id)
    return {"success": True, "message": f"Successfully deleted workflows for {slug}"}


@router.get("/workflow/{slug}/overview")
async def workflow_overview(
    slug: str,
    date_param: str | None = Query(default=None, alias="date"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: GitHubClient = Depends(get_github_client),
):
    repo = _require_repo(db, slug, user.id)

    if date_param:
        day = parse_date_param(date_param)
        if day is None:
            raise HTTPException(status_code=400, detail="Invalid request parameters")
    else:
        day = utc_today()

    try:
        active = active_workflows_only(await client.list_workflows(repo.repo_path))
    except GitHubAPIError:
        logger.warning("Failed to fetch workflows for %s", repo.repo_path, exc_info=True)
        return {
            "repository": _repository_ref(repo),
            "overview": empty_overview(),
            "message": "No active workflows found. Please fetch workflows first.",
        }

    try:
        await client.get_repository(repo.repo_path)
    except GitHubAPIError:
        raise HTTPException(status_code=500, detail="Failed to fetch repository information")

    try:
        runs = await get_workflow_runs_for_date(client, repo.repo_path, day)
    except GitHubAPIError:
        logger.exception("Error fetching overview runs for %s", repo.repo_path)
        raise HTTPException(status_code=500, detail="Internal server error")
    overview = calculate_overview_data(runs)
    missing = calculate_missing_workflows(active, runs)
    runs_by_hour = calculate_hourly_breakdown(runs)
    hourly = calculate_hourly_statistics(runs_by_hour)

    return {
        "repository": _repository_ref(repo),
        "overview": {
            **overview,
            "didntRunCount": len(missing),
            "missingWorkflows": missing,
            "totalWorkflows": len(active),
            "successRate": calculate_success_rate(overview["passedRuns"], overview["completedRuns"]),
            "passRate": calculate_success_rate(overview["passedRuns"], len(runs)),
            "avgRunsPerHour": hourly["avgRunsPerHour"],
            "minRunsPerHour": hourly["minRunsPerHour"],
            "maxRunsPerHour": hourly["maxRunsPerHour"],
            "runsByHour": runs_by_hour,
            "totalRuns": hourly["totalRuns"],
        },
        "date": day.isoformat(),
        "generatedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


@router.get("/workflow/{slug}/exists")
def workflows_exist(slug: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    count = len(repo_storage.get_workflows(db, slug, user.id))
    return {
        "hasWorkflows": count > 0,
        "workflowCount": count,
        "message": f"Found {count} saved workflows for {slug}" if count else f"No saved workflows found for {slug}",
    }


# ----- /workflows (year view) -----

def year_range(today: date) -> tuple[datetime, datetime]:
    start = datetime(today.year, 1, 1, tzinfo=timezone.utc)
    end = datetime(today.year, 12, 31, 23, 59, 59, tzinfo=timezone.utc)
    return start, end


@router.get("/workflows")
async def workflows_year_view(
    slug: str | None = None,
    workflow_id: int | None = Query(default=None, alias="workflowId"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: GitHubClient = Depends(get_github_client),
):
    """Stored workflows with this year's run metrics, optionally focused on one workflow."""
    if not slug:
        raise HTTPException(status_code=400, detail="Repository slug is required")
    repo = _require_repo(db, slug, user.id, detail="Repository not found")

    start, end = year_range(utc_today())
    workflows = [
        {
            **wf.to_dict(),
            "repoSlug": slug,
            "repoPath": repo.repo_path,
            "repoDisplayName": repo.display_name,
        }
        for wf in repo_storage.get_workflows(db, slug, user.id)
    ]
    if not workflows:
        return {
            "workflows": [],
            "metrics": calculate_metrics([]),
            "selectedWorkflow": None,
            "selectedWorkflowRuns": [],
            "selectedWorkflowMetrics": None,
        }

    try:
        all_runs = await get_workflow_runs_for_date_range(client, repo.repo_path, start, end)
    except (GitHubAPIError, httpx.HTTPError):
        logger.exception("Error fetching runs for repo %s", slug)
        all_runs = []

    selected = None
    selected_runs: list[dict] = []
    selected_metrics = None
    if workflow_id is not None:
        selected = next((wf for wf in workflows if wf["id"] == workflow_id), None)
        if selected:
            selected_runs = [run for run in all_runs if run.get("workflow_id") == workflow_id]
            selected_metrics = {**calculate_metrics(selected_runs), "avgDuration": average_duration(selected_runs)}

    response = {
        "workflows": workflows,
        "metrics": calculate_metrics(all_runs),
        "selectedWorkflow": selected,
        "selectedWorkflowRuns": selected_runs[:MAX_SELECTED_RUNS],
        "selectedWorkflowMetrics": selected_metrics,
        "health": health_summary(selected_runs if selected else all_runs),
        "dateRange": {"startDate": start.date().isoformat(), "endDate": end.date().isoformat()},
    }
    if workflow_id is None:
        response["allRuns"] = all_runs
    return response
