# omnilens/api/repos.py
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable
from urllib.parse import urlparse

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, HttpUrl, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from omnilens.api.deps import get_current_user, get_github_client, get_session_factory
from omnilens.api.health import NO_CACHE_HEADERS
from omnilens.core.db import get_db
from omnilens.github_client import GitHubAPIError, GitHubClient, MissingGitHubTokenError
from omnilens.models import Repository, User
from omnilens.services import repo_storage
from omnilens.services.repo_workflow_fetch import fetch_workflow_data_for_new_repo
from omnilens.services.workflow_runs import (
    active_workflows_only,
    calculate_success_rate,
    count_runs,
    get_workflow_runs_for_date,
    started_on,
    utc_today,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/repo", tags=["repositories"])

BOOTSTRAP_TIMEOUT_SECONDS = 10

# Bootstrap fetches that outlived their request; referenced so they are not collected
_background_tasks: set[asyncio.Task] = set()


# ----- Pydantic schemas -----

class AddRepoIn(BaseModel):
    repoPath: str = Field(min_length=1)
    displayName: str = Field(min_length=1)
    htmlUrl: HttpUrl
    defaultBranch: str = Field(min_length=1)
    avatarUrl: HttpUrl | None = None


class ValidateRepoIn(BaseModel):
    repoUrl: str = Field(min_length=1)


# ----- Helpers -----

def normalize_repo_input(value: str) -> str | None:
    """``owner/repo`` from a github.com URL or an ``owner/repo`` string."""
    if not value:
        return None
    trimmed = value.strip()

    if trimmed.startswith(("http://", "https://")):
        parsed = urlparse(trimmed)
        if parsed.hostname != "github.com":
            return None
        parts = [p for p in parsed.path.split("/") if p]
        if len(parts) < 2:
            return None
        return f"{parts[0]}/{parts[1]}"

    parts = [p for p in trimmed.split("/") if p]
    if len(parts) == 2:
        return f"{parts[0]}/{parts[1]}"
    return None


def empty_dashboard_metrics() -> dict:
    return {
        "totalWorkflows": 0,
        "passedRuns": 0,
        "failedRuns": 0,
        "inProgressRuns": 0,
        "successRate": 0,
        "hasActivity": False,
    }


async def _today_metrics(client: GitHubClient, repo: Repository) -> dict:
    active = active_workflows_only(await client.list_workflows(repo.repo_path))
    today = utc_today()
    runs = [
        run
        for run in await get_workflow_runs_for_date(client, repo.repo_path, today, today)
        if started_on(run, today)
    ]
    counts = count_runs(runs)
    return {
        "totalWorkflows": len(active),
        "passedRuns": counts["passedRuns"],
        "failedRuns": counts["failedRuns"],
        "inProgressRuns": counts["inProgressRuns"],
        "successRate": calculate_success_rate(counts["passedRuns"], counts["completedRuns"]),
        "hasActivity": counts["completedRuns"] > 0 or counts["inProgressRuns"] > 0,
    }


async def _dashboard_entry(client: GitHubClient, repo: Repository, has_workflows: bool | None) -> dict:
    """One dashboard card; ``has_workflows`` is None when the stored workflows could not be read."""
    entry = {
        "slug": repo.slug,
        "repoPath": repo.repo_path,
        "displayName": repo.display_name,
        "avatarUrl": repo.avatar_url,
        "htmlUrl": repo.html_url,
        "visibility": repo.visibility or "public",
        "hasWorkflows": bool(has_workflows),
        "metrics": empty_dashboard_metrics(),
        "hasError": False,
        "errorMessage": None,
    }
    if has_workflows is None:
        entry.update(hasError=True, errorMessage="Failed to load repository data")
        return entry
    if not has_workflows:
        return entry

    try:
        entry["metrics"] = await _today_metrics(client, repo)
    except (GitHubAPIError, httpx.HTTPError):
        # Metrics stay at zero; the repository itself still loads
        logger.warning("Error fetching metrics for %s", repo.slug, exc_info=True)
    except MissingGitHubTokenError:
        raise
    except Exception:
        # Failures stay on this card
        logger.exception("Error processing repository %s", repo.slug)
        entry.update(hasError=True, errorMessage="Failed to load repository data")
    return entry


# ----- Routes -----

@router.get("")
def list_repos(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    repos = repo_storage.load_user_repos(db, user.id)
    return JSONResponse(
        {
            "repositories": [
                {
                    "slug": r.slug,
                    "displayName": r.display_name,
                    "avatarUrl": r.avatar_url or None,
                    "htmlUrl": r.html_url or None,
                }
                for r in repos
            ]
        },
        headers=NO_CACHE_HEADERS,
    )


@router.get("/dashboard")
async def dashboard(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: GitHubClient = Depends(get_github_client),
):
    repos = repo_storage.load_user_repos(db, user.id)
    if not repos:
        return {"repositories": [], "totalCount": 0}

    # Stored workflow lookups stay on this session, before any concurrent GitHub calls
    has_workflows: dict[str, bool | None] = {}
    for r in repos:
        try:
            has_workflows[r.slug] = bool(repo_storage.get_workflows(db, r.slug, user.id))
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Error processing repository %s", r.slug)
            has_workflows[r.slug] = None
    repositories = await asyncio.gather(*(_dashboard_entry(client, r, has_workflows[r.slug]) for r in repos))

    return JSONResponse(
        {
            "repositories": list(repositories),
            "totalCount": len(repositories),
            "loadedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        },
        headers=NO_CACHE_HEADERS,
    )


@router.post("/validate")
async def validate_repo(
    body: dict | None = Body(default=None),
    user: User = Depends(get_current_user),
    client: GitHubClient = Depends(get_github_client),
):
    try:
        payload = ValidateRepoIn.model_validate(body or {})
    except ValidationError:
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid request", "message": "Repository URL is required"},
        )

    repo_path = normalize_repo_input(payload.repoUrl)
    if not repo_path:
        raise HTTPException(
            status_code=400,
            detail="Invalid GitHub repository URL or format. Use owner/repo or a full GitHub URL.",
        )

    try:
        repo_data = await client.get_repository(repo_path)
    except GitHubAPIError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail={"valid": False, "error": "Repository not found"})
        if e.status_code == 403:
            raise HTTPException(
                status_code=403,
                detail={"valid": False, "error": "Repository access denied. Check your GitHub permissions."},
            )
        raise HTTPException(status_code=500, detail={"valid": False, "error": str(e)})

    try:
        workflows = await client.list_workflows(repo_path)
    except GitHubAPIError as e:
        if e.status_code == 403:
            error = "Access denied to repository workflows. Check token permissions for organization repositories."
            raise HTTPException(status_code=403, detail={"valid": False, "error": error})
        if e.status_code == 404:
            error = "Cannot access repository workflows. Repository may not support GitHub Actions."
            raise HTTPException(status_code=404, detail={"valid": False, "error": error})
        raise HTTPException(
            status_code=500,
            detail={"valid": False, "error": f"Cannot access workflows: {e.status_code} {e.reason}".rstrip()},
        )

    owner = repo_data.get("owner") or {}
    return {
        "valid": True,
        "repoPath": repo_data.get("full_name"),
        "htmlUrl": repo_data.get("html_url"),
        "defaultBranch": repo_data.get("default_branch"),
        "displayName": repo_data.get("name"),
        "owner": owner.get("login"),
        "avatarUrl": owner.get("avatar_url"),
        "visibility": "private" if repo_data.get("private") else "public",
        "workflowsAccessible": True,
        "workflowCount": len(active_workflows_only(workflows)),
    }


@router.post("/add")
async def add_repo(
    payload: AddRepoIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: GitHubClient = Depends(get_github_client),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    try:
        repo_data = await client.get_repository(payload.repoPath)
    except GitHubAPIError as e:
        if e.status_code == 404:
            raise HTTPException(
                status_code=404,
                detail={"error": "Repository not found or does not exist", "repoPath": payload.repoPath},
            )
        if e.status_code == 403:
            raise HTTPException(
                status_code=403,
                detail={
                    "error": "Repository access denied. Check your GitHub permissions.",
                    "repoPath": payload.repoPath,
                },
            )
        raise HTTPException(status_code=500, detail={"error": str(e), "repoPath": payload.repoPath})

    slug = payload.repoPath.replace("/", "-", 1)
    owner = repo_data.get("owner") or {}
    repo = Repository(
        slug=slug,
        repo_path=payload.repoPath,
        display_name=payload.displayName,
        html_url=str(payload.htmlUrl),
        default_branch=payload.defaultBranch,
        avatar_url=str(payload.avatarUrl) if payload.avatarUrl else owner.get("avatar_url"),
        visibility="private" if repo_data.get("private") else "public",
    )

    result = repo_storage.add_user_repo(db, repo, user.id)
    if not result.success:
        if result.error and "Maximum repository limit" in result.error:
            raise HTTPException(status_code=400, detail=result.error)
        raise HTTPException(status_code=409, detail={"error": "Repository already exists in dashboard", "slug": slug})

    # Give the initial fetch a bounded head start; past the timeout it keeps running in the background
    task = asyncio.create_task(
        fetch_workflow_data_for_new_repo(client, session_factory, payload.repoPath, user.id, slug)
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    workflow_data = None
    try:
        workflow_data = await asyncio.wait_for(asyncio.shield(task), timeout=BOOTSTRAP_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.info("Workflow data fetch initiated for %s (timeout after %ss)", payload.repoPath, BOOTSTRAP_TIMEOUT_SECONDS)

    return {
        "success": True,
        "repo": result.repo.to_dict(),
        "workflowData": workflow_data,
        "message": (
            "Repository added to dashboard successfully with workflow data"
            if workflow_data
            else "Repository added to dashboard successfully"
        ),
    }


@router.get("/{slug}")
def get_repo(slug: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    repo = repo_storage.get_user_repo(db, slug, user.id)
    if not repo:
        raise HTTPException(status_code=404, detail="Repository not found")
    return {"success": True, "repo": repo.to_dict()}


@router.delete("/{slug}")
def delete_repo(slug: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    repo = repo_storage.get_user_repo(db, slug, user.id)
    if not repo:
        raise HTTPException(status_code=404, detail="Repository not found")

    try:
        repo_storage.delete_workflows(db, slug, user.id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error deleting workflows for repo %s", slug)

    deleted = repo_storage.remove_user_repo(db, slug, user.id)
    if not deleted:
        raise HTTPException(status_code=500, detail="Failed to delete repository")

    return {
        "success": True,
        "message": "Repository removed from dashboard successfully",
        "deletedRepo": deleted.to_dict(),
    }
