# omnilens/api/coverage.py
import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from omnilens.api.deps import get_current_user, get_github_client
from omnilens.core.config import settings
from omnilens.core.db import get_db
from omnilens.github_client import GitHubAPIError, GitHubClient
from omnilens.models import User
from omnilens.services import repo_storage
from omnilens.services.coverage import (
    COVERAGE_CANDIDATE_PATHS,
    coverage_response,
    detect_framework_from_local,
    detect_framework_from_repository,
    fetch_coverage_from_repository,
    process_coverage_data,
    read_local_coverage,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["coverage"])


def _local_auto_detect(framework_only: bool) -> dict:
    framework = detect_framework_from_local()
    if framework_only:
        return coverage_response(framework)

    local_path = COVERAGE_CANDIDATE_PATHS[0]
    data = read_local_coverage(settings.COVERAGE_DIR)
    if data is None:
        return coverage_response(
            framework,
            attempted=[{"path": local_path, "success": False, "error": "File not found (local mode)"}],
        )

    summary, files = process_coverage_data(data)
    return coverage_response(framework, summary, files, attempted=[{"path": local_path, "success": True}])


@router.get("/auto-detect/{slug}")
async def auto_detect(
    slug: str,
    source: str = "remote",
    frameworkOnly: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: GitHubClient = Depends(get_github_client),
):
    """Test framework and Istanbul coverage for a repository (``source=local`` reads this host)."""
    if source == "local":
        try:
            return _local_auto_detect(frameworkOnly)
        except (OSError, ValueError, AttributeError):
            logger.exception("Error reading local coverage data")
            raise HTTPException(status_code=500, detail="Failed to fetch coverage data")

    repo = repo_storage.get_user_repo(db, slug, user.id)
    if not repo:
        raise HTTPException(status_code=404, detail="Repository not found in dashboard")

    owner, _, name = repo.repo_path.partition("/")
    if not owner or not name:
        raise HTTPException(status_code=400, detail="Invalid repository path format")

    try:
        framework = await detect_framework_from_repository(client, repo.repo_path)
        if frameworkOnly:
            return coverage_response(framework)

        data, attempts = await fetch_coverage_from_repository(client, repo.repo_path)
        if data is None:
            return coverage_response(framework, attempted=attempts)

        summary, files = process_coverage_data(data)
        return coverage_response(framework, summary, files, attempted=attempts)
    except (GitHubAPIError, httpx.HTTPError, AttributeError, TypeError):
        logger.exception("Error fetching coverage data for %s", slug)

    # Still report the framework when coverage could not be read
    try:
        framework = await detect_framework_from_repository(client, repo.repo_path)
    except (GitHubAPIError, httpx.HTTPError):
        logger.exception("Error detecting framework for %s", slug)
        raise HTTPException(status_code=500, detail="Failed to fetch coverage data")
    return coverage_response(framework, error="Failed to read coverage data")


@router.get("/coverage")
def local_coverage():
    """Coverage summary of this host's ``coverage-final.json``."""
    try:
        data = read_local_coverage(settings.COVERAGE_DIR)
        if data is None:
            raise FileNotFoundError(settings.COVERAGE_DIR)
        summary, files = process_coverage_data(data)
    except (OSError, ValueError, AttributeError):
        logger.exception("Error reading coverage data")
        raise HTTPException(status_code=500, detail="Failed to read coverage data")
    return {"summary": summary, "files": files}
