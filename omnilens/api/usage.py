# omnilens/api/usage.py
import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from omnilens.api.deps import get_current_user, get_github_client
from omnilens.core.db import get_db
from omnilens.github_client import GitHubAPIError, GitHubClient
from omnilens.models import User
from omnilens.services import repo_storage
from omnilens.services.usage_metrics import (
    DEFAULT_PERIOD,
    PERIODS,
    UsageCache,
    get_usage_metrics,
    resolve_date_range,
    usage_cache,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/{slug}")
async def usage_for_repo(
    slug: str,
    period: str | None = None,
    start: str | None = None,
    end: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: GitHubClient = Depends(get_github_client),
):
    """Runner minutes and runner types for one repository over a period."""
    repo = repo_storage.get_user_repo(db, slug, user.id)
    if not repo:
        raise HTTPException(status_code=404, detail="Repository not found")

    period = period or DEFAULT_PERIOD
    if period not in PERIODS:
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid parameters", "details": {"period": f"Must be one of: {', '.join(PERIODS)}"}},
        )

    range_start, range_end = resolve_date_range(period, start, end)
    key = UsageCache.key(user.id, slug, range_start, range_end)

    result = usage_cache.get(key)
    if result is None:
        try:
            result = await get_usage_metrics(client, repo.repo_path, range_start, range_end)
        except GitHubAPIError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except httpx.HTTPError:
            logger.exception("Usage API error for %s", slug)
            raise HTTPException(status_code=500, detail="Failed to fetch usage metrics")
        usage_cache.set(key, result)

    logger.info(
        "usage %s %s hosted=%s self_hosted=%s os=%s",
        slug,
        period,
        result["summary"]["totalHostedJobRuns"],
        result["summary"]["totalSelfHostedJobRuns"],
        result["summary"]["majorityRuntimeOs"],
    )

    return {
        "summary": result["summary"],
        "byWorkflow": result["byWorkflow"],
        "period": period,
        "dateRange": {"start": range_start.date().isoformat(), "end": range_end.date().isoformat()},
    }
