# omnilens/services/repo_workflow_fetch.py
"""Initial workflow fetch for a repository that was just added."""
import logging
from typing import Callable

from sqlalchemy.orm import Session

from omnilens.github_client import GitHubClient
from omnilens.services.repo_storage import save_workflows
from omnilens.services.workflow_runs import (
    active_workflows_only,
    calculate_success_rate,
    count_runs,
    get_workflow_runs_for_date,
    started_on,
    utc_today,
)

logger = logging.getLogger(__name__)


async def fetch_workflow_data_for_new_repo(
    client: GitHubClient,
    db_factory: Callable[[], Session],
    repo_path: str,
    user_id: str,
    slug: str,
) -> dict | None:
    """Fetch and store active workflows, then compute today's metrics.

    Returns ``{"workflows": [...], "todayMetrics": {...}}`` or None when
    anything fails.
    """
    owner, _, name = repo_path.partition("/")
    if not owner or not name:
        logger.error("Invalid repository path format: %s", repo_path)
        return None

    try:
        await client.get_repository(repo_path)
        workflows = active_workflows_only(await client.list_workflows(repo_path))
        active = [
            {"id": wf["id"], "name": wf["name"], "path": wf["path"], "state": wf["state"]}
            for wf in workflows
        ]

        if active:
            db = db_factory()
            try:
                save_workflows(db, slug, active, user_id)
            finally:
                db.close()

        today = utc_today()
        all_runs = await get_workflow_runs_for_date(client, repo_path, today, today)
        # Only runs that actually started today count towards the metrics
        runs = [run for run in all_runs if started_on(run, today)]
        counts = count_runs(runs)
    except Exception:
        # Bad payloads included; the repository is already stored either way
        logger.exception("Error fetching workflow data for %s", repo_path)
        return None

    return {
        "workflows": active,
        "todayMetrics": {
            "totalWorkflows": len(active),
            "passedRuns": counts["passedRuns"],
            "failedRuns": counts["failedRuns"],
            "inProgressRuns": counts["inProgressRuns"],
            "successRate": calculate_success_rate(counts["passedRuns"], counts["completedRuns"]),
        },
    }
