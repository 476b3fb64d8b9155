# omnilens/services/usage_metrics.py
"""Runner usage (minutes, hosted vs self-hosted, OS) aggregated from job data.

Only the newest run of each workflow is inspected, which keeps the number of
job lookups bounded even for a whole year.
"""
import asyncio
import logging
import re
import time
from datetime import date, datetime, timedelta, timezone

import httpx

from omnilens.github_client import GitHubAPIError, GitHubClient
from omnilens.services.workflow_runs import (
    get_workflow_runs_for_date_range,
    parse_github_time,
    round_half_up,
    sort_runs_newest_first,
)

logger = logging.getLogger(__name__)

WORKFLOW_CAP = 100
JOB_FETCH_CONCURRENCY = 10
CACHE_TTL_SECONDS = 10 * 60

PERIODS = ("current_month", "last_7_days", "current_year")
DEFAULT_PERIOD = "current_month"
DATE_PARAM_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Tie order when picking the majority OS
RUNTIME_OS_ORDER = ("Linux", "macOS", "Windows")
WORKFLOW_FILE_RE = re.compile(r"\.github/workflows/(.+)@.+")


# ----------------------------
# Label helpers
# ----------------------------
def is_self_hosted(labels: list[str]) -> bool:
    return any(label.lower() == "self-hosted" for label in labels)


def runtime_os_from_labels(labels: list[str]) -> str | None:
    lower = [label.lower() for label in labels]
    if any(label.startswith("ubuntu") or label == "linux" for label in lower):
        return "Linux"
    if any(label.startswith("macos") for label in lower):
        return "macOS"
    if any(label.startswith("windows") for label in lower):
        return "Windows"
    return None


def job_duration_minutes(job: dict) -> float:
    start = parse_github_time(job.get("started_at"))
    end = parse_github_time(job.get("completed_at"))
    if not start or not end or end <= start:
        return 0
    return (end - start).total_seconds() / 60


def majority_os(counts: dict[str, int]) -> str | None:
    if max(counts.values()) == 0:
        return None
    best = RUNTIME_OS_ORDER[0]
    for name in RUNTIME_OS_ORDER[1:]:
        if counts[name] > counts[best]:
            best = name
    return best


def workflow_display_name(run: dict, key: str) -> str:
    path = run.get("path")
    if path:
        return WORKFLOW_FILE_RE.sub(r"\1", path)
    return run.get("name") or key


# ----------------------------
# Job fetching
# ----------------------------
async def _jobs_or_empty(client: GitHubClient, repo_path: str, run_id: int) -> list[dict]:
    try:
        return await client.list_jobs_for_run(repo_path, run_id)
    except (GitHubAPIError, httpx.HTTPError):
        logger.warning("Failed to fetch jobs for run %s in %s", run_id, repo_path, exc_info=True)
        return []


async def fetch_jobs_in_batches(
    client: GitHubClient, repo_path: str, runs: list[dict], batch_size: int = JOB_FETCH_CONCURRENCY
) -> list[tuple[dict, list[dict]]]:
    results: list[tuple[dict, list[dict]]] = []
    for i in range(0, len(runs), batch_size):
        batch = runs[i : i + batch_size]
        job_lists = await asyncio.gather(*(_jobs_or_empty(client, repo_path, run["id"]) for run in batch))
        results.extend(zip(batch, job_lists))
    return results


# ----------------------------
# Aggregation
# ----------------------------
def aggregate_usage(run_jobs: list[tuple[dict, list[dict]]], total_runs: int) -> dict:
    total_minutes = 0.0
    total_jobs = 0
    os_counts = {name: 0 for name in RUNTIME_OS_ORDER}
    rows: dict[str, dict] = {}

    for run, jobs in run_jobs:
        key = run.get("path") or run.get("name") or f"workflow-{run.get('workflow_id')}"
        row = rows.get(key)
        if row is None:
            row = rows[key] = {
                "workflowName": workflow_display_name(run, key),
                "path": key,
                "totalMinutes": 0.0,
                "workflowRuns": 0,
                "jobs": 0,
                "hostedJobs": 0,
                "selfHostedJobs": 0,
                "osCounts": {name: 0 for name in RUNTIME_OS_ORDER},
            }
        row["workflowRuns"] += 1

        for job in jobs:
            minutes = job_duration_minutes(job)
            total_jobs += 1
            total_minutes += minutes
            row["totalMinutes"] += minutes
            row["jobs"] += 1

            labels = job.get("labels") or []
            if is_self_hosted(labels):
                row["selfHostedJobs"] += 1
            else:
                row["hostedJobs"] += 1

            runtime_os = runtime_os_from_labels(labels)
            if runtime_os:
                os_counts[runtime_os] += 1
                row["osCounts"][runtime_os] += 1

    by_workflow = []
    for row in rows.values():
        if row["selfHostedJobs"] and row["hostedJobs"]:
            runner_type = "mixed"
        elif row["selfHostedJobs"]:
            runner_type = "self-hosted"
        else:
            runner_type = "hosted"
        by_workflow.append(
            {
                "workflowName": row["workflowName"],
                "path": row["path"],
                "totalMinutes": round_half_up(row["totalMinutes"], 1),
                "workflowRuns": row["workflowRuns"],
                "jobs": row["jobs"],
                "runnerType": runner_type,
                "runtimeOs": majority_os(row["osCounts"]) or "—",
            }
        )

    by_workflow.sort(key=lambda r: r["totalMinutes"], reverse=True)

    return {
        "summary": {
            "totalMinutes": round_half_up(total_minutes, 1),
            "totalJobRuns": total_runs,
            "totalJobs": total_jobs,
            "totalHostedJobRuns": sum(1 for r in by_workflow if r["runnerType"] in ("hosted", "mixed")),
            "totalSelfHostedJobRuns": sum(1 for r in by_workflow if r["runnerType"] in ("self-hosted", "mixed")),
            "majorityRuntimeOs": majority_os(os_counts),
        },
        "byWorkflow": by_workflow,
    }


async def get_usage_metrics(
    client: GitHubClient,
    repo_path: str,
    start: datetime,
    end: datetime,
    workflow_cap: int = WORKFLOW_CAP,
) -> dict:
    runs = await get_workflow_runs_for_date_range(client, repo_path, start, end)

    latest: dict[int, dict] = {}
    for run in sort_runs_newest_first(runs):
        latest.setdefault(run["workflow_id"], run)
    to_process = list(latest.values())[:workflow_cap]

    run_jobs = await fetch_jobs_in_batches(client, repo_path, to_process)
    return aggregate_usage(run_jobs, total_runs=len(runs))


# ----------------------------
# Date ranges
# ----------------------------
def _parse_date_param(value: str | None) -> date | None:
    if not value or not DATE_PARAM_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def resolve_date_range(
    period: str, start: str | None = None, end: str | None = None, now: datetime | None = None
) -> tuple[datetime, datetime]:
    """Turn a period name or explicit ``YYYY-MM-DD`` bounds into a UTC datetime range.

    Explicit bounds win when both are valid; the end is capped at the end of today.
    """
    now = now or datetime.now(timezone.utc)
    today = now.date()
    end_of_today = datetime.combine(today, datetime.max.time(), tzinfo=timezone.utc).replace(microsecond=0)

    start_day = _parse_date_param(start)
    end_day = _parse_date_param(end)
    if start_day and end_day:
        range_start = datetime.combine(start_day, datetime.min.time(), tzinfo=timezone.utc)
        range_end = datetime.combine(end_day, datetime.max.time(), tzinfo=timezone.utc).replace(microsecond=0)
        return range_start, min(range_end, end_of_today)

    if period == "last_7_days":
        first = today - timedelta(days=6)
    elif period == "current_year":
        first = today.replace(month=1, day=1)
    else:
        first = today.replace(day=1)
    return datetime.combine(first, datetime.min.time(), tzinfo=timezone.utc), end_of_today


# ----------------------------
# Cache
# ----------------------------
class UsageCache:
    """Small in-process TTL cache for usage results."""

    def __init__(self, ttl_seconds: float = CACHE_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self.entries: dict[str, tuple[float, dict]] = {}

    @staticmethod
    def key(user_id: str, slug: str, start: datetime, end: datetime) -> str:
        # Slugs are only unique per user
        return f"{user_id}:{slug}:{start.date().isoformat()}:{end.date().isoformat()}"

    def get(self, key: str) -> dict | None:
        entry = self.entries.get(key)
        if entry is None:
            return None
        expires, data = entry
        if time.monotonic() > expires:
            del self.entries[key]
            return None
        return data

    def set(self, key: str, data: dict) -> None:
        now = time.monotonic()
        # Sweep expired entries, including keys nobody reads again
        for stale in [k for k, (expires, _) in self.entries.items() if now > expires]:
            del self.entries[stale]
        self.entries[key] = (now + self.ttl_seconds, data)

    def clear(self) -> None:
        self.entries.clear()


usage_cache = UsageCache()
