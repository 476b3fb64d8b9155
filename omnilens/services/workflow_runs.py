# omnilens/services/workflow_runs.py
"""Workflow run fetching and per-day metrics.

All day boundaries are UTC.
"""
import math
from datetime import date, datetime, time, timedelta, timezone

from omnilens.github_client import GitHubClient

IN_PROGRESS_STATUSES = ("in_progress", "queued")
RUN_SUMMARY_FIELDS = ("id", "conclusion", "status", "html_url", "run_started_at")


def parse_github_time(value: str | None) -> datetime | None:
    """Parse GitHub's ``2024-05-01T10:00:00Z`` timestamps into aware datetimes."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_github_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def run_duration_seconds(run: dict) -> int | None:
    """Approximate wall time of a run: ``updated_at - run_started_at`` floored to seconds."""
    start = parse_github_time(run.get("run_started_at"))
    end = parse_github_time(run.get("updated_at"))
    if not start or not end:
        return None
    return math.floor((end - start).total_seconds())


def started_on(run: dict, day: date) -> bool:
    started = parse_github_time(run.get("run_started_at"))
    return started is not None and started.date() == day


def _filter_runs_for_day(runs: list[dict], day: date, today: date) -> list[dict]:
    # Runs still queued/in progress only count when looking at today
    is_today = day == today
    return [
        run
        for run in runs
        if started_on(run, day) or (is_today and run.get("status") in IN_PROGRESS_STATUSES)
    ]


async def get_workflow_runs_for_date(
    client: GitHubClient, repo_path: str, day: date, today: date | None = None
) -> list[dict]:
    """Every run (all branches) that started on ``day``."""
    today = today or utc_today()
    created = f"{day.isoformat()}T00:00:00Z..{day.isoformat()}T23:59:59Z"
    runs = await client.list_workflow_runs(repo_path, created)
    return _filter_runs_for_day(runs, day, today)


async def get_workflow_runs_for_date_grouped(
    client: GitHubClient, repo_path: str, day: date, today: date | None = None
) -> list[dict]:
    """One entry per workflow for ``day``, carrying ``run_count`` and ``all_runs``.

    The search window is widened by 12 hours on each side so runs created
    just before midnight but started on ``day`` are not missed.
    """
    today = today or utc_today()
    midnight = datetime.combine(day, time.min, tzinfo=timezone.utc)
    window_start = midnight - timedelta(hours=12)
    window_end = midnight + timedelta(hours=36)
    created = f"{format_github_time(window_start)}..{format_github_time(window_end)}"
    runs = await client.list_workflow_runs(repo_path, created)
    return get_latest_workflow_runs(_filter_runs_for_day(runs, day, today))


async def get_workflow_runs_for_date_range(
    client: GitHubClient, repo_path: str, start: datetime, end: datetime
) -> list[dict]:
    created = f"{format_github_time(start)}..{format_github_time(end)}"
    return await client.list_workflow_runs(repo_path, created)


def sort_runs_newest_first(runs: list[dict]) -> list[dict]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(runs, key=lambda r: parse_github_time(r.get("run_started_at")) or epoch, reverse=True)


def get_latest_workflow_runs(runs: list[dict]) -> list[dict]:
    """Collapse runs to the newest one per ``workflow_id``.

    Workflow names are not unique, so grouping is by id. Each result carries
    ``run_count`` and ``all_runs`` (summaries of every run of that workflow,
    newest first).
    """
    latest: dict[int, dict] = {}
    all_runs: dict[int, list[dict]] = {}

    for run in sort_runs_newest_first(runs):
        key = run["workflow_id"]
        if key not in latest:
            latest[key] = run
            all_runs[key] = []
        all_runs[key].append({field: run.get(field) for field in RUN_SUMMARY_FIELDS})

    return [
        {**run, "run_count": len(all_runs[key]), "all_runs": all_runs[key]}
        for key, run in latest.items()
    ]


# ----------------------------
# Daily metrics
# ----------------------------
def calculate_hourly_breakdown(runs: list[dict]) -> list[dict]:
    buckets = [{"hour": hour, "passed": 0, "failed": 0, "total": 0} for hour in range(24)]
    for run in runs:
        started = parse_github_time(run.get("run_started_at"))
        if started is None:
            continue
        bucket = buckets[started.astimezone(timezone.utc).hour]
        if run.get("conclusion") == "success":
            bucket["passed"] += 1
        elif run.get("conclusion") == "failure":
            bucket["failed"] += 1
    for bucket in buckets:
        bucket["total"] = bucket["passed"] + bucket["failed"]
    return buckets


def calculate_hourly_statistics(runs_by_hour: list[dict]) -> dict:
    totals = [hour["total"] for hour in runs_by_hour]
    total_runs = sum(totals)
    return {
        "avgRunsPerHour": round_half_up(total_runs / 24, 1) if total_runs > 0 else 0,
        "minRunsPerHour": min(totals) if totals else 0,
        "maxRunsPerHour": max(totals) if totals else 0,
        "totalRuns": total_runs,
    }


def calculate_missing_workflows(active_workflows: list[dict], runs: list[dict]) -> list[str]:
    """Names of active workflows that have no run in ``runs``."""
    with_runs = {run.get("workflow_id") for run in runs}
    return [wf["name"] for wf in active_workflows if wf["id"] not in with_runs]


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero for positive values (2.5 -> 3), unlike ``round``."""
    factor = 10 ** digits
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if digits == 0 else rounded


def calculate_success_rate(passed: int, completed: int) -> int:
    return round_half_up(passed / completed * 100) if completed > 0 else 0


def total_runtime_seconds(runs: list[dict]) -> int:
    total = 0
    for run in runs:
        if run.get("status") != "completed":
            continue
        seconds = run_duration_seconds(run)
        if seconds is not None:
            total += seconds
    return total


def count_runs(runs: list[dict]) -> dict:
    return {
        "completedRuns": sum(1 for r in runs if r.get("status") == "completed"),
        "inProgressRuns": sum(1 for r in runs if r.get("status") in IN_PROGRESS_STATUSES),
        "passedRuns": sum(1 for r in runs if r.get("conclusion") == "success"),
        "failedRuns": sum(1 for r in runs if r.get("conclusion") == "failure"),
    }


def calculate_overview_data(runs: list[dict]) -> dict:
    return {
        **count_runs(runs),
        "totalRuntime": total_runtime_seconds(runs),
        "didntRunCount": 0,
        "totalWorkflows": len(runs),
        "missingWorkflows": [],
    }


def active_workflows_only(workflows: list[dict]) -> list[dict]:
    return [wf for wf in workflows if wf.get("state") == "active"]
