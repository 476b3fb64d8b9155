# omnilens/services/run_metrics.py
"""Year-view run metrics and workflow health statistics."""
import math
from datetime import datetime, timezone

from omnilens.services.workflow_runs import (
    calculate_success_rate,
    count_runs,
    parse_github_time,
    round_half_up,
    run_duration_seconds,
    total_runtime_seconds,
)


def calculate_metrics(runs: list[dict]) -> dict:
    counts = count_runs(runs)
    return {
        "totalRuns": len(runs),
        "completedRuns": counts["completedRuns"],
        "passedRuns": counts["passedRuns"],
        "failedRuns": counts["failedRuns"],
        "inProgressRuns": counts["inProgressRuns"],
        "passFailRate": calculate_success_rate(counts["passedRuns"], counts["completedRuns"]),
        "durationSum": total_runtime_seconds(runs),
    }


def average_duration(runs: list[dict]) -> int:
    durations = [
        seconds
        for seconds in (run_duration_seconds(r) for r in runs if r.get("status") == "completed")
        if seconds is not None
    ]
    if not durations:
        return 0
    return round_half_up(sum(durations) / len(durations))


def _completed_before(runs: list[dict], as_of: datetime) -> list[tuple[datetime, dict]]:
    """Completed runs started at or before ``as_of``, oldest first."""
    result = []
    for run in runs:
        if run.get("status") != "completed":
            continue
        started = parse_github_time(run.get("run_started_at"))
        if started is None or started > as_of:
            continue
        result.append((started, run))
    result.sort(key=lambda item: item[0])
    return result


def longest_failure_streak(runs: list[dict], as_of: datetime) -> int:
    longest = current = 0
    for _, run in _completed_before(runs, as_of):
        if run.get("conclusion") == "failure":
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def days_since_last_failure(runs: list[dict], as_of: datetime) -> int | None:
    failures = [started for started, run in _completed_before(runs, as_of) if run.get("conclusion") == "failure"]
    if not failures:
        return None
    last = failures[-1].astimezone(timezone.utc).date()
    return (as_of.astimezone(timezone.utc).date() - last).days


def median_duration_seconds(runs: list[dict], as_of: datetime) -> int | None:
    durations = sorted(
        seconds
        for seconds in (run_duration_seconds(run) for _, run in _completed_before(runs, as_of))
        if seconds is not None and seconds >= 0
    )
    if not durations:
        return None
    middle = len(durations) // 2
    if len(durations) % 2:
        return durations[middle]
    return math.floor((durations[middle - 1] + durations[middle]) / 2)


def health_summary(runs: list[dict], as_of: datetime | None = None) -> dict:
    as_of = as_of or datetime.now(timezone.utc)
    return {
        "longestFailureStreak": longest_failure_streak(runs, as_of),
        "daysSinceLastFailure": days_since_last_failure(runs, as_of),
        "medianDurationSeconds": median_duration_seconds(runs, as_of),
    }
