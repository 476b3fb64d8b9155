# omnilens/services/github_status.py
"""GitHub Actions status, read from the public status page feed."""
import logging
from datetime import datetime, timezone

import httpx

from omnilens.core.config import settings

logger = logging.getLogger(__name__)

STATUS_SEVERITY = {
    "major_outage": 4,
    "partial_outage": 3,
    "degraded_performance": 2,
    "operational": 1,
}
ISSUE_STATUSES = ("partial_outage", "major_outage")
ACTIONS_KEYWORDS = ("actions", "workflows")

STATUS_CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=300"
FALLBACK_CACHE_CONTROL = "public, s-maxage=30, stale-while-revalidate=60"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def summarize_components(components: list[dict]) -> dict:
    """Reduce status page components to the Actions-related status summary."""
    actions = [c for c in components if any(k in (c.get("name") or "").lower() for k in ACTIONS_KEYWORDS)]
    has_issues = any(c.get("status") in ISSUE_STATUSES for c in actions)

    status = "operational"
    if has_issues:
        worst = actions[0]
        for component in actions[1:]:
            if STATUS_SEVERITY.get(component.get("status"), 0) > STATUS_SEVERITY.get(worst.get("status"), 0):
                worst = component
        status = worst.get("status") or "operational"

    return {
        "hasIssues": has_issues,
        "status": status,
        "message": (
            f"GitHub Actions is experiencing {status.replace('_', ' ', 1)}"
            if has_issues
            else "GitHub Actions is operational"
        ),
        "components": [
            {"name": c.get("name"), "status": c.get("status"), "description": c.get("description")}
            for c in actions
        ],
        "lastUpdated": _now_iso(),
        "source": "GitHub Status API",
    }


def fallback_status(error: str) -> dict:
    return {
        "hasIssues": False,
        "status": "operational",
        "message": "GitHub Actions status unavailable - assuming operational",
        "components": [],
        "lastUpdated": _now_iso(),
        "source": "fallback",
        "error": error,
    }


async def fetch_actions_status(client: httpx.AsyncClient) -> tuple[dict, bool]:
    """Return ``(payload, ok)``; ``ok`` is False when the fallback payload was used."""
    try:
        resp = await client.get(
            settings.GITHUB_STATUS_URL,
            headers={"User-Agent": "OmniLens/1.0", "Accept": "application/json"},
        )
        if resp.is_error:
            raise RuntimeError(f"GitHub Status API responded with {resp.status_code}")
        components = resp.json().get("components") or []
    except (httpx.HTTPError, RuntimeError, ValueError) as e:
        logger.warning("Error fetching GitHub status: %s", e)
        return fallback_status(str(e)), False

    return summarize_components(components), True
