# omnilens/services/coverage.py
"""Istanbul coverage summaries and JavaScript test framework detection."""
import json
import logging
from pathlib import Path

from omnilens.github_client import GitHubAPIError, GitHubClient

logger = logging.getLogger(__name__)

COVERAGE_FILE = "coverage-final.json"
COVERAGE_CANDIDATE_PATHS = (
    "coverage/coverage-final.json",
    "apps/web/coverage/coverage-final.json",
    "coverage-final.json",
)

# (display name, package names) in detection order; only Jest is supported
TEST_FRAMEWORKS = (
    ("Jest", ("jest",)),
    ("Vitest", ("vitest",)),
    ("Mocha", ("mocha",)),
    ("Jasmine", ("jasmine", "jasmine-core")),
    ("AVA", ("ava",)),
    ("Tape", ("tape",)),
    ("Tap", ("tap",)),
    ("uvu", ("uvu",)),
    ("QUnit", ("qunit",)),
)
SUPPORTED_FRAMEWORKS = ("Jest",)
NOT_FOUND = "Not Found"

# Workspace folders checked when package.json uses globs we cannot expand remotely
FALLBACK_PACKAGE_DIRS = (
    "apps/web",
    "apps/api",
    "apps/frontend",
    "packages/web",
    "packages/app",
    "packages/core",
)
MAX_PACKAGE_FILES = 10

METRIC_KEYS = (("statements", "s"), ("branches", "b"), ("functions", "f"), ("lines", "l"))


# ----------------------------
# Coverage processing
# ----------------------------
def _metric(total: int, covered: int) -> dict:
    return {
        "total": total,
        "covered": covered,
        "percentage": covered / total * 100 if total > 0 else 0,
    }


def empty_summary() -> dict:
    return {name: _metric(0, 0) for name, _ in METRIC_KEYS}


def _count_hits(hits: dict | None) -> tuple[int, int]:
    hits = hits or {}
    return len(hits), sum(1 for value in hits.values() if value > 0)


def _count_branch_hits(branches: dict | None) -> tuple[int, int]:
    total = covered = 0
    for branch_hits in (branches or {}).values():
        if isinstance(branch_hits, list):
            total += len(branch_hits)
            covered += sum(1 for value in branch_hits if value > 0)
    return total, covered


def process_coverage_data(data: dict) -> tuple[dict, list[dict]]:
    """Summarise a ``coverage-final.json`` mapping of file path -> hit maps.

    Returns ``(summary, files)`` with files sorted by path.
    """
    totals = {name: [0, 0] for name, _ in METRIC_KEYS}
    files = []

    for file_path, file_data in data.items():
        entry = {"path": file_path}
        for name, key in METRIC_KEYS:
            if key == "b":
                total, covered = _count_branch_hits(file_data.get(key))
            else:
                total, covered = _count_hits(file_data.get(key))
            totals[name][0] += total
            totals[name][1] += covered
            entry[name] = _metric(total, covered)
        files.append(entry)

    summary = {name: _metric(total, covered) for name, (total, covered) in totals.items()}
    files.sort(key=lambda f: f["path"])
    return summary, files


def read_local_coverage(coverage_dir: str | Path) -> dict | None:
    """Parsed local ``coverage-final.json``, or None when the file does not exist."""
    path = Path(coverage_dir) / COVERAGE_FILE
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


async def fetch_coverage_from_repository(client: GitHubClient, repo_path: str) -> tuple[dict | None, list[dict]]:
    """First valid coverage file among the candidate paths, plus one attempt record per path tried."""
    attempts = []
    for path in COVERAGE_CANDIDATE_PATHS:
        try:
            content = await client.get_file_content(repo_path, path)
        except GitHubAPIError as e:
            attempts.append({"path": path, "success": False, "error": str(e)})
            continue

        if content is None:
            attempts.append({"path": path, "success": False, "error": "File not found"})
            continue

        try:
            data = json.loads(content)
        except ValueError:
            attempts.append({"path": path, "success": False, "error": "Invalid JSON"})
            continue

        if not isinstance(data, dict):
            attempts.append({"path": path, "success": False, "error": "Invalid coverage format"})
            continue

        attempts.append({"path": path, "success": True})
        return data, attempts

    return None, attempts


# ----------------------------
# Framework detection
# ----------------------------
def _workspace_dirs(package_json: dict) -> list[str]:
    workspaces = package_json.get("workspaces") or []
    if isinstance(workspaces, dict):
        workspaces = workspaces.get("packages") or []
    dirs = []
    for entry in workspaces:
        if isinstance(entry, str) and "*" not in entry:
            dirs.append(entry.rstrip("/"))
    return dirs


def _candidate_dirs(root_package: dict | None) -> list[str]:
    dirs = _workspace_dirs(root_package) if root_package else []
    for fallback in FALLBACK_PACKAGE_DIRS:
        if fallback not in dirs:
            dirs.append(fallback)
    return dirs[: MAX_PACKAGE_FILES - 1]


def _parse_package_json(content: str | None) -> dict | None:
    if not content:
        return None
    try:
        data = json.loads(content)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def detect_framework(package_files: list[dict]) -> dict:
    """Pick the test framework declared across ``package_files``.

    Jest anywhere wins; otherwise the first framework in detection order is
    reported under ``detected`` since it is not supported.
    """
    declared: dict[str, str] = {}
    for package in package_files:
        for section in ("dependencies", "devDependencies"):
            for name, version in (package.get(section) or {}).items():
                declared.setdefault(name, version)

    for display_name, package_names in TEST_FRAMEWORKS:
        for package_name in package_names:
            if package_name not in declared:
                continue
            version = declared[package_name]
            if display_name in SUPPORTED_FRAMEWORKS:
                return {"name": display_name, "version": version}
            return {"name": NOT_FOUND, "version": None, "detected": {"name": display_name, "version": version}}

    return {"name": NOT_FOUND, "version": None}


async def detect_framework_from_repository(client: GitHubClient, repo_path: str) -> dict:
    root = _parse_package_json(await client.get_file_content(repo_path, "package.json"))
    packages = [root] if root else []
    for directory in _candidate_dirs(root):
        package = _parse_package_json(await client.get_file_content(repo_path, f"{directory}/package.json"))
        if package:
            packages.append(package)
    return detect_framework(packages)


def detect_framework_from_local(root: str | Path = ".") -> dict:
    root = Path(root)

    def read(path: Path) -> dict | None:
        if not path.is_file():
            return None
        return _parse_package_json(path.read_text(encoding="utf-8"))

    root_package = read(root / "package.json")
    packages = [root_package] if root_package else []
    for directory in _candidate_dirs(root_package):
        package = read(root / directory / "package.json")
        if package:
            packages.append(package)
    return detect_framework(packages)


def coverage_response(
    framework: dict,
    summary: dict | None = None,
    files: list[dict] | None = None,
    attempted: list[dict] | None = None,
    error: str | None = None,
) -> dict:
    has_data = summary is not None
    body = {
        "summary": summary if has_data else empty_summary(),
        "files": files or [],
        "framework": framework,
        "hasCoverageData": has_data,
        "dataSource": {
            "attempted": [{"source": "repository", **attempt} for attempt in attempted or []],
            "used": "repository" if has_data else "none",
        },
    }
    if error:
        body["error"] = error
    return body
