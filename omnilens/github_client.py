# omnilens/github_client.py
import base64
import logging
from typing import Union

import httpx

from omnilens.core.config import settings

logger = logging.getLogger(__name__)

PER_PAGE = 100
MAX_RUN_PAGES = 10
GITHUB_API_VERSION = "2022-11-28"
USER_AGENT = "OmniLens-Dashboard"


class GitHubAPIError(Exception):
    """Non-2xx response from the GitHub REST API."""

    def __init__(self, status_code: int, reason: str = "", message: str | None = None):
        self.status_code = status_code
        self.reason = reason
        super().__init__(message or f"GitHub API error: {status_code} {reason}".rstrip())


class MissingGitHubTokenError(Exception):
    def __init__(self):
        super().__init__("GitHub access token not found. Please ensure you are logged in with GitHub.")


class GitHubClient:
    def __init__(self, client_or_token: Union[httpx.AsyncClient, str, None], base_url: str | None = None):
        self.base_url = (base_url or settings.GITHUB_API_BASE).rstrip("/")
        self.headers = None
        self.client = None

        # No token stored for the user; fail on first use rather than up front
        if client_or_token is None:
            return

        # If caller passed an AsyncClient, reuse it (tests and shared clients do this).
        if isinstance(client_or_token, httpx.AsyncClient):
            self.client = client_or_token
        else:
            # If caller passed a token string, build headers and use ad-hoc clients.
            access_token = str(client_or_token)
            self.headers = {
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
                "User-Agent": USER_AGENT,
            }

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Internal helper that uses either the provided client or a temporary one."""
        if self.client is None and self.headers is None:
            raise MissingGitHubTokenError()
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        if self.client is not None:
            resp = await self.client.request(method, url, **kwargs)
        else:
            async with httpx.AsyncClient(headers=self.headers, timeout=30.0) as client:
                resp = await client.request(method, url, **kwargs)
        if resp.is_error:
            raise GitHubAPIError(resp.status_code, resp.reason_phrase)
        return resp

    async def get_repository(self, repo_path: str) -> dict:
        resp = await self._request("GET", f"/repos/{repo_path}")
        return resp.json()

    async def list_workflows(self, repo_path: str) -> list[dict]:
        """All workflows of a repository, whatever their state.

        GitHub's own ``state`` filter is unreliable so callers filter on
        ``state == "active"`` themselves.
        """
        resp = await self._request("GET", f"/repos/{repo_path}/actions/workflows", params={"per_page": PER_PAGE})
        return resp.json().get("workflows") or []

    async def list_workflow_runs(self, repo_path: str, created: str) -> list[dict]:
        """Workflow runs from all branches whose creation time matches ``created``.

        ``created`` uses GitHub's search syntax, e.g. ``2024-05-01T00:00:00Z..2024-05-01T23:59:59Z``.
        Pages are fetched until a short page or ``MAX_RUN_PAGES`` pages.
        """
        runs: list[dict] = []
        for page in range(1, MAX_RUN_PAGES + 1):
            try:
                resp = await self._request(
                    "GET",
                    f"/repos/{repo_path}/actions/runs",
                    params={"created": created, "per_page": PER_PAGE, "page": page},
                )
            except GitHubAPIError as e:
                if e.status_code == 404:
                    # repositories without Actions
                    return []
                if e.status_code == 403:
                    raise GitHubAPIError(
                        e.status_code,
                        e.reason,
                        f"GitHub API error: {e.status_code} {e.reason} - Repository access denied",
                    ) from e
                raise

            page_runs = resp.json().get("workflow_runs") or []
            runs.extend(page_runs)
            if len(page_runs) < PER_PAGE:
                break
        else:
            logger.warning("Stopped paging workflow runs for %s after %d pages", repo_path, MAX_RUN_PAGES)
        return runs

    async def list_jobs_for_run(self, repo_path: str, run_id: int) -> list[dict]:
        jobs: list[dict] = []
        page = 1
        while True:
            resp = await self._request(
                "GET",
                f"/repos/{repo_path}/actions/runs/{run_id}/jobs",
                params={"per_page": PER_PAGE, "page": page},
            )
            page_jobs = resp.json().get("jobs") or []
            jobs.extend(page_jobs)
            if len(page_jobs) < PER_PAGE:
                return jobs
            page += 1

    async def get_file_content(self, repo_path: str, path: str, ref: str | None = None) -> str | None:
        """Fetch file content from a repo. Returns decoded text, or None when the file is missing."""
        params = {"ref": ref} if ref else None
        try:
            resp = await self._request("GET", f"/repos/{repo_path}/contents/{path}", params=params)
        except GitHubAPIError as e:
            if e.status_code == 404:
                return None
            raise
        data = resp.json()
        # Content is base64-encoded for blobs via this endpoint
        if isinstance(data, dict) and data.get("encoding") == "base64" and data.get("content"):
            return base64.b64decode(data["content"]).decode("utf-8", errors="replace")
        if isinstance(data, dict):
            return data.get("content") or ""
        # A directory listing is not a file
        return None
