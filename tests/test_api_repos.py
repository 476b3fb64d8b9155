"""Route tests for /api/repo."""

import asyncio
import threading

import pytest
from fastapi.testclient import TestClient

from conftest import SESSION_TOKEN, TestingSessionLocal, make_workflow
from omnilens.api import repos
from omnilens.api.deps import get_github_client
from omnilens.core.config import settings
from omnilens.main import app
from omnilens.models import Account, Repository
from omnilens.services import repo_storage

REPO_API = "/repos/acme/widgets"

GITHUB_REPO = {
    "full_name": "acme/widgets",
    "name": "widgets",
    "html_url": "https://github.com/acme/widgets",
    "default_branch": "main",
    "private": False,
    "owner": {"login": "acme", "avatar_url": "https://avatars.example.com/acme.png"},
}


def add_repo(db, slug="acme-widgets", repo_path="acme/widgets", user_id="user-1"):
    repo = Repository(
        slug=slug,
        repo_path=repo_path,
        display_name=repo_path,
        html_url=f"https://github.com/{repo_path}",
        default_branch="main",
        user_id=user_id,
    )
    db.add(repo)
    db.commit()
    return repo


class TestAuth:
    def test_requires_session(self, anon_client):
        resp = anon_client.get("/api/repo")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Authentication required"}

    def test_unknown_session(self, anon_client, user):
        anon_client.cookies.set("better-auth.session_token", "unknown-token.sig")
        assert anon_client.get("/api/repo").status_code == 401

    def test_secure_cookie_name(self, anon_client, user):
        anon_client.cookies.set("__Secure-better-auth.session_token", "session-token-1.sig")
        assert anon_client.get("/api/repo").status_code == 200

    def test_missing_github_token(self, client, db_session, github):
        db_session.query(Account).delete()
        db_session.commit()
        add_repo(db_session)

        # real dependency, so the stored token is looked up
        del app.dependency_overrides[get_github_client]
        resp = client.get("/api/workflow/acme-widgets/overview")

        assert resp.status_code == 401
        assert "GitHub access token not found" in resp.json()["error"]


class TestListAndGet:
    def test_list_is_scoped_to_user(self, client, db_session):
        add_repo(db_session)
        db_session.add(
            Repository(
                slug="other-repo",
                repo_path="other/repo",
                display_name="other/repo",
                html_url="https://github.com/other/repo",
                default_branch="main",
                user_id="user-2",
            )
        )
        db_session.commit()

        resp = client.get("/api/repo")

        assert resp.status_code == 200
        assert resp.headers["Cache-Control"].startswith("no-cache")
        assert [r["slug"] for r in resp.json()["repositories"]] == ["acme-widgets"]

    def test_get_and_delete(self, client, db_session):
        add_repo(db_session)
        repo_storage.save_workflows(
            db_session, "acme-widgets", [{"id": 1, "name": "CI", "path": "ci.yml", "state": "active"}], "user-1"
        )

        resp = client.get("/api/repo/acme-widgets")
        assert resp.status_code == 200
        assert resp.json()["repo"]["repoPath"] == "acme/widgets"

        resp = client.delete("/api/repo/acme-widgets")
        assert resp.status_code == 200
        assert resp.json()["deletedRepo"]["slug"] == "acme-widgets"
        assert repo_storage.get_workflows(db_session, "acme-widgets", "user-1") == []

        assert client.get("/api/repo/acme-widgets").status_code == 404
        assert client.delete("/api/repo/acme-widgets").json() == {"error": "Repository not found"}


class TestValidate:
    def test_valid_repository(self, client, github):
        github.add(REPO_API, json=GITHUB_REPO)
        github.add(
            f"{REPO_API}/actions/workflows",
            json={"workflows": [make_workflow(1, "CI"), make_workflow(2, "Old", state="disabled_manually")]},
        )

        resp = client.post("/api/repo/validate", json={"repoUrl": "https://github.com/acme/widgets/tree/main"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["valid"] is True
        assert body["repoPath"] == "acme/widgets"
        assert body["owner"] == "acme"
        assert body["visibility"] == "public"
        assert body["workflowCount"] == 1

    def test_missing_url(self, client):
        resp = client.post("/api/repo/validate", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid request", "message": "Repository URL is required"}

    @pytest.mark.parametrize("value", ["acme", "https://gitlab.com/acme/widgets", "a/b/c"])
    def test_bad_format(self, client, value):
        resp = client.post("/api/repo/validate", json={"repoUrl": value})
        assert resp.status_code == 400

    def test_unknown_repository(self, client):
        resp = client.post("/api/repo/validate", json={"repoUrl": "acme/missing"})
        assert resp.status_code == 404
        assert resp.json() == {"valid": False, "error": "Repository not found"}

    def test_workflows_forbidden(self, client, github):
        github.add(REPO_API, json=GITHUB_REPO)
        github.add(f"{REPO_API}/actions/workflows", json={"message": "Forbidden"}, status=403)

        resp = client.post("/api/repo/validate", json={"repoUrl": "acme/widgets"})

        assert resp.status_code == 403
        assert resp.json()["valid"] is False


class TestAdd:
    PAYLOAD = {
        "repoPath": "acme/widgets",
        "displayName": "widgets",
        "htmlUrl": "https://github.com/acme/widgets",
        "defaultBranch": "main",
    }

    def test_adds_and_bootstraps_workflows(self, client, github):
        github.add(REPO_API, json=GITHUB_REPO)
        github.add(f"{REPO_API}/actions/workflows", json={"workflows": [make_workflow(1, "CI")]})
        github.add(f"{REPO_API}/actions/runs", json={"workflow_runs": []})

        resp = client.post("/api/repo/add", json=self.PAYLOAD)

        assert resp.status_code == 200
        body = resp.json()
        assert body["repo"]["slug"] == "acme-widgets"
        assert body["repo"]["avatarUrl"] == "https://avatars.example.com/acme.png"
        assert body["workflowData"]["workflows"] == [
            {"id": 1, "name": "CI", "path": ".github/workflows/ci.yml", "state": "active"}
        ]
        assert body["workflowData"]["todayMetrics"]["totalWorkflows"] == 1
        assert body["message"] == "Repository added to dashboard successfully with workflow data"

        db = TestingSessionLocal()
        try:
            assert [wf.workflow_name for wf in repo_storage.get_workflows(db, "acme-widgets", "user-1")] == ["CI"]
        finally:
            db.close()

    def test_bootstrap_failure_still_adds(self, client, github):
        github.add(REPO_API, json=GITHUB_REPO)
        github.add(f"{REPO_API}/actions/workflows", json={"message": "boom"}, status=500)

        resp = client.post("/api/repo/add", json=self.PAYLOAD)

        assert resp.status_code == 200
        assert resp.json()["workflowData"] is None
        assert resp.json()["message"] == "Repository added to dashboard successfully"

    def test_malformed_runs_payload_still_adds(self, client, github):
        """A non-JSON body from GitHub during bootstrap leaves the repository added."""
        github.add(REPO_API, json=GITHUB_REPO)
        github.add(f"{REPO_API}/actions/workflows", json={"workflows": [make_workflow(1, "CI")]})
        github.add(f"{REPO_API}/actions/runs", text="<html>upstream error</html>")

        resp = client.post("/api/repo/add", json=self.PAYLOAD)

        assert resp.status_code == 200
        assert resp.json()["workflowData"] is None
        assert resp.json()["message"] == "Repository added to dashboard successfully"
        assert client.get("/api/repo/acme-widgets").status_code == 200

    def test_slow_bootstrap_continues_in_background(self, app_overrides, user, github, monkeypatch):
        """Past the timeout the route answers and the fetch finishes on its own."""
        github.add(REPO_API, json=GITHUB_REPO)
        github.add(f"{REPO_API}/actions/workflows", json={"workflows": [make_workflow(1, "CI")]})
        github.add(f"{REPO_API}/actions/runs", json={"workflow_runs": []})

        finished = threading.Event()
        fetch = repos.fetch_workflow_data_for_new_repo

        async def slow_fetch(*args):
            try:
                await asyncio.sleep(0.3)
                return await fetch(*args)
            finally:
                finished.set()

        monkeypatch.setattr(repos, "BOOTSTRAP_TIMEOUT_SECONDS", 0.01)
        monkeypatch.setattr(repos, "fetch_workflow_data_for_new_repo", slow_fetch)

        # Entering the client keeps its event loop alive between calls
        with TestClient(
            app,
            cookies={"better-auth.session_token": f"{SESSION_TOKEN}.c2lnbmF0dXJl"},
            raise_server_exceptions=False,
        ) as c:
            resp = c.post("/api/repo/add", json=self.PAYLOAD)

            assert resp.status_code == 200
            assert resp.json()["workflowData"] is None
            assert resp.json()["message"] == "Repository added to dashboard successfully"
            assert len(repos._background_tasks) == 1

            assert finished.wait(timeout=5)

        db = TestingSessionLocal()
        try:
            assert [wf.workflow_name for wf in repo_storage.get_workflows(db, "acme-widgets", "user-1")] == ["CI"]
        finally:
            db.close()

    def test_duplicate(self, client, github, db_session):
        github.add(REPO_API, json=GITHUB_REPO)
        add_repo(db_session)

        resp = client.post("/api/repo/add", json=self.PAYLOAD)

        assert resp.status_code == 409
        assert resp.json() == {"error": "Repository already exists in dashboard", "slug": "acme-widgets"}

    def test_repository_limit(self, client, github, db_session, monkeypatch):
        monkeypatch.setattr(settings, "MAX_REPOSITORIES_PER_USER", 1)
        github.add(REPO_API, json=GITHUB_REPO)
        add_repo(db_session, slug="acme-other", repo_path="acme/other")

        resp = client.post("/api/repo/add", json=self.PAYLOAD)

        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Maximum repository limit reached")

    def test_repository_not_on_github(self, client):
        resp = client.post("/api/repo/add", json=self.PAYLOAD)
        assert resp.status_code == 404
        assert resp.json()["repoPath"] == "acme/widgets"

    def test_invalid_body(self, client):
        resp = client.post("/api/repo/add", json={"repoPath": "acme/widgets", "htmlUrl": "not a url"})

        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "Invalid request data"
        assert {d["field"] for d in body["details"]} >= {"displayName", "htmlUrl", "defaultBranch"}


class TestDashboard:
    def test_empty(self, client):
        assert client.get("/api/repo/dashboard").json() == {"repositories": [], "totalCount": 0}

    def test_cards(self, client, github, db_session):
        add_repo(db_session)
        add_repo(db_session, slug="acme-docs", repo_path="acme/docs")
        repo_storage.save_workflows(
            db_session, "acme-widgets", [{"id": 1, "name": "CI", "path": "ci.yml", "state": "active"}], "user-1"
        )
        github.add(f"{REPO_API}/actions/workflows", json={"workflows": [make_workflow(1, "CI")]})
        github.add(f"{REPO_API}/actions/runs", json={"workflow_runs": []})

        resp = client.get("/api/repo/dashboard")

        assert resp.status_code == 200
        body = resp.json()
        assert body["totalCount"] == 2
        cards = {c["slug"]: c for c in body["repositories"]}
        assert cards["acme-widgets"]["hasWorkflows"] is True
        assert cards["acme-widgets"]["metrics"]["totalWorkflows"] == 1
        assert cards["acme-docs"]["hasWorkflows"] is False
        assert cards["acme-docs"]["metrics"]["totalWorkflows"] == 0
        assert not any(c["hasError"] for c in body["repositories"])

    def test_github_failure_keeps_zero_metrics(self, client, github, db_session):
        add_repo(db_session)
        repo_storage.save_workflows(
            db_session, "acme-widgets", [{"id": 1, "name": "CI", "path": "ci.yml", "state": "active"}], "user-1"
        )
        github.add(f"{REPO_API}/actions/workflows", json={"message": "boom"}, status=502)

        card = client.get("/api/repo/dashboard").json()["repositories"][0]

        assert card["hasError"] is False
        assert card["metrics"]["successRate"] == 0

    def test_one_broken_repository_keeps_others(self, client, github, db_session):
        add_repo(db_session)
        add_repo(db_session, slug="acme-docs", repo_path="acme/docs")
        for slug in ("acme-widgets", "acme-docs"):
            repo_storage.save_workflows(
                db_session, slug, [{"id": 1, "name": "CI", "path": "ci.yml", "state": "active"}], "user-1"
            )
        github.add(f"{REPO_API}/actions/workflows", json={"workflows": [make_workflow(1, "CI")]})
        github.add(f"{REPO_API}/actions/runs", text="<html>upstream error</html>")
        github.add("/repos/acme/docs/actions/workflows", json={"workflows": [make_workflow(1, "CI")]})
        github.add("/repos/acme/docs/actions/runs", json={"workflow_runs": []})

        resp = client.get("/api/repo/dashboard")

        assert resp.status_code == 200
        cards = {c["slug"]: c for c in resp.json()["repositories"]}
        assert cards["acme-widgets"]["hasError"] is True
        assert cards["acme-widgets"]["errorMessage"] == "Failed to load repository data"
        assert cards["acme-docs"]["hasError"] is False
        assert cards["acme-docs"]["metrics"]["totalWorkflows"] == 1
