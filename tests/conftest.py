# tests/conftest.py
import os

# Settings and the engine are built at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["ADMIN_API_TOKEN"] = ""

from datetime import datetime, timedelta

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from omnilens.api.deps import get_github_client, get_session_factory, get_status_http_client
from omnilens.core.db import Base, get_db
from omnilens.github_client import GitHubClient
from omnilens.main import app
from omnilens.models import Account, AuthSession, User
from omnilens.services.admin_auth import clear_invalidated_tokens
from omnilens.services.usage_metrics import usage_cache

SESSION_TOKEN = "session-token-1"
GITHUB_TOKEN = "gho_testtoken"

engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


class FakeGitHub:
    """Routes GitHub REST paths to canned JSON responses; unknown paths are 404."""

    def __init__(self):
        self.routes: dict[str, tuple[int, object]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, json=None, status: int = 200, text: str | None = None):
        """Register a canned response; ``text`` sends a raw, non-JSON body."""
        self.routes[path] = (status, text if text is not None else (json if json is not None else {}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        status, body = route
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def client(self) -> GitHubClient:
        return GitHubClient(httpx.AsyncClient(transport=httpx.MockTransport(self.handler)))


@pytest.fixture(autouse=True)
def _reset_process_state():
    usage_cache.clear()
    clear_invalidated_tokens()
    yield
    usage_cache.clear()
    clear_invalidated_tokens()


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def user(db_session):
    now = datetime.utcnow()
    user = User(
        id="user-1",
        name="Test User",
        email="test@example.com",
        email_verified=True,
        created_at=now,
        updated_at=now,
    )
    db_session.add(user)
    db_session.add(
        AuthSession(
            id="session-1",
            token=SESSION_TOKEN,
            user_id=user.id,
            expires_at=now + timedelta(days=1),
            created_at=now,
            updated_at=now,
        )
    )
    db_session.add(
        Account(
            id="account-1",
            account_id="12345",
            provider_id="github",
            user_id=user.id,
            access_token=GITHUB_TOKEN,
            created_at=now,
            updated_at=now,
        )
    )
    db_session.commit()
    return user


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def status_page():
    """Fake githubstatus.com; tests set ``status_page.response``."""

    class StatusPage:
        response = httpx.Response(200, json={"components": []})

        def handler(self, request):
            return self.response

    return StatusPage()


@pytest.fixture
def app_overrides(db_session, github, status_page):
    def override_get_db():
        yield db_session

    async def override_status_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(status_page.handler)) as c:
            yield c

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_github_client] = github.client
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_status_http_client] = override_status_client
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client(app_overrides, user):
    """Authenticated client; the cookie carries a signed ``token.signature`` value."""
    return TestClient(
        app,
        cookies={"better-auth.session_token": f"{SESSION_TOKEN}.c2lnbmF0dXJl"},
        raise_server_exceptions=False,
    )


@pytest.fixture
def anon_client(app_overrides):
    return TestClient(app, raise_server_exceptions=False)


def make_run(
    run_id: int,
    workflow_id: int,
    started: str,
    updated: str | None = None,
    status: str = "completed",
    conclusion: str | None = "success",
    **extra,
) -> dict:
    run = {
        "id": run_id,
        "workflow_id": workflow_id,
        "name": f"Workflow {workflow_id}",
        "status": status,
        "conclusion": conclusion,
        "run_started_at": started,
        "updated_at": updated or started,
        "html_url": f"https://github.com/acme/widgets/actions/runs/{run_id}",
    }
    run.update(extra)
    return run


def make_workflow(workflow_id: int, name: str, state: str = "active") -> dict:
    return {
        "id": workflow_id,
        "name": name,
        "path": f".github/workflows/{name.lower()}.yml",
        "state": state,
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-01T00:00:00Z",
    }
