# omnilens/api/deps.py
from datetime import datetime
from typing import AsyncIterator, Callable
from urllib.parse import unquote

import httpx
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from omnilens.core.config import settings
from omnilens.core.db import SessionLocal, get_db
from omnilens.github_client import GitHubClient
from omnilens.models import AuthSession, User
from omnilens.services.admin_auth import AdminAuthError, validate_admin_token
from omnilens.services.github_token_service import get_token_for_user

STATUS_PAGE_TIMEOUT = 10.0


def _session_token(request: Request) -> str | None:
    # Secure deployments prefix the cookie name
    raw = request.cookies.get(settings.SESSION_COOKIE_NAME) or request.cookies.get(
        f"__Secure-{settings.SESSION_COOKIE_NAME}"
    )
    if not raw:
        return None
    # Signed cookie: "<token>.<signature>"
    token = unquote(raw).split(".", 1)[0]
    return token or None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """The user owning the request's session cookie, or 401."""
    token = _session_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    session = (
        db.query(AuthSession)
        .filter(AuthSession.token == token, AuthSession.expires_at > datetime.utcnow())
        .first()
    )
    if not session or not session.user:
        raise HTTPException(status_code=401, detail="Authentication required")
    return session.user


def get_github_client(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
) -> GitHubClient:
    # A missing token only surfaces (as 401) once GitHub is actually called
    return GitHubClient(get_token_for_user(db, user.id))


def require_admin(authorization: str | None = Header(default=None)) -> str:
    try:
        return validate_admin_token(authorization)
    except AdminAuthError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e


async def get_status_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=STATUS_PAGE_TIMEOUT) as client:
        yield client


def get_session_factory() -> Callable[[], Session]:
    """Session factory for work that outlives the request (background fetches)."""
    return SessionLocal
