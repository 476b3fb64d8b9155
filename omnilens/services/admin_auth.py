# omnilens/services/admin_auth.py
"""Bearer-token authentication for admin routes.

``ADMIN_API_TOKEN`` holds the SHA-256 hex digest of the token, never the
token itself.
"""
import hashlib
import hmac
import logging
import secrets

from omnilens.core.config import settings

logger = logging.getLogger(__name__)

# Lives for the process lifetime only
_invalidated_tokens: set[str] = set()


class AdminAuthError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(message)


def generate_admin_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_token(token: str, hashed_token: str) -> bool:
    return hmac.compare_digest(hash_token(token), hashed_token.strip().lower())


def invalidate_token(token: str) -> None:
    _invalidated_tokens.add(hash_token(token))


def is_token_invalidated(token: str) -> bool:
    return hash_token(token) in _invalidated_tokens


def clear_invalidated_tokens() -> None:
    _invalidated_tokens.clear()


def validate_admin_token(authorization: str | None, expected_hash: str | None = None) -> str:
    """Check an ``Authorization`` header value and return the bearer token.

    Raises AdminAuthError carrying the HTTP status to answer with.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AdminAuthError(401, "Admin token required. Use Authorization: Bearer <token>")

    token = authorization[len("Bearer "):]
    expected_hash = settings.ADMIN_API_TOKEN if expected_hash is None else expected_hash
    if not expected_hash:
        logger.error("ADMIN_API_TOKEN environment variable not set")
        raise AdminAuthError(500, "Admin authentication not configured")

    if is_token_invalidated(token):
        raise AdminAuthError(403, "Token has been invalidated")

    if not verify_token(token, expected_hash):
        raise AdminAuthError(403, "Invalid admin token")

    return token
