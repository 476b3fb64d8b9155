# omnilens/core/errors.py
"""Global exception handlers; every error body has an ``error`` key."""
import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from omnilens.github_client import MissingGitHubTokenError

logger = logging.getLogger("omnilens.exception")


def validation_details(errors) -> list[dict]:
    details = []
    for error in errors:
        loc = ".".join(str(x) for x in error.get("loc", []) if x != "body")
        details.append({"field": loc, "message": error.get("msg", "Invalid value")})
    return details


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTPException status=%s detail=%s path=%s", exc.status_code, exc.detail, request.url.path)

    # Dict details carry extra fields next to "error"
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request data", "details": validation_details(exc.errors())},
    )


async def missing_token_handler(request: Request, exc: MissingGitHubTokenError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": str(exc)})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception path=%s", request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})
