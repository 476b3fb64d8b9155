# omnilens/api/health.py
import time
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from omnilens.api.deps import get_status_http_client
from omnilens.core.config import settings
from omnilens.services.github_status import (
    FALLBACK_CACHE_CONTROL,
    STATUS_CACHE_CONTROL,
    fetch_actions_status,
)

router = APIRouter(tags=["health"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

_started = time.monotonic()


@router.get("/health")
def health():
    return JSONResponse(
        {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "uptime": time.monotonic() - _started,
            "version": settings.APP_VERSION,
        },
        headers=NO_CACHE_HEADERS,
    )


@router.get("/github-status")
async def github_status(client: httpx.AsyncClient = Depends(get_status_http_client)):
    payload, ok = await fetch_actions_status(client)
    return JSONResponse(
        payload,
        headers={"Cache-Control": STATUS_CACHE_CONTROL if ok else FALLBACK_CACHE_CONTROL},
    )
