# omnilens/main.py
import logging
from contextlib import asynccontextmanager

from omnilens.core.config import settings

# ENV=dev: INFO with a detailed format; anything else: WARNING, minimal
_is_dev = settings.ENV == "dev"
logging.basicConfig(
    level=logging.INFO if _is_dev else logging.WARNING,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s" if _is_dev else "%(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

import omnilens.models  # noqa: F401  (registers tables on Base.metadata)
from omnilens import __version__
from omnilens.api.admin import router as admin_router
from omnilens.api.coverage import router as coverage_router
from omnilens.api.health import router as health_router
from omnilens.api.repos import router as repos_router
from omnilens.api.usage import router as usage_router
from omnilens.api.workflows import router as workflows_router
from omnilens.core.db import Base, engine
from omnilens.core.errors import (
    general_exception_handler,
    http_exception_handler,
    missing_token_handler,
    validation_exception_handler,
)
from omnilens.github_client import MissingGitHubTokenError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Auth tables normally exist already; ours are created when missing
    Base.metadata.create_all(bind=engine)
    logger.info("OmniLens API %s started (env=%s)", settings.APP_VERSION, settings.ENV)
    yield


app = FastAPI(
    title="OmniLens API",
    description="GitHub Actions health metrics for connected repositories",
    version=__version__,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(MissingGitHubTokenError, missing_token_handler)
app.add_exception_handler(Exception, general_exception_handler)

# Include routers
app.include_router(health_router, prefix="/api")
app.include_router(repos_router, prefix="/api")
app.include_router(workflows_router, prefix="/api")
app.include_router(usage_router, prefix="/api")
app.include_router(coverage_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
