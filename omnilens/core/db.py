# omnilens/core/db.py
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from omnilens.core.config import settings

# Shared with the auth library's tables (user, session, account)
Base = declarative_base()


def engine_options(database_url: str) -> dict:
    """Engine keyword arguments for ``database_url``.

    PostgreSQL in deployments; SQLite connections are shared across the
    threads FastAPI runs sync routes on.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

# Rows stay readable after commit; background fetches serialise them later
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db():
    """Request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
