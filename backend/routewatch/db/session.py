"""
Database engine and session factory.
Postgres in production. A sqlite:/// DATABASE_URL works for local runs: connections are shared with the
poll worker threads and wait on the file lock instead of failing.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from routewatch.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    # One connection per concurrent poll plus headroom for the API and the tick itself
    return {
        "pool_size": settings.max_concurrent_polls + 2,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_timeout": 30,
    }


engine = create_engine(settings.database_url, **_engine_options(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
