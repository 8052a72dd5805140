"""Database engine, session factory and schema bootstrap"""

from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from farewelly_payments.config import settings
from farewelly_payments.infrastructure.database.models import Base


def build_engine(database_url: str) -> Engine:
    """Postgres gets a recycled connection pool; SQLite (local runs, tests) is shared across threads"""
    options: Dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_size=10, max_overflow=10, pool_recycle=3600)
    return create_engine(database_url, **options)


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = engine) -> None:
    """Create missing tables; migrations own the schema in production"""
    Base.metadata.create_all(bind=bind)


def get_db() -> Iterator[Session]:
    """Request-scoped session for FastAPI dependency injection"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
