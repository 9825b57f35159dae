"""Database connection and session management."""
from sqlalchemy import create_engine, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator

from splitlab.config import get_settings

settings = get_settings()

engine_options = {"pool_pre_ping": True, "echo": settings.debug}
if settings.database_url.startswith("sqlite"):
    engine_options["connect_args"] = {"check_same_thread": False}
    # In-memory SQLite is per-connection, so every session must share one
    if settings.database_url in ("sqlite://", "sqlite:///:memory:"):
        engine_options["poolclass"] = StaticPool

# Create database engine
engine = create_engine(settings.database_url, **engine_options)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests and local runs)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.

    Usage:
        @app.get("/experiments")
        def list_experiments(db: Session = Depends(get_db)):
            return db.query(Experiment).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
