"""Engine and session factory for the swipe archive."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from fobsync.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Models must be imported before create_all sees the metadata.
import fobsync.models  # noqa: E402,F401

# Archive writes run in worker threads.
connect_args = (
    {"check_same_thread": False}
    if settings.effective_database_url.startswith("sqlite")
    else {}
)

engine = create_engine(
    settings.effective_database_url,
    pool_pre_ping=True,
    echo=settings.sql_debug,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables() -> None:
    """Create the archive tables if they do not exist yet."""
    Base.metadata.create_all(bind=engine)
