"""Engine and session factory for the federation database."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from activitypub_stage.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base for actors, followers, delivery rows and the local content tables."""


# Alembic autogenerate and the test fixtures read Base.metadata.
import activitypub_stage.models  # noqa: E402,F401


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True, "echo": settings.sql_debug}
    if url.startswith("sqlite"):
        # The delivery worker opens sessions from the event loop thread while
        # request handlers run in the threadpool.
        options["connect_args"] = {"check_same_thread": False}
    return options


engine = create_engine(
    settings.effective_database_url,
    **_engine_options(settings.effective_database_url),
)

# Delivery rows are read after run_once commits, so attributes must not expire.
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; endpoints commit, services only flush."""
    with SessionLocal() as db:
        yield db
