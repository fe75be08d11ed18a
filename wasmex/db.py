"""SQLite storage for build history.

History is optional: nothing here runs unless the CLI or the dev server
asks for a session factory.
"""

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from wasmex.config import get_settings


class Base(DeclarativeBase):
    """Declarative base of the history tables."""


def get_engine(db_url: str | None = None) -> Engine:
    """Create an engine for db_url (default: the configured history URL).

    For a SQLite file the parent directory is created.
    """
    db_url = db_url or get_settings().db_url
    connect_args: dict[str, Any] = {}
    if db_url.startswith("sqlite"):
        # Pipelines record results from worker threads
        connect_args["check_same_thread"] = False
        db_path = db_url.removeprefix("sqlite:///")
        if db_path not in ("", ":memory:", db_url):
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(db_url, connect_args=connect_args)


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Return a session factory bound to engine."""
    return sessionmaker(
        bind=engine or get_engine(), autoflush=False, expire_on_commit=False
    )


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the build history tables if they do not exist."""
    from wasmex.builds import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


__all__ = [
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session_factory",
]
