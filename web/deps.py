"""Request dependencies for the dev server API."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from fastapi import Depends, HTTPException, Request
from fastapi import status as http_status
from sqlalchemy.orm import Session, sessionmaker

from wasmex.targets.models import BuildTarget


def get_target(request: Request) -> BuildTarget:
    """Get the served target from app state."""
    target: Any = request.app.state.target
    return target  # type: ignore[no-any-return]


def get_session_factory(request: Request) -> sessionmaker[Session]:
    """Get the history session factory from app state.

    Raises:
        HTTPException: 404 if build history is disabled.
    """
    factory: Any = request.app.state.session_factory
    if factory is None:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={"code": "history_disabled", "message": "Build history is off"},
        )
    return factory  # type: ignore[no-any-return]


def get_db(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> Generator[Session, None, None]:
    """Provide a read session for a request; closed when the request ends."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
