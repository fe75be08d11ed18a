"""FastAPI application factory for target dev servers.

Each served target gets its own application: a small status API under
/__wasmex and the target's output directory mounted at the root.
"""

from __future__ import annotations

import mimetypes
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request, Response
from fastapi.staticfiles import StaticFiles

from wasmex import __version__
from web.routers import health, status

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from wasmex.builds.pipeline import TargetResult
    from wasmex.targets.models import BuildTarget

API_PREFIX = "/__wasmex"

# Browsers refuse streaming compilation of modules served with another type
mimetypes.add_type("application/wasm", ".wasm")

StatusProvider = Callable[[str], "TargetResult | None"]


def create_app(
    target: BuildTarget,
    status_provider: StatusProvider | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> FastAPI:
    """Create the dev server application for one target.

    Args:
        target: Target whose output directory is served.
        status_provider: Returns the latest result for a target name.
        session_factory: Build history sessions, if history is enabled.

    Returns:
        Configured FastAPI application.
    """
    application = FastAPI(
        title=f"wasmex dev server: {target.name}",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    application.state.target = target
    application.state.status_provider = status_provider
    application.state.session_factory = session_factory

    @application.middleware("http")
    async def no_cache(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-cache"
        return response

    application.include_router(health.router, prefix=API_PREFIX, tags=["health"])
    application.include_router(status.router, prefix=API_PREFIX, tags=["status"])

    # Output may not exist yet when the first build failed
    target.output_dir.mkdir(parents=True, exist_ok=True)
    application.mount(
        "/",
        StaticFiles(directory=target.output_dir, html=True),
        name="output",
    )
    return application


__all__ = ["API_PREFIX", "StatusProvider", "create_app"]
