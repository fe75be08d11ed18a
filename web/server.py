"""Background uvicorn servers for target dev servers."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

import uvicorn

from web.app import StatusProvider, create_app

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from wasmex.targets.models import BuildTarget

logger = logging.getLogger(__name__)


class DevServer:
    """Serves one target's output directory on a background thread.

    Attributes:
        target: Served target.
        host: Bind address.
        port: Bind port.
    """

    def __init__(
        self,
        target: BuildTarget,
        port: int,
        host: str = "127.0.0.1",
        status_provider: StatusProvider | None = None,
        session_factory: sessionmaker[Session] | None = None,
    ) -> None:
        self.target = target
        self.host = host
        self.port = port
        self.app = create_app(target, status_provider, session_factory)
        self._server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=host,
                port=port,
                log_level="warning",
                lifespan="off",
            )
        )
        self._thread: threading.Thread | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    @property
    def started(self) -> bool:
        return self._server.started

    def start(self, wait: float = 5.0) -> None:
        """Start serving; waits up to `wait` seconds for the socket to bind."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._server.run,
            name=f"wasmex-serve-{self.target.name}",
            daemon=True,
        )
        self._thread.start()
        deadline = time.monotonic() + wait
        while not self._server.started and self._thread.is_alive():
            if time.monotonic() >= deadline:
                break
            time.sleep(0.05)
        if self._server.started:
            logger.info(
                "[%s] Serving %s at %s",
                self.target.name,
                self.target.output_dir,
                self.url,
            )
        else:
            logger.error(
                "[%s] Dev server failed to start on %s", self.target.name, self.url
            )

    def stop(self, timeout: float = 5.0) -> None:
        """Close the listening socket and wait for the server thread."""
        if self._thread is None:
            return
        self._server.should_exit = True
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.debug("[%s] Dev server stopped", self.target.name)


__all__ = ["DevServer"]
