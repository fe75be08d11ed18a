"""Watch mode: rebuild a target when its sources change.

Architecture:
- TargetWatcher: per-target event filter, debounce timer, work queue and
  worker thread calling the rebuild function
- ProjectWatcher: one watchdog Observer whose events are handed to every
  TargetWatcher; each decides for itself whether the event concerns it

A change never re-runs discovery. Paths written by the pipeline itself
(pkg, staging and output directories) are ignored.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from wasmex.builds.compile import collect_watch_paths

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from wasmex.builds.pipeline import TargetResult
    from wasmex.targets.models import BuildTarget

logger = logging.getLogger(__name__)

RebuildFn = Callable[["BuildTarget"], "TargetResult"]

CHANGE_EVENTS = frozenset({"created", "modified", "deleted", "moved"})


def _is_within(path: Path, parent: Path) -> bool:
    return path == parent or parent in path.parents


def _event_paths(event: FileSystemEvent) -> list[Path]:
    paths = []
    for raw in (event.src_path, getattr(event, "dest_path", "")):
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        if raw:
            paths.append(Path(raw))
    return paths


class TargetWatcher:
    """Rebuilds one target when a path it depends on changes.

    Events are debounced; while a rebuild is queued, further changes are
    coalesced into it. A running rebuild is never interrupted: changes made
    during it queue exactly one more.
    """

    def __init__(
        self,
        target: BuildTarget,
        rebuild: RebuildFn,
        debounce_seconds: float = 0.3,
        watch_paths: frozenset[Path] | None = None,
    ) -> None:
        self.target = target
        self._rebuild = rebuild
        self._debounce_seconds = debounce_seconds
        self._lock = threading.Lock()
        self._watch_paths = self._resolve_all(
            watch_paths if watch_paths is not None else collect_watch_paths(target)
        )
        self._owned_paths = self._resolve_all(target.owned_paths())
        self._queue: queue.Queue[bool | None] = queue.Queue(maxsize=1)
        self._timer: threading.Timer | None = None
        self._worker: threading.Thread | None = None
        self.rebuild_count = 0

    @staticmethod
    def _resolve_all(paths: Any) -> frozenset[Path]:
        return frozenset(Path(p).resolve() for p in paths)

    @property
    def watch_paths(self) -> frozenset[Path]:
        """Resolved paths whose changes trigger a rebuild."""
        with self._lock:
            return self._watch_paths

    def update_watch_paths(self, paths: frozenset[Path]) -> None:
        """Replace the watched paths (after a successful compile)."""
        with self._lock:
            self._watch_paths = self._resolve_all(paths)

    def is_relevant(self, path: Path) -> bool:
        """Check whether a change to path invalidates this target."""
        resolved = Path(path).resolve()
        if any(_is_within(resolved, owned) for owned in self._owned_paths):
            return False
        return any(_is_within(resolved, p) for p in self.watch_paths)

    def notify(self, path: Path) -> bool:
        """Report a filesystem change.

        Returns:
            True if the change concerns this target and a rebuild was
            scheduled.
        """
        if not self.is_relevant(path):
            return False
        logger.debug("[%s] Change detected: %s", self.target.name, path)
        if self._debounce_seconds <= 0:
            self._enqueue()
            return True
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce_seconds, self._fire)
            self._timer.daemon = True
            self._timer.start()
        return True

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self._enqueue()

    def _enqueue(self) -> None:
        try:
            self._queue.put_nowait(True)
        except queue.Full:
            logger.debug("[%s] Rebuild already queued", self.target.name)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            logger.info("[%s] Rebuilding", self.target.name)
            self.rebuild_count += 1
            try:
                result = self._rebuild(self.target)
            except Exception:
                logger.exception("[%s] Rebuild crashed", self.target.name)
                continue
            if result.success:
                if result.artifact is not None:
                    self.update_watch_paths(result.artifact.source_watch_paths)
            else:
                # Previous output stays in place and keeps being served
                logger.error(
                    "[%s] Rebuild failed (%s): %s; keeping last good output",
                    self.target.name,
                    result.error_code,
                    result.error_message,
                )

    def start(self) -> None:
        """Start the worker thread."""
        if self._worker is not None:
            return
        self._worker = threading.Thread(
            target=self._run, name=f"wasmex-watch-{self.target.name}", daemon=True
        )
        self._worker.start()

    def stop(self, timeout: float | None = None) -> None:
        """Cancel pending debounces and stop after queued work finishes."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if self._worker is None:
            return
        self._queue.put(None)
        self._worker.join(timeout=timeout)
        self._worker = None


class _DispatchHandler(FileSystemEventHandler):
    """Hands change events to every target watcher."""

    def __init__(self, watchers: list[TargetWatcher]) -> None:
        super().__init__()
        self._watchers = watchers

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in CHANGE_EVENTS:
            return
        if event.is_directory and event.event_type == "modified":
            return
        for path in _event_paths(event):
            for watcher in self._watchers:
                watcher.notify(path)


class ProjectWatcher:
    """Watches all targets of a project.

    Example:
        >>> with ProjectWatcher(targets, driver.rebuild):
        ...     wait_for_interrupt()
    """

    def __init__(
        self,
        targets: list[BuildTarget],
        rebuild: RebuildFn,
        debounce_seconds: float = 0.3,
        watch_paths: dict[str, frozenset[Path]] | None = None,
        use_observer: bool = True,
    ) -> None:
        watch_paths = watch_paths or {}
        self.watchers = [
            TargetWatcher(t, rebuild, debounce_seconds, watch_paths.get(t.name))
            for t in targets
        ]
        self._use_observer = use_observer
        self._observer: BaseObserver | None = None

    def notify(self, path: Path) -> list[str]:
        """Dispatch a change; returns names of targets scheduled to rebuild."""
        return [w.target.name for w in self.watchers if w.notify(path)]

    def _watch_roots(self) -> list[Path]:
        """Existing directories covering every watched path, without nesting."""
        dirs: set[Path] = set()
        for watcher in self.watchers:
            for path in watcher.watch_paths:
                dirs.add(path if path.is_dir() else path.parent)
            dirs.add(watcher.target.crate_dir.resolve())
        roots: list[Path] = []
        for d in sorted(dirs, key=lambda p: len(p.parts)):
            if d.is_dir() and not any(_is_within(d, r) for r in roots):
                roots.append(d)
        return roots

    def start(self) -> None:
        """Start target workers and the filesystem observer."""
        for watcher in self.watchers:
            watcher.start()
        if not self._use_observer:
            return
        observer = Observer()
        handler = _DispatchHandler(self.watchers)
        for root in self._watch_roots():
            logger.debug("Watching %s", root)
            observer.schedule(handler, str(root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %d target(s) for changes", len(self.watchers))

    def stop(self) -> None:
        """Stop observing and wait for in-flight rebuilds."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
        for watcher in self.watchers:
            watcher.stop()

    def __enter__(self) -> ProjectWatcher:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.stop()


__all__ = ["ProjectWatcher", "RebuildFn", "TargetWatcher"]
