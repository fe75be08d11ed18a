"""Multi-target build driver.

This module provides the high-level build API:
- build_targets(): run independent target pipelines in parallel
- BuildDriver: discovery, collaborators, history and latest results for
  one invocation (shared by one-shot builds, watch mode and dev servers)

Targets never share mutable state; a failing target does not stop the
others unless fail-fast mode is requested.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from wasmex.builds.bundle import Bundler, EsbuildBundler
from wasmex.builds.compile import Compiler, WasmPackCompiler
from wasmex.builds.history import record_result
from wasmex.builds.pipeline import TargetResult, run_pipeline
from wasmex.builds.process import ProcessRegistry, get_process_registry
from wasmex.config import get_settings
from wasmex.targets.discovery import discover_targets, select_targets
from wasmex.targets.schema import TargetOptions
from wasmex.types import BatchMode, BuildMode, TargetStatus

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from wasmex.config import Settings
    from wasmex.targets.models import BuildTarget

logger = logging.getLogger(__name__)

ResultCallback = Callable[[TargetResult], None]


@dataclass
class DriverResult:
    """Aggregate result of a multi-target build."""

    results: list[TargetResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.status == TargetStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == TargetStatus.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == TargetStatus.SKIPPED)

    @property
    def success(self) -> bool:
        """True only if every target succeeded (vacuously true for none)."""
        return all(r.success for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
        }


def effective_concurrency(requested: int) -> int:
    """Bound requested parallelism by the available CPU cores."""
    return max(1, min(requested, os.cpu_count() or 1))


def build_targets(
    targets: list[BuildTarget],
    compiler: Compiler,
    bundler: Bundler,
    max_workers: int = 1,
    mode: BatchMode = BatchMode.BEST_EFFORT,
    on_result: ResultCallback | None = None,
    registry: ProcessRegistry | None = None,
) -> DriverResult:
    """Run every target's pipeline as an independent job.

    Args:
        targets: Targets in discovery order.
        compiler: Compiler collaborator.
        bundler: Bundler collaborator.
        max_workers: Maximum pipelines running at once.
        mode: Best-effort runs everything; fail-fast skips targets that
            have not started once one target has failed.
        on_result: Called with each result as it completes.
        registry: Subprocesses terminated if the build is interrupted.

    Returns:
        DriverResult with results in discovery order.

    Raises:
        KeyboardInterrupt: Re-raised after queued targets are cancelled
            and running subprocesses are terminated.
    """
    if not targets:
        logger.info("No targets to build")
        return DriverResult()

    stop = threading.Event()

    def job(target: BuildTarget) -> TargetResult:
        if stop.is_set():
            result = TargetResult(target=target, status=TargetStatus.SKIPPED)
        else:
            try:
                result = run_pipeline(target, compiler, bundler)
            except BaseException:
                stop.set()
                raise
            if not result.success and mode == BatchMode.FAIL_FAST:
                stop.set()
        if on_result is not None:
            on_result(result)
        return result

    workers = min(max_workers, len(targets))
    logger.info("Building %d target(s) with %d worker(s)", len(targets), workers)
    pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="wasmex")
    try:
        futures = [pool.submit(job, t) for t in targets]
        results = [f.result() for f in futures]
    except BaseException:
        stop.set()
        pool.shutdown(wait=False, cancel_futures=True)
        if registry is not None:
            registry.terminate_all()
        logger.warning("Build interrupted; queued targets cancelled")
        raise
    pool.shutdown()

    outcome = DriverResult(results=results)
    logger.info(
        "Build finished: %d succeeded, %d failed, %d skipped",
        outcome.succeeded,
        outcome.failed,
        outcome.skipped,
    )
    return outcome


class BuildDriver:
    """Owns the targets and collaborators of one invocation.

    Attributes:
        settings: Effective settings.
        compiler: Compiler collaborator.
        bundler: Bundler collaborator.
        session_factory: Build history sessions (None disables history).
        registry: Registry of in-flight subprocesses.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        compiler: Compiler | None = None,
        bundler: Bundler | None = None,
        session_factory: sessionmaker[Session] | None = None,
        registry: ProcessRegistry | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry or get_process_registry()
        self.compiler = compiler or WasmPackCompiler(
            program=self.settings.compiler,
            timeout=self.settings.compile_timeout,
            registry=self.registry,
            root_dir=self.settings.root_dir,
        )
        self.bundler = bundler or EsbuildBundler(
            program=self.settings.bundler,
            timeout=self.settings.bundle_timeout,
            registry=self.registry,
            root_dir=self.settings.root_dir,
        )
        self.session_factory = session_factory
        self._lock = threading.Lock()
        self._latest: dict[str, TargetResult] = {}
        self._last_good: dict[str, TargetResult] = {}

    def discover(
        self,
        names: list[str] | None = None,
        overrides: dict[str, Any] | None = None,
        defaults: TargetOptions | None = None,
    ) -> list[BuildTarget]:
        """Discover (and optionally select) targets.

        Raises:
            DiscoveryError: If targets cannot be determined.
        """
        targets = discover_targets(
            self.settings.root_dir,
            self.settings.pattern,
            defaults=defaults,
            mode=BuildMode(self.settings.mode),
            overrides=overrides,
        )
        return select_targets(targets, names or [])

    def _on_result(self, result: TargetResult, trigger: str) -> None:
        with self._lock:
            self._latest[result.target.name] = result
            if result.success:
                self._last_good[result.target.name] = result
        if self.session_factory is not None and result.status != TargetStatus.SKIPPED:
            record_result(self.session_factory, result, trigger=trigger)

    def build(
        self,
        targets: list[BuildTarget],
        mode: BatchMode = BatchMode.BEST_EFFORT,
    ) -> DriverResult:
        """One-shot build of all targets."""
        return build_targets(
            targets,
            self.compiler,
            self.bundler,
            max_workers=effective_concurrency(self.settings.max_concurrent_builds),
            mode=mode,
            on_result=lambda r: self._on_result(r, "build"),
            registry=self.registry,
        )

    def rebuild(self, target: BuildTarget) -> TargetResult:
        """Re-run one target's pipeline (watch mode)."""
        result = run_pipeline(target, self.compiler, self.bundler)
        self._on_result(result, "watch")
        return result

    def latest(self, name: str) -> TargetResult | None:
        """Latest result for a target."""
        with self._lock:
            return self._latest.get(name)

    def last_good(self, name: str) -> TargetResult | None:
        """Latest successful result for a target."""
        with self._lock:
            return self._last_good.get(name)

    def cancel(self) -> None:
        """Terminate in-flight compiler and bundler processes."""
        self.registry.terminate_all()


__all__ = [
    "BuildDriver",
    "DriverResult",
    "ResultCallback",
    "build_targets",
    "effective_concurrency",
]
