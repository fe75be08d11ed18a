"""Per-target build pipeline: compile, bundle, assemble.

Stages run strictly in sequence. Errors are scoped to the target: they are
caught here and reported in the TargetResult instead of propagating.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from wasmex.builds.assemble import assemble_target
from wasmex.builds.bundle import Bundler, bundle_target
from wasmex.builds.compile import Compiler, compile_target
from wasmex.builds.plugins import BundlePlugin
from wasmex.errors import INTERNAL_ERROR, WasmexError
from wasmex.targets.models import BuildTarget
from wasmex.types import (
    AssemblyResult,
    BundleManifest,
    CompileArtifact,
    Stage,
    TargetStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class TargetResult:
    """Outcome of one target pipeline run.

    Attributes:
        target: The target that was built.
        status: Final status.
        failed_stage: Stage that failed, if any.
        error_code: Stable error code, if failed.
        error_message: Error message, if failed.
        log_path: Log of the failing external tool, if any.
        artifact: Compile artifact, if compile succeeded.
        bundle: Bundle manifest, if bundling succeeded.
        assembly: Assembly result, if the pipeline succeeded.
        started_at: Start time.
        finished_at: Finish time.
    """

    target: BuildTarget
    status: TargetStatus = TargetStatus.PENDING
    failed_stage: Stage | None = None
    error_code: str | None = None
    error_message: str | None = None
    log_path: Path | None = None
    artifact: CompileArtifact | None = None
    bundle: BundleManifest | None = None
    assembly: AssemblyResult | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        """Whether the pipeline completed."""
        return self.status == TargetStatus.SUCCEEDED

    @property
    def duration(self) -> float | None:
        """Run time in seconds."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def fail(self, stage: Stage, error: Exception) -> None:
        """Mark this result as failed at a stage."""
        self.status = TargetStatus.FAILED
        self.failed_stage = stage
        self.error_code = (
            error.code if isinstance(error, WasmexError) else INTERNAL_ERROR
        )
        self.error_message = str(error)
        self.log_path = getattr(error, "log_path", None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "target": self.target.name,
            "manifest_path": str(self.target.manifest_path),
            "output_dir": str(self.target.output_dir),
            "mode": self.target.mode.value,
            "status": self.status.value,
            "duration": self.duration,
        }
        if self.bundle is not None:
            data["output_files"] = self.bundle.output_files
            data["content_hash"] = self.bundle.content_hash
        if self.failed_stage is not None:
            data["failed_stage"] = self.failed_stage.value
            data["error_code"] = self.error_code
            data["error_message"] = self.error_message
        if self.log_path is not None:
            data["log_path"] = str(self.log_path)
        return data


def run_pipeline(
    target: BuildTarget,
    compiler: Compiler,
    bundler: Bundler,
    plugins: list[BundlePlugin] | None = None,
) -> TargetResult:
    """Run compile, bundle and assemble for one target.

    Args:
        target: Build target.
        compiler: Compiler collaborator.
        bundler: Bundler collaborator.
        plugins: Bundle plugins (target defaults when None).

    Returns:
        TargetResult; never raises for target-scoped failures.
    """
    result = TargetResult(
        target=target,
        status=TargetStatus.RUNNING,
        started_at=datetime.now(timezone.utc),
    )
    stage = Stage.COMPILE
    try:
        result.artifact = compile_target(target, compiler)
        stage = Stage.BUNDLE
        result.bundle = bundle_target(target, result.artifact, bundler, plugins)
        stage = Stage.ASSEMBLE
        result.assembly = assemble_target(target, result.bundle)
    except (WasmexError, OSError) as e:
        result.fail(stage, e)
        logger.error("[%s] %s failed: %s", target.name, stage.value, e)
    except Exception as e:
        result.fail(stage, e)
        logger.exception("[%s] Unexpected error during %s", target.name, stage.value)
    else:
        result.status = TargetStatus.SUCCEEDED
    finally:
        result.finished_at = datetime.now(timezone.utc)

    if result.success:
        logger.info("[%s] Build succeeded in %.1fs", target.name, result.duration)
    return result


__all__ = ["TargetResult", "run_pipeline"]
