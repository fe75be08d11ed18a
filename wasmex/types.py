"""Shared type definitions for wasmex.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class BuildMode(str, Enum):
    """Build mode of a target."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class TargetStatus(str, Enum):
    """Outcome of a target pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class Stage(str, Enum):
    """Pipeline stage of a target."""

    COMPILE = "compile"
    BUNDLE = "bundle"
    ASSEMBLE = "assemble"


class BatchMode(str, Enum):
    """How a multi-target build reacts to a failing target."""

    FAIL_FAST = "fail-fast"
    BEST_EFFORT = "best-effort"


class AssetKind(str, Enum):
    """Kind of an emitted bundle file."""

    SCRIPT = "script"
    STYLESHEET = "stylesheet"
    SOURCEMAP = "sourcemap"
    WASM = "wasm"
    OTHER = "other"


@dataclass
class CompileArtifact:
    """Result of compiling one target.

    Attributes:
        wasm_binary_path: Compiled WebAssembly module.
        loader_module_path: JS module that loads and initialises the binary.
        source_watch_paths: Paths whose changes invalidate this artifact.
        log_path: Compiler log file.
    """

    wasm_binary_path: Path
    loader_module_path: Path
    source_watch_paths: frozenset[Path] = frozenset()
    log_path: Path | None = None


@dataclass
class OutputAsset:
    """A single file produced by the bundler, passed through plugins."""

    name: str
    data: bytes
    kind: AssetKind = AssetKind.OTHER


@dataclass
class BundleManifest:
    """Web assets produced for a target.

    Attributes:
        entry_name: Name of the bundle entry (file stem of the entry script).
        output_files: Files loaded by the HTML document, in load order.
        auxiliary_files: Emitted files not referenced by the HTML document.
        sourcemap_present: Whether a sourcemap was emitted.
        content_hash: Hash of the entry script (production builds only).
        staging_dir: Directory holding the emitted files.
    """

    entry_name: str
    output_files: list[str] = field(default_factory=list)
    auxiliary_files: list[str] = field(default_factory=list)
    sourcemap_present: bool = False
    content_hash: str | None = None
    staging_dir: Path | None = None

    @property
    def all_files(self) -> list[str]:
        """Every emitted file, loadable files first."""
        return [*self.output_files, *self.auxiliary_files]


@dataclass
class AssemblyResult:
    """Published state of a target's output directory."""

    output_dir: Path
    html_path: Path
    published_files: list[str] = field(default_factory=list)
    static_files: list[str] = field(default_factory=list)


__all__ = [
    "AssemblyResult",
    "AssetKind",
    "BatchMode",
    "BuildMode",
    "BundleManifest",
    "CompileArtifact",
    "OutputAsset",
    "Stage",
    "TargetStatus",
]
