"""Build target model."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from wasmex.targets.schema import TargetOptions
from wasmex.types import BuildMode

STAGING_DIRNAME = ".wasmex"


def _resolve(base: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else base / path


@dataclass(frozen=True)
class BuildTarget:
    """One independent example project.

    Attributes:
        name: Target name (manifest directory relative to the root).
        manifest_path: Compilation-unit manifest (Cargo.toml).
        entry_path: JS/TS entry file, or None for manifest-driven targets.
        output_dir: Destination directory for the assembled output.
        mode: Build mode.
        dev_server_port: Port to serve output_dir on, if any.
        options: Merged per-target options.
    """

    name: str
    manifest_path: Path
    output_dir: Path
    mode: BuildMode = BuildMode.DEVELOPMENT
    entry_path: Path | None = None
    dev_server_port: int | None = None
    options: TargetOptions = field(default_factory=TargetOptions)

    @property
    def crate_dir(self) -> Path:
        """Directory containing the manifest."""
        return self.manifest_path.parent

    @property
    def pkg_dir(self) -> Path:
        """Directory the compiled package is published to."""
        return _resolve(self.crate_dir, self.options.pkg_dir)

    @property
    def staging_dir(self) -> Path:
        """Target-private scratch directory for logs and bundles."""
        return self.crate_dir / STAGING_DIRNAME

    @property
    def bundle_dir(self) -> Path:
        """Staging directory holding the latest bundle."""
        return self.staging_dir / "bundle"

    @property
    def template_path(self) -> Path | None:
        """HTML template, or None to use the built-in one."""
        if self.options.template:
            return _resolve(self.crate_dir, self.options.template)
        candidate = self.crate_dir / "index.html"
        return candidate if candidate.is_file() else None

    @property
    def static_dir(self) -> Path:
        """Directory copied verbatim into the output directory."""
        return _resolve(self.crate_dir, self.options.static_dir)

    @property
    def extra_watch_paths(self) -> list[Path]:
        """Extra watch paths from options, resolved."""
        return [_resolve(self.crate_dir, p) for p in self.options.watch]

    @property
    def is_production(self) -> bool:
        """Whether this target builds in production mode."""
        return self.mode == BuildMode.PRODUCTION

    @property
    def emit_sourcemap(self) -> bool:
        """Whether the bundle carries a sourcemap."""
        if not self.is_production:
            return True
        return bool(self.options.sourcemap)

    def owned_paths(self) -> list[Path]:
        """Paths written by the pipeline; changes there never trigger rebuilds."""
        return [self.pkg_dir, self.staging_dir, self.output_dir]


__all__ = ["STAGING_DIRNAME", "BuildTarget"]
