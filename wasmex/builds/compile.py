"""Per-target compile step.

This module handles:
- Composing wasm-pack commands from target options
- Compiling into a private temporary directory
- Publishing the compiled package to the target's pkg dir only on success
- Collecting the source paths that invalidate a compile artifact
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol

from wasmex.builds.process import (
    ProcessCancelledError,
    ProcessRegistry,
    run_logged,
    tool_env,
)
from wasmex.errors import (
    ARTIFACT_MISSING,
    CANCELLED,
    COMPILE_TIMEOUT,
    COMPILER_MISSING,
    MANIFEST_MISSING,
    CompileError,
)
from wasmex.targets.models import BuildTarget
from wasmex.types import CompileArtifact

logger = logging.getLogger(__name__)

COMPILE_LOG_NAME = "compile.log"


class Compiler(Protocol):
    """Native-to-WebAssembly compiler collaborator."""

    def compile(
        self,
        manifest_path: Path,
        flags: list[str],
        out_dir: Path,
        log_path: Path,
    ) -> None:
        """Compile the crate described by manifest_path into out_dir.

        Raises:
            CompileError: If compilation fails.
        """
        ...


def compile_flags(target: BuildTarget) -> list[str]:
    """Compose compiler flags for a target.

    Args:
        target: Build target.

    Returns:
        Flags excluding the crate path and output directory.
    """
    flags = ["--target", "web", "--out-name", target.options.out_name]
    flags.append("--release" if target.is_production else "--dev")
    if target.options.no_typescript:
        flags.append("--no-typescript")
    flags.extend(target.options.compiler_args)
    return flags


def compose_compile_command(
    program: str,
    manifest_path: Path,
    flags: list[str],
    out_dir: Path,
) -> list[str]:
    """Compose a wasm-pack build command.

    Args:
        program: Compiler executable.
        manifest_path: Crate manifest.
        flags: Compiler flags.
        out_dir: Output directory for the compiled package.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    return [
        program,
        "build",
        str(manifest_path.parent),
        *flags,
        "--out-dir",
        str(out_dir),
    ]


class WasmPackCompiler:
    """Compiler backed by the wasm-pack executable."""

    def __init__(
        self,
        program: str = "wasm-pack",
        timeout: float | None = None,
        registry: ProcessRegistry | None = None,
        root_dir: Path | None = None,
    ) -> None:
        self.program = program
        self.timeout = timeout
        self.registry = registry
        self.root_dir = root_dir

    def compile(
        self,
        manifest_path: Path,
        flags: list[str],
        out_dir: Path,
        log_path: Path,
    ) -> None:
        cmd = compose_compile_command(self.program, manifest_path, flags, out_dir)
        try:
            result = run_logged(
                cmd,
                cwd=manifest_path.parent,
                log_path=log_path,
                timeout=self.timeout,
                env_override=tool_env(self.root_dir),
                registry=self.registry,
            )
        except ProcessCancelledError as e:
            raise CompileError(str(e), code=CANCELLED) from e
        except subprocess.TimeoutExpired as e:
            raise CompileError(
                f"Compiler timed out after {self.timeout} seconds",
                code=COMPILE_TIMEOUT,
                exit_code=-1,
                log_path=log_path,
            ) from e
        except OSError as e:
            raise CompileError(
                f"Failed to execute {self.program}: {e}",
                code=COMPILER_MISSING,
            ) from e

        if not result.success:
            logger.error(
                "Compiler failed with exit code %d. See log: %s",
                result.exit_code,
                log_path,
            )
            raise CompileError(
                f"{self.program} failed with exit code {result.exit_code}\n"
                f"{result.output_tail()}",
                exit_code=result.exit_code,
                log_path=log_path,
            )


def collect_watch_paths(target: BuildTarget) -> frozenset[Path]:
    """Collect paths whose changes invalidate a target's build.

    Args:
        target: Build target.

    Returns:
        Set of files and directories to watch.
    """
    crate_dir = target.crate_dir
    paths: set[Path] = {target.manifest_path, crate_dir / "src"}
    lock_file = crate_dir / "Cargo.lock"
    if lock_file.exists():
        paths.add(lock_file)
    if target.entry_path is not None:
        paths.add(target.entry_path)
    if target.template_path is not None:
        paths.add(target.template_path)
    if target.static_dir.is_dir():
        paths.add(target.static_dir)
    paths.update(target.extra_watch_paths)
    return frozenset(paths)


def _publish_package(staged: Path, pkg_dir: Path) -> None:
    """Swap a freshly compiled package in place of pkg_dir."""
    pkg_dir.parent.mkdir(parents=True, exist_ok=True)
    previous: Path | None = None
    if pkg_dir.exists():
        previous = pkg_dir.with_name(f"{pkg_dir.name}.old-{staged.name}")
        pkg_dir.rename(previous)
    staged.rename(pkg_dir)
    if previous is not None:
        shutil.rmtree(previous, ignore_errors=True)


def compile_target(target: BuildTarget, compiler: Compiler) -> CompileArtifact:
    """Compile a target and publish its package.

    Args:
        target: Build target.
        compiler: Compiler collaborator.

    Returns:
        CompileArtifact pointing into the target's pkg dir.

    Raises:
        CompileError: If the manifest is missing, the compiler fails or the
            expected outputs are not produced. The pkg dir is left untouched.
    """
    if not target.manifest_path.is_file():
        raise CompileError(
            f"Manifest not found: {target.manifest_path}",
            code=MANIFEST_MISSING,
        )

    target.staging_dir.mkdir(parents=True, exist_ok=True)
    log_path = target.staging_dir / COMPILE_LOG_NAME
    out_name = target.options.out_name
    staged = Path(tempfile.mkdtemp(prefix="pkg-", dir=target.staging_dir))

    try:
        flags = compile_flags(target)
        logger.info("[%s] Compiling %s", target.name, target.manifest_path)
        compiler.compile(target.manifest_path, flags, staged, log_path)

        loader = staged / f"{out_name}.js"
        binary = staged / f"{out_name}_bg.wasm"
        missing = [p.name for p in (loader, binary) if not p.is_file()]
        if missing:
            raise CompileError(
                f"Compiler did not produce {', '.join(missing)}",
                code=ARTIFACT_MISSING,
                log_path=log_path,
            )

        _publish_package(staged, target.pkg_dir)
    except BaseException:
        shutil.rmtree(staged, ignore_errors=True)
        raise

    logger.info("[%s] Compiled package to %s", target.name, target.pkg_dir)
    return CompileArtifact(
        wasm_binary_path=target.pkg_dir / f"{out_name}_bg.wasm",
        loader_module_path=target.pkg_dir / f"{out_name}.js",
        source_watch_paths=collect_watch_paths(target),
        log_path=log_path,
    )


__all__ = [
    "COMPILE_LOG_NAME",
    "Compiler",
    "WasmPackCompiler",
    "collect_watch_paths",
    "compile_flags",
    "compile_target",
    "compose_compile_command",
]
