"""Manifest discovery.

This module handles:
- Matching compilation-unit manifests below a root with a glob pattern
- Building BuildTarget instances with merged per-target options
- Detecting output directory conflicts between targets
- Selecting targets by name

Discovery runs once per invocation; its result is treated as immutable.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Any

import yaml
from pydantic import ValidationError

from wasmex.errors import DiscoveryError, OutputConflictError
from wasmex.targets.io import find_options_file, load_options_file
from wasmex.targets.models import BuildTarget
from wasmex.targets.schema import TargetOptions, merge_options
from wasmex.types import BuildMode

logger = logging.getLogger(__name__)

ENTRY_CANDIDATES = ("index.js", "index.mjs", "index.ts")


def validate_pattern(pattern: str) -> None:
    """Reject patterns that cannot select manifests below a root.

    Args:
        pattern: Glob pattern relative to the root.

    Raises:
        DiscoveryError: If the pattern is empty, absolute or escapes the root.
    """
    if not pattern or not pattern.strip():
        raise DiscoveryError("Discovery pattern must not be empty")
    posix = PurePosixPath(pattern.replace("\\", "/"))
    if posix.is_absolute() or Path(pattern).is_absolute():
        raise DiscoveryError(f"Discovery pattern must be relative: {pattern}")
    if ".." in posix.parts:
        raise DiscoveryError(f"Discovery pattern must not leave the root: {pattern}")


def discover_manifests(root: Path, pattern: str) -> list[Path]:
    """Find manifests below root matching pattern.

    Args:
        root: Root directory.
        pattern: Glob pattern relative to root (``**`` supported).

    Returns:
        Path-sorted list of manifest files. Empty if nothing matches.

    Raises:
        DiscoveryError: If the pattern is malformed or root is not a directory.
    """
    validate_pattern(pattern)
    if not root.is_dir():
        raise DiscoveryError(f"Root directory does not exist: {root}")

    try:
        matches = [p for p in root.glob(pattern) if p.is_file()]
    except ValueError as e:
        raise DiscoveryError(f"Invalid discovery pattern {pattern!r}: {e}") from e

    manifests = sorted(matches, key=lambda p: p.relative_to(root).as_posix())
    logger.info("Discovered %d manifest(s) in %s", len(manifests), root)
    return manifests


def target_name(root: Path, manifest: Path) -> str:
    """Name a target after its manifest directory relative to root."""
    rel = manifest.parent.relative_to(root).as_posix()
    return rel if rel != "." else manifest.parent.resolve().name


def resolve_entry(crate_dir: Path, options: TargetOptions) -> Path | None:
    """Resolve the JS/TS entry file of a target.

    Args:
        crate_dir: Directory containing the manifest.
        options: Merged target options.

    Returns:
        Entry path, or None for a manifest-driven target.
    """
    if options.entry:
        entry = Path(options.entry)
        return entry if entry.is_absolute() else crate_dir / entry
    for name in ENTRY_CANDIDATES:
        candidate = crate_dir / name
        if candidate.is_file():
            return candidate
    return None


def load_target_options(
    crate_dir: Path,
    defaults: TargetOptions,
    overrides: dict[str, Any] | None = None,
) -> TargetOptions:
    """Merge defaults, the target's options file and CLI overrides.

    Raises:
        DiscoveryError: If the options file is unreadable or invalid.
    """
    options = defaults
    options_file = find_options_file(crate_dir)
    if options_file is not None:
        try:
            options = merge_options(options, load_options_file(options_file))
        except (OSError, ValueError, yaml.YAMLError) as e:
            # pydantic.ValidationError is a ValueError
            raise DiscoveryError(f"Invalid options file {options_file}: {e}") from e
        logger.debug("Loaded target options from %s", options_file)
    if overrides:
        try:
            options = merge_options(options, overrides)
        except ValidationError as e:
            raise DiscoveryError(f"Invalid option overrides: {e}") from e
    return options


def _overlaps(a: Path, b: Path) -> bool:
    return a == b or a in b.parents or b in a.parents


def check_output_dir(target: BuildTarget) -> None:
    """Ensure a target's output directory cannot replace its own sources.

    The output directory may not be the crate directory or one of its
    ancestors, and may not overlap the pkg or staging directories.

    Raises:
        DiscoveryError: If the output directory is unsafe.
    """
    output_dir = target.output_dir.resolve()
    crate_dir = target.crate_dir.resolve()
    if output_dir == crate_dir or output_dir in crate_dir.parents:
        raise DiscoveryError(
            f"Output directory {target.output_dir} of {target.name} contains "
            "its crate directory"
        )
    for owned in (target.pkg_dir, target.staging_dir):
        if _overlaps(output_dir, owned.resolve()):
            raise DiscoveryError(
                f"Output directory {target.output_dir} of {target.name} "
                f"overlaps {owned}"
            )


def make_target(
    root: Path,
    manifest: Path,
    defaults: TargetOptions | None = None,
    mode: BuildMode = BuildMode.DEVELOPMENT,
    overrides: dict[str, Any] | None = None,
) -> BuildTarget:
    """Build a BuildTarget for one manifest.

    Raises:
        DiscoveryError: If the options are invalid or the output directory
            is unsafe.
    """
    crate_dir = manifest.parent
    options = load_target_options(crate_dir, defaults or TargetOptions(), overrides)
    output_dir = Path(options.output_dir)
    if not output_dir.is_absolute():
        output_dir = crate_dir / output_dir
    target = BuildTarget(
        name=target_name(root, manifest),
        manifest_path=manifest,
        entry_path=resolve_entry(crate_dir, options),
        output_dir=output_dir,
        mode=options.mode or mode,
        dev_server_port=options.dev_server_port,
        options=options,
    )
    check_output_dir(target)
    return target


def check_output_conflicts(targets: list[BuildTarget]) -> None:
    """Ensure no two targets share or nest output directories.

    Raises:
        OutputConflictError: On the first conflict found.
    """
    resolved = [(t.output_dir.resolve(), t) for t in targets]
    for i, (dir_a, target_a) in enumerate(resolved):
        for dir_b, target_b in resolved[i + 1 :]:
            if _overlaps(dir_a, dir_b):
                raise OutputConflictError(
                    dir_a, [target_a.manifest_path, target_b.manifest_path]
                )


def discover_targets(
    root: Path,
    pattern: str,
    defaults: TargetOptions | None = None,
    mode: BuildMode = BuildMode.DEVELOPMENT,
    overrides: dict[str, Any] | None = None,
) -> list[BuildTarget]:
    """Discover build targets.

    Args:
        root: Root directory.
        pattern: Manifest glob pattern relative to root.
        defaults: Global default target options.
        mode: Build mode for targets that do not set one.
        overrides: Options applied over every target's own options.

    Returns:
        Path-sorted list of targets (possibly empty).

    Raises:
        DiscoveryError: If the pattern or any target's options are invalid.
        OutputConflictError: If two targets' output directories overlap.
    """
    root = root.resolve()
    targets = [
        make_target(root, m, defaults=defaults, mode=mode, overrides=overrides)
        for m in discover_manifests(root, pattern)
    ]
    check_output_conflicts(targets)
    return targets


def select_targets(targets: list[BuildTarget], names: list[str]) -> list[BuildTarget]:
    """Select targets by name or by their directory's base name.

    Args:
        targets: Discovered targets.
        names: Names to select; empty selects everything.

    Returns:
        Selected targets in discovery order.

    Raises:
        DiscoveryError: If a name matches no target.
    """
    if not names:
        return list(targets)
    wanted = set(names)
    selected = [
        t for t in targets if t.name in wanted or t.crate_dir.name in wanted
    ]
    known = {t.name for t in selected} | {t.crate_dir.name for t in selected}
    missing = sorted(wanted - known)
    if missing:
        raise DiscoveryError(f"Unknown target(s): {', '.join(missing)}")
    return selected


__all__ = [
    "ENTRY_CANDIDATES",
    "check_output_conflicts",
    "discover_manifests",
    "discover_targets",
    "load_target_options",
    "make_target",
    "resolve_entry",
    "select_targets",
    "target_name",
    "validate_pattern",
]
