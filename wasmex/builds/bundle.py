"""Asset bundling step.

This module handles:
- Composing esbuild commands from target options
- Generating an entry shim for targets without a JS entry file
- Applying transform plugins to emitted files
- Content-hashed naming in production builds
- Writing the bundle to the target's staging directory

See BundleManifest for the result shape.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Protocol

from wasmex.builds.hashing import classify_asset, content_hash, hashed_name
from wasmex.builds.plugins import BundlePlugin, default_plugins
from wasmex.builds.process import (
    ProcessCancelledError,
    ProcessRegistry,
    read_log_tail,
    run_logged,
    tool_env,
)
from wasmex.errors import (
    BUNDLE_TIMEOUT,
    BUNDLER_MISSING,
    CANCELLED,
    ENTRY_MISSING,
    UNRESOLVED_IMPORT,
    BundleError,
)
from wasmex.targets.models import BuildTarget
from wasmex.types import AssetKind, BundleManifest, CompileArtifact, OutputAsset

logger = logging.getLogger(__name__)

ENTRY_NAME = "bundle"
BUNDLE_LOG_NAME = "bundle.log"
MANIFEST_NAME = "bundle-manifest.json"

UNRESOLVED_PATTERN = re.compile(r'Could not resolve "([^"]+)"')
SOURCEMAP_COMMENT = re.compile(
    rb"(//# sourceMappingURL=|/\*# sourceMappingURL=)(\S+?)(\s*\*/)?$", re.M
)

SHIM_TEMPLATE = """import init from {loader};

init();
"""


class Bundler(Protocol):
    """Web bundler collaborator."""

    def bundle(
        self,
        entry_path: Path,
        out_dir: Path,
        target: BuildTarget,
        log_path: Path,
    ) -> None:
        """Bundle entry_path into out_dir as ``<ENTRY_NAME>.js`` (+ css, maps).

        Raises:
            BundleError: If bundling fails.
        """
        ...


def compose_bundle_command(
    program: str,
    entry_path: Path,
    out_dir: Path,
    target: BuildTarget,
) -> list[str]:
    """Compose an esbuild command for a target.

    Args:
        program: Bundler executable.
        entry_path: Entry file.
        out_dir: Directory for raw bundler output.
        target: Build target.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        program,
        str(entry_path),
        "--bundle",
        "--format=esm",
        f"--outdir={out_dir}",
        f"--entry-names={ENTRY_NAME}",
        "--color=false",
    ]
    if target.emit_sourcemap:
        cmd.append("--sourcemap")
    if target.is_production:
        cmd.append("--minify")
    if target.options.public_path:
        cmd.append(f"--public-path={target.options.public_path}")
    cmd.extend(target.options.bundler_args)
    return cmd


def find_unresolved_import(output: str) -> str | None:
    """Extract the first unresolved import path from bundler diagnostics."""
    match = UNRESOLVED_PATTERN.search(output)
    return match.group(1) if match else None


class EsbuildBundler:
    """Bundler backed by the esbuild executable."""

    def __init__(
        self,
        program: str = "esbuild",
        timeout: float | None = None,
        registry: ProcessRegistry | None = None,
        root_dir: Path | None = None,
    ) -> None:
        self.program = program
        self.timeout = timeout
        self.registry = registry
        self.root_dir = root_dir

    def bundle(
        self,
        entry_path: Path,
        out_dir: Path,
        target: BuildTarget,
        log_path: Path,
    ) -> None:
        cmd = compose_bundle_command(self.program, entry_path, out_dir, target)
        try:
            result = run_logged(
                cmd,
                cwd=target.crate_dir,
                log_path=log_path,
                timeout=self.timeout,
                env_override=tool_env(self.root_dir),
                registry=self.registry,
            )
        except ProcessCancelledError as e:
            raise BundleError(str(e), code=CANCELLED) from e
        except subprocess.TimeoutExpired as e:
            raise BundleError(
                f"Bundler timed out after {self.timeout} seconds",
                code=BUNDLE_TIMEOUT,
                log_path=log_path,
            ) from e
        except OSError as e:
            raise BundleError(
                f"Failed to execute {self.program}: {e}",
                code=BUNDLER_MISSING,
            ) from e

        if not result.success:
            output = read_log_tail(log_path)
            unresolved = find_unresolved_import(output)
            if unresolved is not None:
                raise BundleError(
                    f"Could not resolve import {unresolved!r} from {entry_path}",
                    code=UNRESOLVED_IMPORT,
                    unresolved_import=unresolved,
                    log_path=log_path,
                )
            raise BundleError(
                f"{self.program} failed with exit code {result.exit_code}\n{output}",
                log_path=log_path,
            )


def write_entry_shim(target: BuildTarget, artifact: CompileArtifact) -> Path:
    """Write an entry module that initialises the compiled loader.

    Args:
        target: Build target without an entry file.
        artifact: Compile artifact whose loader is imported.

    Returns:
        Path to the generated entry module.
    """
    shim_dir = target.staging_dir / "entry"
    shim_dir.mkdir(parents=True, exist_ok=True)
    rel = Path(os.path.relpath(artifact.loader_module_path, shim_dir)).as_posix()
    if not rel.startswith("."):
        rel = f"./{rel}"
    shim = shim_dir / "main.js"
    shim.write_text(SHIM_TEMPLATE.format(loader=json.dumps(rel)), encoding="utf-8")
    return shim


def read_assets(raw_dir: Path) -> list[OutputAsset]:
    """Read every file emitted by the bundler."""
    return [
        OutputAsset(
            name=path.relative_to(raw_dir).as_posix(),
            data=path.read_bytes(),
            kind=classify_asset(path.name),
        )
        for path in sorted(raw_dir.rglob("*"))
        if path.is_file()
    ]


def apply_plugins(
    assets: list[OutputAsset],
    plugins: list[BundlePlugin],
) -> list[OutputAsset]:
    """Apply plugins in order to every asset; None results are dropped."""
    for plugin in plugins:
        transformed = (plugin.transform(asset) for asset in assets)
        assets = [a for a in transformed if a is not None]
        logger.debug("Applied plugin %s", plugin.name)
    return assets


def _replace_reference(data: bytes, old: str, new: str) -> bytes:
    for quote in (b'"', b"'", b"`"):
        data = data.replace(
            quote + old.encode() + quote,
            quote + new.encode() + quote,
        )
    return data


def _rewrite_sourcemap_comment(data: bytes, new_map: str) -> bytes:
    def repl(match: re.Match[bytes]) -> bytes:
        return match.group(1) + new_map.encode() + (match.group(3) or b"")

    return SOURCEMAP_COMMENT.sub(repl, data)


def _retarget_sourcemap(data: bytes, generated: str) -> bytes:
    try:
        source_map = json.loads(data)
    except ValueError:
        logger.warning("Sourcemap for %s is not valid JSON; left as is", generated)
        return data
    if not isinstance(source_map, dict) or "file" not in source_map:
        return data
    source_map["file"] = generated
    return json.dumps(source_map, separators=(",", ":")).encode()


def apply_content_hashes(assets: list[OutputAsset]) -> dict[str, str]:
    """Rename loadable files and the wasm binary after their content hash.

    The wasm binary is renamed first and references to it in scripts are
    rewritten; each script/stylesheet is then hashed over its bytes and its
    sourcemap renamed along with it.

    Renamed sourcemaps have their "file" field pointed at the hashed script.
    Mappings are not adjusted, so columns after a rewritten wasm reference
    on the same generated line shift by the inserted digest.

    Args:
        assets: Assets after plugins.

    Returns:
        Mapping of original file name to the digest in its new name.
    """
    renames: dict[str, str] = {}
    digests: dict[str, str] = {}

    for asset in assets:
        if asset.kind == AssetKind.WASM:
            digests[asset.name] = content_hash(asset.data)
            new = hashed_name(asset.name, digests[asset.name])
            renames[asset.name] = new
            asset.name = new
    for old, new in list(renames.items()):
        for asset in assets:
            if asset.kind == AssetKind.SCRIPT:
                asset.data = _replace_reference(asset.data, old, new)

    for asset in assets:
        if asset.kind in (AssetKind.SCRIPT, AssetKind.STYLESHEET):
            digests[asset.name] = content_hash(asset.data)
            new = hashed_name(asset.name, digests[asset.name])
            renames[asset.name] = new
            renames[f"{asset.name}.map"] = f"{new}.map"
            asset.data = _rewrite_sourcemap_comment(asset.data, f"{new}.map")
            asset.name = new

    for asset in assets:
        if asset.kind == AssetKind.SOURCEMAP and asset.name in renames:
            asset.name = renames[asset.name]
            asset.data = _retarget_sourcemap(asset.data, asset.name[: -len(".map")])
    return digests


def order_assets(
    assets: list[OutputAsset],
    entry_script: str,
) -> tuple[list[OutputAsset], list[OutputAsset]]:
    """Split assets into load-ordered loadable files and auxiliary files.

    Stylesheets and style scripts load before the entry script.

    Returns:
        Tuple of (loadable, auxiliary).
    """
    loadable_kinds = (AssetKind.SCRIPT, AssetKind.STYLESHEET)
    loadable = [a for a in assets if a.kind in loadable_kinds]
    auxiliary = [a for a in assets if a.kind not in loadable_kinds]
    loadable.sort(
        key=lambda a: (a.name == entry_script, a.kind != AssetKind.STYLESHEET)
    )
    return loadable, auxiliary


def write_bundle(assets: list[OutputAsset], bundle_dir: Path) -> None:
    """Replace bundle_dir with the given assets."""
    if bundle_dir.exists():
        shutil.rmtree(bundle_dir)
    bundle_dir.mkdir(parents=True)
    for asset in assets:
        path = bundle_dir / asset.name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(asset.data)


def write_bundle_manifest(manifest: BundleManifest, path: Path) -> Path:
    """Write a BundleManifest as JSON."""
    data = {
        "entry_name": manifest.entry_name,
        "output_files": manifest.output_files,
        "auxiliary_files": manifest.auxiliary_files,
        "sourcemap_present": manifest.sourcemap_present,
        "content_hash": manifest.content_hash,
    }
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)
    return path


def bundle_target(
    target: BuildTarget,
    artifact: CompileArtifact,
    bundler: Bundler,
    plugins: list[BundlePlugin] | None = None,
) -> BundleManifest:
    """Bundle a target's web assets.

    Args:
        target: Build target.
        artifact: Compile artifact of the same target.
        bundler: Bundler collaborator.
        plugins: Transform plugins; defaults to default_plugins(target).

    Returns:
        BundleManifest describing files in the target's bundle dir.

    Raises:
        BundleError: If the entry is missing or the bundler fails.
    """
    if plugins is None:
        plugins = default_plugins(target)

    if target.entry_path is None:
        entry = write_entry_shim(target, artifact)
    else:
        entry = target.entry_path
        if not entry.is_file():
            raise BundleError(f"Entry file not found: {entry}", code=ENTRY_MISSING)

    raw_dir = target.staging_dir / "bundle-raw"
    if raw_dir.exists():
        shutil.rmtree(raw_dir)
    raw_dir.mkdir(parents=True)
    log_path = target.staging_dir / BUNDLE_LOG_NAME

    logger.info("[%s] Bundling %s", target.name, entry)
    bundler.bundle(entry, raw_dir, target, log_path)

    entry_script = f"{ENTRY_NAME}.js"
    assets = read_assets(raw_dir)
    if not any(a.name == entry_script for a in assets):
        raise BundleError(
            f"Bundler did not produce {entry_script}",
            log_path=log_path,
        )
    if not target.emit_sourcemap:
        assets = [a for a in assets if a.kind != AssetKind.SOURCEMAP]

    assets = apply_plugins(assets, plugins)
    assets.append(
        OutputAsset(
            name=artifact.wasm_binary_path.name,
            data=artifact.wasm_binary_path.read_bytes(),
            kind=AssetKind.WASM,
        )
    )

    loadable, auxiliary = order_assets(assets, entry_script)
    digest: str | None = None
    if target.is_production:
        digest = apply_content_hashes(loadable + auxiliary)[entry_script]

    write_bundle(loadable + auxiliary, target.bundle_dir)
    manifest = BundleManifest(
        entry_name=ENTRY_NAME,
        output_files=[a.name for a in loadable],
        auxiliary_files=[a.name for a in auxiliary],
        sourcemap_present=any(a.kind == AssetKind.SOURCEMAP for a in auxiliary),
        content_hash=digest,
        staging_dir=target.bundle_dir,
    )
    write_bundle_manifest(manifest, target.staging_dir / MANIFEST_NAME)
    logger.info(
        "[%s] Bundled %d file(s): %s",
        target.name,
        len(manifest.output_files),
        ", ".join(manifest.output_files),
    )
    return manifest


__all__ = [
    "BUNDLE_LOG_NAME",
    "ENTRY_NAME",
    "MANIFEST_NAME",
    "Bundler",
    "EsbuildBundler",
    "apply_content_hashes",
    "apply_plugins",
    "bundle_target",
    "compose_bundle_command",
    "find_unresolved_import",
    "order_assets",
    "read_assets",
    "write_bundle",
    "write_bundle_manifest",
    "write_entry_shim",
]
