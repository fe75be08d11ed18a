"""Shared fixtures: example projects and fake build tools."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

import pytest
import yaml

from wasmex.errors import BundleError, CompileError
from wasmex.targets.models import BuildTarget

LOADER_JS = """let wasm;
export default async function init() {
  const url = new URL("index_bg.wasm", import.meta.url);
  wasm = await WebAssembly.instantiateStreaming(fetch(url));
}
"""


def make_example(
    root: Path,
    name: str,
    entry: str | None = "import init from './pkg/index.js';\ninit();\n",
    options: dict[str, Any] | None = None,
    stylesheet: str | None = None,
) -> Path:
    """Create examples/<name> with a manifest, sources and optional entry."""
    crate_dir = root / "examples" / name
    (crate_dir / "src").mkdir(parents=True)
    (crate_dir / "Cargo.toml").write_text(
        f'[package]\nname = "{name}"\nversion = "0.1.0"\n'
    )
    (crate_dir / "src" / "lib.rs").write_text("pub fn start() {}\n")
    if entry is not None:
        (crate_dir / "index.js").write_text(entry)
    if options is not None:
        (crate_dir / "wasmex.yaml").write_text(yaml.safe_dump(options))
    if stylesheet is not None:
        (crate_dir / "style.css").write_text(stylesheet)
    return crate_dir / "Cargo.toml"


class FakeCompiler:
    """Writes a loader and binary instead of running wasm-pack."""

    def __init__(self, fail: set[str] | None = None, wasm: bytes = b"\0asm") -> None:
        self.fail = fail or set()
        self.wasm = wasm
        self.calls: list[tuple[Path, list[str], Path]] = []
        self._lock = threading.Lock()

    def compile(
        self, manifest_path: Path, flags: list[str], out_dir: Path, log_path: Path
    ) -> None:
        with self._lock:
            self.calls.append((manifest_path, flags, out_dir))
        log_path.write_text("compiling\n")
        if manifest_path.parent.name in self.fail:
            raise CompileError(
                "wasm-pack failed with exit code 101",
                exit_code=101,
                log_path=log_path,
            )
        out_name = flags[flags.index("--out-name") + 1]
        (out_dir / f"{out_name}.js").write_text(LOADER_JS)
        (out_dir / f"{out_name}_bg.wasm").write_bytes(self.wasm)

    @property
    def compiled(self) -> list[str]:
        return sorted(p.parent.name for p, _, _ in self.calls)


class FakeBundler:
    """Writes bundle.js (plus map and stylesheet) instead of running esbuild."""

    def __init__(self, unresolved: str | None = None) -> None:
        self.unresolved = unresolved
        self.calls: list[Path] = []
        self._lock = threading.Lock()

    def bundle(
        self, entry_path: Path, out_dir: Path, target: BuildTarget, log_path: Path
    ) -> None:
        with self._lock:
            self.calls.append(entry_path)
        log_path.write_text("bundling\n")
        if self.unresolved is not None:
            raise BundleError(
                f"Could not resolve import {self.unresolved!r}",
                code="unresolved_import",
                unresolved_import=self.unresolved,
                log_path=log_path,
            )
        source = entry_path.read_text()
        loader = target.pkg_dir / f"{target.options.out_name}.js"
        if loader.is_file():
            source += loader.read_text()
        if target.emit_sourcemap:
            source += "//# sourceMappingURL=bundle.js.map\n"
            (out_dir / "bundle.js.map").write_text(
                json.dumps({"version": 3, "file": "bundle.js", "mappings": ""})
            )
        (out_dir / "bundle.js").write_text(source)
        stylesheet = target.crate_dir / "style.css"
        if stylesheet.is_file():
            (out_dir / "bundle.css").write_bytes(stylesheet.read_bytes())


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Project root with examples app1 and app2."""
    make_example(tmp_path, "app1")
    make_example(tmp_path, "app2")
    return tmp_path


@pytest.fixture
def compiler() -> FakeCompiler:
    return FakeCompiler()


@pytest.fixture
def bundler() -> FakeBundler:
    return FakeBundler()
