"""wasmex - multi-target WebAssembly example builder.

This package discovers WebAssembly example crates, compiles them with
wasm-pack, bundles their web assets with esbuild and assembles a
deployable output directory per example.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
