"""Build pipeline module.

This module handles:
- Compiling crates to WebAssembly (compile)
- Bundling web assets with plugins and content hashing (bundle)
- Assembling the deployable output directory (assemble)
- Running targets as independent parallel pipelines (pipeline, driver)
- Recording build history (models, history)
"""

from wasmex.builds.driver import BuildDriver, DriverResult, build_targets
from wasmex.builds.pipeline import TargetResult, run_pipeline

__all__ = [
    "BuildDriver",
    "DriverResult",
    "TargetResult",
    "build_targets",
    "run_pipeline",
]
