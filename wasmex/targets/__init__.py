"""Target discovery module.

This module handles:
- Manifest discovery with glob patterns
- Per-target options files and option merging
- Output directory conflict detection
"""

from wasmex.targets.models import BuildTarget
from wasmex.targets.schema import TargetOptions

__all__ = ["BuildTarget", "TargetOptions"]
