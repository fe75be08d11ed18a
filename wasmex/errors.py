"""Error definitions for wasmex.

Every error carries a stable ``code`` for programmatic handling (JSON
output, build history). Discovery errors are fatal for a whole run; the
remaining errors are scoped to the target that raised them.
"""

from __future__ import annotations

from pathlib import Path

# Error code constants
DISCOVERY_ERROR = "discovery_error"
OUTPUT_CONFLICT = "output_conflict"
COMPILE_FAILED = "compile_failed"
COMPILE_TIMEOUT = "compile_timeout"
COMPILER_MISSING = "compiler_missing"
MANIFEST_MISSING = "manifest_missing"
ARTIFACT_MISSING = "artifact_missing"
BUNDLE_FAILED = "bundle_failed"
BUNDLE_TIMEOUT = "bundle_timeout"
BUNDLER_MISSING = "bundler_missing"
UNRESOLVED_IMPORT = "unresolved_import"
ENTRY_MISSING = "entry_missing"
ASSEMBLY_FAILED = "assembly_failed"
TEMPLATE_ERROR = "template_error"
CANCELLED = "cancelled"
INTERNAL_ERROR = "internal_error"


class WasmexError(Exception):
    """Base error for wasmex operations."""

    default_code = INTERNAL_ERROR

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code or self.default_code


class DiscoveryError(WasmexError):
    """Raised when build targets cannot be determined."""

    default_code = DISCOVERY_ERROR


class OutputConflictError(DiscoveryError):
    """Raised when two targets would write to the same output directory."""

    default_code = OUTPUT_CONFLICT

    def __init__(self, output_dir: Path, manifests: list[Path]) -> None:
        joined = ", ".join(str(m) for m in manifests)
        super().__init__(f"Output directory {output_dir} is shared by: {joined}")
        self.output_dir = output_dir
        self.manifests = manifests


class CompileError(WasmexError):
    """Raised when compiling a target fails."""

    default_code = COMPILE_FAILED

    def __init__(
        self,
        message: str,
        code: str | None = None,
        exit_code: int | None = None,
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message, code)
        self.exit_code = exit_code
        self.log_path = log_path


class BundleError(WasmexError):
    """Raised when bundling a target fails."""

    default_code = BUNDLE_FAILED

    def __init__(
        self,
        message: str,
        code: str | None = None,
        unresolved_import: str | None = None,
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message, code)
        self.unresolved_import = unresolved_import
        self.log_path = log_path


class AssemblyError(WasmexError):
    """Raised when writing a target's output directory fails."""

    default_code = ASSEMBLY_FAILED


__all__ = [
    "ARTIFACT_MISSING",
    "ASSEMBLY_FAILED",
    "BUNDLER_MISSING",
    "BUNDLE_FAILED",
    "BUNDLE_TIMEOUT",
    "CANCELLED",
    "COMPILER_MISSING",
    "COMPILE_FAILED",
    "COMPILE_TIMEOUT",
    "DISCOVERY_ERROR",
    "ENTRY_MISSING",
    "INTERNAL_ERROR",
    "MANIFEST_MISSING",
    "OUTPUT_CONFLICT",
    "TEMPLATE_ERROR",
    "UNRESOLVED_IMPORT",
    "AssemblyError",
    "BundleError",
    "CompileError",
    "DiscoveryError",
    "OutputConflictError",
    "WasmexError",
]
