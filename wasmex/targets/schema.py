"""Pydantic models for per-target build options.

Options come from three layers: built-in defaults, global overrides from
settings/CLI flags, and an optional ``wasmex.yaml`` (or ``.yml``/``.json``)
file beside the target's manifest. Layers are merged into one explicit
``TargetOptions`` before the pipeline starts.
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wasmex.types import BuildMode

OUT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


class TargetOptions(BaseModel):
    """Build options for a single target.

    Attributes:
        output_dir: Output directory, relative to the crate directory.
        public_path: Base path for URLs emitted into the HTML document.
        dev_server_port: Port the dev server serves this target on.
        watch: Extra paths (relative to the crate directory) to watch.
        compiler_args: Extra arguments passed to the compiler.
        bundler_args: Extra arguments passed to the bundler.
        no_typescript: Omit TypeScript declaration output when compiling.
        clean: Replace the output directory instead of writing over it.
        mode: Build mode; falls back to the global mode when unset.
        entry: JS/TS entry file; auto-detected when unset.
        template: HTML template; ``index.html`` beside the manifest when unset.
        static_dir: Directory copied verbatim into the output directory.
        static_files: Glob patterns of extra files copied into the output.
        sourcemap: Emit sourcemaps (always on in development).
        inject_styles: Turn stylesheets into style-injecting scripts.
        out_name: Base name of the compiled loader and binary.
        pkg_dir: Directory the compiled package is published to.
        title: Document title; the target name when unset.
    """

    model_config = ConfigDict(extra="forbid")

    output_dir: str = Field(default="dist", description="Output directory")
    public_path: str = Field(default="/", description="Public base path")
    dev_server_port: int | None = Field(default=None, ge=1, le=65535)
    watch: list[str] = Field(default_factory=list)
    compiler_args: list[str] = Field(default_factory=list)
    bundler_args: list[str] = Field(default_factory=list)
    no_typescript: bool = Field(default=True)
    clean: bool = Field(default=False)
    mode: BuildMode | None = Field(default=None)
    entry: str | None = Field(default=None)
    template: str | None = Field(default=None)
    static_dir: str = Field(default="static")
    static_files: list[str] = Field(default_factory=list)
    sourcemap: bool | None = Field(default=None)
    inject_styles: bool = Field(default=True)
    out_name: str = Field(default="index")
    pkg_dir: str = Field(default="pkg")
    title: str | None = Field(default=None)

    @field_validator("public_path")
    @classmethod
    def validate_public_path(cls, v: str) -> str:
        """Normalize the public path to end with '/'."""
        if not v:
            return ""
        return v if v.endswith("/") else f"{v}/"

    @field_validator("out_name")
    @classmethod
    def validate_out_name(cls, v: str) -> str:
        """Validate out_name is a plain file stem."""
        if not OUT_NAME_PATTERN.match(v):
            raise ValueError(
                f"out_name must contain only letters, digits, '-' and '_', got '{v}'"
            )
        return v

    @field_validator("output_dir", "pkg_dir")
    @classmethod
    def validate_dir(cls, v: str) -> str:
        """Reject empty directory names."""
        if not v.strip():
            raise ValueError("directory must not be empty")
        return v


def merge_options(base: TargetOptions, overrides: dict[str, Any]) -> TargetOptions:
    """Merge explicitly set override values over a base option set.

    Args:
        base: Options to start from.
        overrides: Raw override mapping; validated against TargetOptions.

    Returns:
        New TargetOptions instance.

    Raises:
        pydantic.ValidationError: If overrides are invalid.
    """
    parsed = TargetOptions.model_validate(overrides)
    update = parsed.model_dump(include=parsed.model_fields_set)
    return base.model_copy(update=update)


__all__ = ["OUT_NAME_PATTERN", "TargetOptions", "merge_options"]
