"""Configuration settings for wasmex.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > per-target options
file > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PATTERN = "examples/*/Cargo.toml"


def _default_db_url() -> str:
    """Return the default build history database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "wasmex" / "history.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the WASMEX_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="WASMEX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Discovery
    root_dir: Path = Field(
        default_factory=Path.cwd,
        description="Project root that discovery patterns are relative to",
    )
    pattern: str = Field(
        default=DEFAULT_PATTERN,
        description="Glob pattern matching compilation-unit manifests",
    )

    # Build
    mode: Literal["development", "production"] = Field(
        default="development",
        description="Default build mode for targets without an override",
    )
    compiler: str = Field(
        default="wasm-pack",
        description="Executable used to compile crates to WebAssembly",
    )
    bundler: str = Field(
        default="esbuild",
        description="Executable used to bundle web assets",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum target pipelines run in parallel",
    )

    # Timeouts (in seconds)
    compile_timeout: int = Field(
        default=1800,
        ge=10,
        description="Timeout for a single compiler invocation",
    )
    bundle_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for a single bundler invocation",
    )

    # Watch / dev server
    dev_server_host: str = Field(
        default="127.0.0.1",
        description="Interface the dev servers bind to",
    )
    watch_debounce: float = Field(
        default=0.3,
        ge=0.0,
        le=10.0,
        description="Quiet period before a source change triggers a rebuild",
    )

    # Build history
    history: bool = Field(
        default=True,
        description="Record every target pipeline run in the history database",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Build history database URL",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_PATTERN", "Settings", "get_settings", "print_settings_json"]
