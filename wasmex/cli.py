"""Thin CLI wrapper for wasmex.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import time
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from wasmex import __version__
from wasmex.config import Settings, get_settings, print_settings_json

app = typer.Typer(
    name="wasmex",
    help="wasmex - build WebAssembly example projects into deployable bundles",
    no_args_is_help=True,
)
console = Console()

# Exit codes
EXIT_TARGET_FAILED = 1
EXIT_DISCOVERY_FAILED = 2
EXIT_INTERRUPTED = 130

RootOption = Annotated[
    Path | None,
    typer.Option("--root", "-r", help="Project root (default: current directory)"),
]
PatternOption = Annotated[
    str | None,
    typer.Option("--pattern", help="Manifest glob relative to the root"),
]
ModeOption = Annotated[
    str | None,
    typer.Option("--mode", "-m", help="Build mode: development or production"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"wasmex version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records to stderr through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_path=False,
                rich_tracebacks=True,
            )
        ],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", "-l", help="Log level (default: from settings)"),
    ] = None,
) -> None:
    """wasmex - build WebAssembly example projects into deployable bundles."""
    configure_logging(log_level or get_settings().log_level)


def _print_json(data: Any) -> None:
    console.print(
        json.dumps(data, indent=2), soft_wrap=True, markup=False, highlight=False
    )


def _settings(
    root: Path | None = None,
    pattern: str | None = None,
    jobs: int | None = None,
    history: bool | None = None,
) -> Settings:
    """Effective settings with CLI flags applied over env and defaults."""
    settings = get_settings()
    update: dict[str, Any] = {}
    if root is not None:
        update["root_dir"] = root
    if pattern is not None:
        update["pattern"] = pattern
    if jobs is not None:
        update["max_concurrent_builds"] = jobs
    if history is not None:
        update["history"] = history and settings.history
    return settings.model_copy(update=update) if update else settings


def _overrides(
    mode: str | None = None,
    clean: bool | None = None,
    public_path: str | None = None,
) -> dict[str, Any]:
    """Per-target option overrides from CLI flags."""
    overrides: dict[str, Any] = {}
    if mode is not None:
        if mode not in ("development", "production"):
            console.print(f"[red]Invalid mode: {mode}[/red]")
            console.print("Valid values: development, production")
            raise typer.Exit(code=EXIT_DISCOVERY_FAILED)
        overrides["mode"] = mode
    if clean:
        overrides["clean"] = True
    if public_path is not None:
        overrides["public_path"] = public_path
    return overrides


def _session_factory(settings: Settings) -> Any:
    """History session factory, or None if history is off or unavailable."""
    if not settings.history:
        return None
    from sqlalchemy.exc import SQLAlchemyError

    from wasmex.db import create_all_tables, get_engine, get_session_factory

    try:
        engine = get_engine(settings.db_url)
        create_all_tables(engine)
    except (SQLAlchemyError, OSError) as e:
        logging.getLogger(__name__).warning("Build history disabled: %s", e)
        return None
    return get_session_factory(engine)


def _discover(
    settings: Settings,
    names: list[str] | None,
    overrides: dict[str, Any],
    with_history: bool = True,
) -> tuple[Any, list[Any]]:
    """Create a driver and discover targets; exit 2 on discovery errors."""
    from wasmex.builds.driver import BuildDriver
    from wasmex.errors import DiscoveryError

    driver = BuildDriver(
        settings=settings,
        session_factory=_session_factory(settings) if with_history else None,
    )
    try:
        targets = driver.discover(names=names, overrides=overrides)
    except DiscoveryError as e:
        console.print(f"[red]Discovery failed ({e.code}): {escape(str(e))}[/red]")
        raise typer.Exit(code=EXIT_DISCOVERY_FAILED) from None
    return driver, targets


def _print_summary(outcome: Any) -> None:
    """Human-readable per-target summary."""
    console.print()
    console.print("[bold]Build Results:[/bold]")
    console.print(f"  Total targets: {outcome.total}")
    console.print(f"  [green]Succeeded: {outcome.succeeded}[/green]")
    if outcome.failed > 0:
        console.print(f"  [red]Failed: {outcome.failed}[/red]")
    if outcome.skipped > 0:
        console.print(f"  [yellow]Skipped: {outcome.skipped}[/yellow]")

    console.print()
    for r in outcome.results:
        name = r.target.name
        if r.success:
            console.print(f"  [green]✓ {name}[/green] -> {r.target.output_dir}")
            for f in r.bundle.output_files:
                console.print(f"      {f}")
        elif r.status.value == "skipped":
            console.print(f"  [yellow]- {name} (skipped)[/yellow]")
        else:
            console.print(
                f"  [red]✗ {name}[/red] ({r.failed_stage.value}: {r.error_code})"
            )
            console.print(f"      Manifest: {r.target.manifest_path}")
            if r.error_message:
                console.print(f"      Error: {r.error_message}", markup=False)
            if r.log_path:
                console.print(f"      Log: {r.log_path}")


@app.command()
def config(
    json_output: JsonOption = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True, markup=False)
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Discovery:[/bold]")
        console.print(f"  Root directory:      {settings.root_dir}")
        console.print(f"  Manifest pattern:    {settings.pattern}")
        console.print()
        console.print("[bold]Build:[/bold]")
        console.print(f"  Mode:                {settings.mode}")
        console.print(f"  Compiler:            {settings.compiler}")
        console.print(f"  Bundler:             {settings.bundler}")
        console.print(f"  Max builds:          {settings.max_concurrent_builds}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Compile timeout:     {settings.compile_timeout}")
        console.print(f"  Bundle timeout:      {settings.bundle_timeout}")
        console.print()
        console.print("[bold]Watch / serve:[/bold]")
        console.print(f"  Dev server host:     {settings.dev_server_host}")
        console.print(f"  Watch debounce:      {settings.watch_debounce}")
        console.print()
        console.print("[bold]History:[/bold]")
        console.print(f"  Enabled:             {settings.history}")
        console.print(f"  Database URL:        {settings.db_url}")


@app.command()
def targets(
    names: Annotated[
        list[str] | None,
        typer.Argument(help="Target names to show (default: all)"),
    ] = None,
    root: RootOption = None,
    pattern: PatternOption = None,
    mode: ModeOption = None,
    json_output: JsonOption = False,
) -> None:
    """List discovered build targets."""
    settings = _settings(root=root, pattern=pattern)
    _, found = _discover(settings, names, _overrides(mode=mode), with_history=False)

    if json_output:
        _print_json(
            [
                {
                    "name": t.name,
                    "manifest_path": str(t.manifest_path),
                    "entry_path": str(t.entry_path) if t.entry_path else None,
                    "output_dir": str(t.output_dir),
                    "mode": t.mode.value,
                    "dev_server_port": t.dev_server_port,
                }
                for t in found
            ]
        )
        return

    if not found:
        console.print("[yellow]No targets found[/yellow]")
        return

    table = Table(title=f"Targets ({len(found)})")
    table.add_column("Name", style="bold")
    table.add_column("Mode")
    table.add_column("Entry")
    table.add_column("Output")
    table.add_column("Port")
    for t in found:
        table.add_row(
            t.name,
            t.mode.value,
            str(t.entry_path.relative_to(t.crate_dir)) if t.entry_path else "-",
            str(t.output_dir),
            str(t.dev_server_port) if t.dev_server_port else "-",
        )
    console.print(table)


@app.command()
def build(
    names: Annotated[
        list[str] | None,
        typer.Argument(help="Target names to build (default: all)"),
    ] = None,
    root: RootOption = None,
    pattern: PatternOption = None,
    mode: ModeOption = None,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", min=1, help="Maximum parallel target builds"),
    ] = None,
    fail_fast: Annotated[
        bool,
        typer.Option("--fail-fast", help="Skip remaining targets after a failure"),
    ] = False,
    clean: Annotated[
        bool,
        typer.Option("--clean", help="Replace output directories instead of merging"),
    ] = False,
    public_path: Annotated[
        str | None,
        typer.Option("--public-path", help="Base URL for emitted asset references"),
    ] = None,
    no_history: Annotated[
        bool,
        typer.Option("--no-history", help="Do not record this run"),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Build targets once.

    Exits with code 1 if any target fails and code 2 if targets cannot
    be discovered.
    """
    from wasmex.types import BatchMode

    settings = _settings(
        root=root, pattern=pattern, jobs=jobs, history=False if no_history else None
    )
    overrides = _overrides(mode=mode, clean=clean, public_path=public_path)
    driver, found = _discover(settings, names, overrides)

    if not found:
        if json_output:
            _print_json({"success": True, "total": 0, "results": []})
        else:
            console.print("[yellow]No targets found[/yellow]")
        return

    if not json_output:
        console.print(f"[blue]Building {len(found)} target(s)...[/blue]")

    batch_mode = BatchMode.FAIL_FAST if fail_fast else BatchMode.BEST_EFFORT
    try:
        outcome = driver.build(found, mode=batch_mode)
    except KeyboardInterrupt:
        driver.cancel()
        console.print("[yellow]Interrupted[/yellow]")
        raise typer.Exit(code=EXIT_INTERRUPTED) from None

    if json_output:
        _print_json(outcome.to_dict())
    else:
        _print_summary(outcome)

    if not outcome.success:
        raise typer.Exit(code=EXIT_TARGET_FAILED)


def _start_servers(driver: Any, found: list[Any], port: int | None) -> list[Any]:
    """Start dev servers for targets with a port."""
    from web.server import DevServer

    if port is not None:
        if len(found) != 1:
            console.print("[red]--port requires exactly one target[/red]")
            raise typer.Exit(code=EXIT_DISCOVERY_FAILED)
        found = [found[0]]
    servers = []
    for t in found:
        target_port = port if port is not None else t.dev_server_port
        if target_port is None:
            continue
        server = DevServer(
            t,
            target_port,
            host=driver.settings.dev_server_host,
            status_provider=driver.latest,
            session_factory=driver.session_factory,
        )
        server.start()
        console.print(f"[green]Serving {t.name} at {server.url}[/green]")
        servers.append(server)
    return servers


def _run_until_interrupted(driver: Any, watcher: Any, servers: list[Any]) -> None:
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        console.print("[yellow]Stopping...[/yellow]")
    finally:
        driver.cancel()
        if watcher is not None:
            watcher.stop()
        for server in servers:
            server.stop()


@app.command()
def watch(
    names: Annotated[
        list[str] | None,
        typer.Argument(help="Target names to watch (default: all)"),
    ] = None,
    root: RootOption = None,
    pattern: PatternOption = None,
    mode: ModeOption = None,
    serve: Annotated[
        bool,
        typer.Option("--serve/--no-serve", help="Serve targets with a dev port"),
    ] = True,
    port: Annotated[
        int | None,
        typer.Option("--port", "-p", help="Serve the single selected target here"),
    ] = None,
) -> None:
    """Build, then rebuild targets whose sources change."""
    from wasmex.watch import ProjectWatcher

    settings = _settings(root=root, pattern=pattern)
    driver, found = _discover(settings, names, _overrides(mode=mode))
    if not found:
        console.print("[yellow]No targets found[/yellow]")
        return

    outcome = driver.build(found)
    _print_summary(outcome)

    watch_paths = {
        r.target.name: r.artifact.source_watch_paths
        for r in outcome.results
        if r.artifact is not None
    }
    watcher = ProjectWatcher(
        found,
        driver.rebuild,
        debounce_seconds=settings.watch_debounce,
        watch_paths=watch_paths,
    )
    watcher.start()
    servers = _start_servers(driver, found, port) if serve else []
    console.print("[blue]Watching for changes (Ctrl+C to stop)...[/blue]")
    _run_until_interrupted(driver, watcher, servers)


@app.command()
def serve(
    names: Annotated[
        list[str] | None,
        typer.Argument(help="Target names to serve (default: all)"),
    ] = None,
    root: RootOption = None,
    pattern: PatternOption = None,
    mode: ModeOption = None,
    port: Annotated[
        int | None,
        typer.Option("--port", "-p", help="Serve the single selected target here"),
    ] = None,
    no_build: Annotated[
        bool,
        typer.Option("--no-build", help="Serve existing output without building"),
    ] = False,
) -> None:
    """Build once, then serve targets without watching."""
    settings = _settings(root=root, pattern=pattern)
    driver, found = _discover(settings, names, _overrides(mode=mode))
    if not found:
        console.print("[yellow]No targets found[/yellow]")
        return

    if not no_build:
        _print_summary(driver.build(found))

    servers = _start_servers(driver, found, port)
    if not servers:
        console.print("[yellow]No target has a dev server port; use --port[/yellow]")
        return
    console.print("[blue]Serving (Ctrl+C to stop)...[/blue]")
    _run_until_interrupted(driver, None, servers)


@app.command()
def history(
    target: Annotated[
        str | None,
        typer.Option("--target", "-t", help="Filter by target name"),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option("--status", "-s", help="Filter by status (succeeded/failed)"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum number of records to return"),
    ] = 20,
    json_output: JsonOption = False,
) -> None:
    """List recorded target builds."""
    from wasmex.builds.history import list_records, record_to_dict
    from wasmex.types import TargetStatus

    status_filter: TargetStatus | None = None
    if status:
        try:
            status_filter = TargetStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print("Valid values: succeeded, failed")
            raise typer.Exit(code=1) from None

    settings = get_settings().model_copy(update={"history": True})
    factory = _session_factory(settings)
    if factory is None:
        console.print("[red]Build history database is unavailable[/red]")
        raise typer.Exit(code=1)

    with factory() as session:
        records = list_records(
            session, target_name=target, status=status_filter, limit=limit
        )
        if json_output:
            _print_json([record_to_dict(r) for r in records])
            return
        if not records:
            console.print("[yellow]No build records found[/yellow]")
            return

        console.print(f"[bold]Found {len(records)} build(s):[/bold]")
        console.print()
        for r in records:
            status_color = {"succeeded": "green", "failed": "red"}.get(
                r.status, "white"
            )
            console.print(f"  [{status_color}]#{r.id} {r.target_name}[/{status_color}]")
            console.print(f"    Status: {r.status} ({r.trigger}, {r.mode})")
            if r.started_at:
                console.print(f"    Started: {r.started_at.isoformat()}")
            if r.duration is not None:
                console.print(f"    Duration: {r.duration:.1f}s")
            if r.content_hash:
                console.print(f"    Content hash: {r.content_hash}")
            if r.error_message:
                console.print(f"    Error: {r.error_message}", markup=False)
            console.print()


if __name__ == "__main__":
    app()
