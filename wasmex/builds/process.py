"""Subprocess execution for external build tools.

This module handles:
- Running compiler and bundler commands with output captured to log files
- Enforcing timeouts
- Tracking in-flight processes so an interrupt can terminate them
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

# Lines of log output kept for error messages
LOG_TAIL_LINES = 40


class ProcessCancelledError(Exception):
    """Raised when a command is started after cancellation was requested."""


@dataclass
class ProcessResult:
    """Result of a logged command execution.

    Attributes:
        command: The command that was executed.
        exit_code: Process exit code.
        log_path: Path to the log file.
        started_at: Start time.
        finished_at: Finish time.
    """

    command: str
    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime

    @property
    def success(self) -> bool:
        """Whether the process exited with status 0."""
        return self.exit_code == 0

    def output_tail(self, lines: int = LOG_TAIL_LINES) -> str:
        """Return the last lines of process output from the log."""
        return read_log_tail(self.log_path, lines)


class ProcessRegistry:
    """Set of running subprocesses that can be terminated together."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._processes: set[subprocess.Popen[bytes]] = set()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        """Whether terminate_all() has been called."""
        return self._cancelled.is_set()

    def register(self, process: subprocess.Popen[bytes]) -> None:
        with self._lock:
            self._processes.add(process)

    def unregister(self, process: subprocess.Popen[bytes]) -> None:
        with self._lock:
            self._processes.discard(process)

    def running(self) -> int:
        """Number of registered processes."""
        with self._lock:
            return len(self._processes)

    def terminate_all(self, grace: float = 5.0) -> None:
        """Terminate every running process and refuse new ones.

        Args:
            grace: Seconds to wait after SIGTERM before killing.
        """
        self._cancelled.set()
        with self._lock:
            processes = list(self._processes)
        for process in processes:
            if process.poll() is None:
                logger.info("Terminating process %d", process.pid)
                process.terminate()
        for process in processes:
            try:
                process.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning("Killing process %d", process.pid)
                process.kill()

    def reset(self) -> None:
        """Allow new processes after a cancellation."""
        self._cancelled.clear()


_default_registry = ProcessRegistry()


def get_process_registry() -> ProcessRegistry:
    """Return the process-wide registry."""
    return _default_registry


def read_log_tail(log_path: Path, lines: int = LOG_TAIL_LINES) -> str:
    """Return the last lines of a log file (empty if unreadable)."""
    try:
        with log_path.open(encoding="utf-8", errors="replace") as f:
            return "".join(deque(f, maxlen=lines))
    except OSError:
        return ""


def tool_env(root_dir: Path | None) -> dict[str, str] | None:
    """Environment overrides that put the project's node_modules/.bin on PATH.

    Returns:
        PATH override, or None when root_dir has no node_modules/.bin.
    """
    if root_dir is None:
        return None
    bin_dir = root_dir / "node_modules" / ".bin"
    if not bin_dir.is_dir():
        return None
    path = os.environ.get("PATH")
    return {"PATH": os.pathsep.join([str(bin_dir), path]) if path else str(bin_dir)}


def run_logged(
    cmd: list[str],
    cwd: Path,
    log_path: Path,
    timeout: float | None = None,
    env_override: dict[str, str] | None = None,
    registry: ProcessRegistry | None = None,
) -> ProcessResult:
    """Run a command with stdout/stderr captured to a log file.

    Args:
        cmd: Command as a list of strings.
        cwd: Working directory.
        log_path: Log file (overwritten).
        timeout: Timeout in seconds (None = no timeout).
        env_override: Optional environment variable overrides.
        registry: Registry the process is tracked in.

    Returns:
        ProcessResult with execution details.

    Raises:
        ProcessCancelledError: If the registry was cancelled.
        subprocess.TimeoutExpired: If the command timed out (it is killed).
        OSError: If the command could not be started.
    """
    if registry is None:
        registry = get_process_registry()
    if registry.cancelled:
        raise ProcessCancelledError(f"Cancelled before start: {cmd[0]}")

    log_path.parent.mkdir(parents=True, exist_ok=True)
    cmd_str = shlex.join(cmd)
    logger.debug("Executing: %s (cwd=%s)", cmd_str, cwd)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    started_at = datetime.now(timezone.utc)
    with log_path.open("w") as log_file:
        log_file.write(f"# Command: {cmd_str}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n")
        log_file.write(f"# CWD: {cwd}\n")
        log_file.write("# " + "=" * 70 + "\n\n")
        log_file.flush()

        process = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=log_file,
            stderr=subprocess.STDOUT,
            env=env,
        )
        registry.register(process)
        try:
            exit_code = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
            raise
        finally:
            registry.unregister(process)

    finished_at = datetime.now(timezone.utc)
    with log_path.open("a") as log_file:
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n")

    return ProcessResult(
        command=cmd_str,
        exit_code=exit_code,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
    )


__all__ = [
    "LOG_TAIL_LINES",
    "ProcessCancelledError",
    "ProcessRegistry",
    "ProcessResult",
    "get_process_registry",
    "read_log_tail",
    "run_logged",
    "tool_env",
]
