"""Subprocess and console output utilities.

Provides thin wrappers around subprocess calls for running git and cargo,
plus the output helpers used to report progress through a release.
"""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

_debug = bool(os.environ.get("CARGO_RELAY_DEBUG"))


def set_debug(enabled: bool) -> None:
    """Toggle debug output for subprocess tracing."""
    global _debug
    _debug = enabled


def capture(
    *args: str,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a command and capture its output.

    Never raises on a non-zero exit; callers inspect ``returncode`` and
    the captured streams, which are returned stripped.

    Args:
        *args: Command and arguments (e.g., "git", "status").
        cwd: Working directory for the command.
        env: Extra environment variables layered over the current ones.

    Returns:
        CompletedProcess with stripped stdout and stderr.
    """
    debug(args[0], " ".join(args[1:]))
    result = subprocess.run(
        args,
        cwd=cwd,
        env={**os.environ, **env} if env else None,
        capture_output=True,
        text=True,
    )
    result.stdout = result.stdout.strip()
    result.stderr = result.stderr.strip()
    if result.stderr:
        debug(f"{args[0]} stderr", result.stderr)
    if result.stdout:
        debug(f"{args[0]} stdout", result.stdout)
    return result


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate major phases of a release in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}", file=sys.stderr)


def info(label: str, msg: str) -> None:
    """Print a labelled status line, e.g. ``published: core v1.0.1``."""
    print(f"{label}: {msg}", file=sys.stderr)


def warn(msg: str) -> None:
    """Print a warning to stderr."""
    print(f"warning: {msg}", file=sys.stderr)


def debug(label: str, msg: str) -> None:
    """Print a debug line when debug output is enabled."""
    if _debug:
        print(f"  [{label}] {msg}", file=sys.stderr)
