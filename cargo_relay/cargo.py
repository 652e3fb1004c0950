"""Cargo subcommands used during a release."""

from __future__ import annotations

import re
from pathlib import Path

from .errors import BadConfigGetOutput, UpdateFailed
from .shell import capture

_CONFIG_VALUE = re.compile(r'^[^=]+=\s*"(.*)"\s*$')


def cargo(root: Path, *args: str, env: dict[str, str] | None = None) -> tuple[str, str]:
    """Run cargo in ``root`` and return (stdout, stderr).

    Cargo reports most failures on stderr, so callers inspect the output
    rather than the exit status.
    """
    result = capture("cargo", *args, cwd=root, env=env)
    return result.stdout, result.stderr


def config_get(root: Path, key: str) -> str:
    """Read a value from cargo's configuration, e.g. ``registries.foo.index``.

    Raises:
        BadConfigGetOutput: If cargo prints anything but ``key = "value"``.
    """
    stdout, stderr = cargo(
        root,
        "-Z",
        "unstable-options",
        "config",
        "get",
        key,
        env={"RUSTC_BOOTSTRAP": "1"},
    )
    m = _CONFIG_VALUE.match(stdout.splitlines()[0] if stdout else "")
    if m is None:
        raise BadConfigGetOutput(stdout or stderr)
    return m.group(1)


def update(root: Path, package: str) -> None:
    """Refresh Cargo.lock for ``package`` after its version changed."""
    _, stderr = cargo(root, "update", "-p", package)
    if "error:" in stderr:
        raise UpdateFailed(package, stderr)


def publish(
    root: Path,
    manifest_path: Path,
    *,
    registry: str | None = None,
    token: str | None = None,
    no_verify: bool = False,
    allow_dirty: bool = False,
) -> tuple[str, str]:
    """Run ``cargo publish`` for one manifest and return its output."""
    args = ["publish"]
    if no_verify:
        args.append("--no-verify")
    if allow_dirty:
        args.append("--allow-dirty")
    if registry:
        args.extend(["--registry", registry])
    if token:
        args.extend(["--token", token])
    args.extend(["--manifest-path", str(manifest_path)])
    return cargo(root, *args)
