"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from subprocess import CompletedProcess

import pytest

from cargo_relay.models import Dependency, DependencyKind, Package

ROOT_MANIFEST = """\
[workspace]
members = ["core", "cli"]
"""

CORE_MANIFEST = """\
[package]
name = "core"
version = "1.0.0"
"""

CLI_MANIFEST = """\
[package]
name = "cli"
version = "1.0.0" # keep in sync

[dependencies]
core = { path = "../core" }
serde = "1"
"""


@pytest.fixture
def write_tree(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Write ``{relative path: content}`` under tmp_path and return the root."""

    def write(files: dict[str, str]) -> Path:
        for rel, content in files.items():
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return tmp_path

    return write


@pytest.fixture
def core_cli_root(write_tree: Callable[[dict[str, str]], Path]) -> Path:
    """Workspace with `core` and `cli`, where cli depends on core without a version."""
    return write_tree(
        {
            "Cargo.toml": ROOT_MANIFEST,
            "core/Cargo.toml": CORE_MANIFEST,
            "cli/Cargo.toml": CLI_MANIFEST,
        }
    )


def completed(stdout: str = "", stderr: str = "", returncode: int = 0) -> CompletedProcess[str]:
    """A finished process as returned by ``shell.capture``."""
    return CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def make_package(
    name: str,
    version: str = "1.0.0",
    deps: list[str] | None = None,
    *,
    req: str = "*",
    kind: DependencyKind = DependencyKind.NORMAL,
    path: str | None = None,
    **kwargs: object,
) -> Package:
    """Build a Package without touching the filesystem."""
    return Package(
        name=name,
        version=version,
        manifest_path=Path("/ws") / (path or name) / "Cargo.toml",
        path=path or name,
        dependencies=[Dependency(name=d, req=req, kind=kind) for d in deps or []],
        **kwargs,
    )
