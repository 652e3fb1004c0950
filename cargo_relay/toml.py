"""TOML reading utilities for Cargo manifests.

Uses tomlkit to read Cargo.toml files. Manifests are only ever *read*
through this module; rewriting goes through :mod:`cargo_relay.manifest`,
which edits the text line by line so untouched bytes stay identical.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import TOMLKitError

from .errors import ManifestError
from .models import Dependency, DependencyKind

DEPENDENCY_TABLES = {
    "dependencies": DependencyKind.NORMAL,
    "build-dependencies": DependencyKind.BUILD,
    "dev-dependencies": DependencyKind.DEV,
}


def load_manifest(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a Cargo.toml file.

    Raises:
        ManifestError: If the file is missing or is not valid TOML.
    """
    try:
        return tomlkit.parse(path.read_text(encoding="utf-8"))
    except (OSError, TOMLKitError) as exc:
        raise ManifestError(str(path), str(exc)) from exc


def plain(value: Any) -> Any:
    """Convert tomlkit items into plain Python values."""
    unwrap = getattr(value, "unwrap", None)
    return unwrap() if unwrap is not None else value


def _table(doc: Any, *keys: str) -> dict[str, Any]:
    """Walk nested tables, returning {} wherever a key is missing or not a table."""
    node = plain(doc)
    for key in keys:
        if not isinstance(node, dict):
            return {}
        node = node.get(key, {})
    return node if isinstance(node, dict) else {}


def has_package(doc: tomlkit.TOMLDocument) -> bool:
    """Whether the manifest has a [package] table."""
    return "package" in doc


def has_workspace(doc: tomlkit.TOMLDocument) -> bool:
    """Whether the manifest has a [workspace] table."""
    return "workspace" in doc


def get_package_name(doc: tomlkit.TOMLDocument, fallback: str) -> str:
    """Extract [package].name, using ``fallback`` when it is missing."""
    return str(_table(doc, "package").get("name", fallback))


def get_package_version(
    doc: tomlkit.TOMLDocument, workspace_version: str | None
) -> tuple[str, bool]:
    """Extract [package].version.

    Returns:
        Tuple of (version, inherited). A ``version.workspace = true`` entry
        resolves to ``workspace_version``; a missing version is ``0.0.0``
        as Cargo treats it.
    """
    version = _table(doc, "package").get("version", "0.0.0")
    if isinstance(version, dict):
        if version.get("workspace") is True and workspace_version is not None:
            return workspace_version, True
        raise ManifestError(
            get_package_name(doc, "<unknown>"),
            "version is inherited but the workspace declares no [workspace.package] version",
        )
    return str(version), False


def get_publish(doc: tomlkit.TOMLDocument) -> list[str] | None:
    """Extract [package].publish.

    ``false`` becomes an empty list (private); a missing key is ``None``.
    """
    publish = _table(doc, "package").get("publish")
    if publish is None or publish is True:
        return None
    if publish is False:
        return []
    return [str(r) for r in publish]


def get_workspace_members(doc: tomlkit.TOMLDocument) -> tuple[list[str], list[str]]:
    """Extract ([workspace].members, [workspace].exclude) glob patterns."""
    workspace = _table(doc, "workspace")
    return list(workspace.get("members", [])), list(workspace.get("exclude", []))


def get_workspace_package_version(doc: tomlkit.TOMLDocument) -> str | None:
    """Extract [workspace.package].version, the version members can inherit."""
    version = _table(doc, "workspace", "package").get("version")
    return str(version) if version is not None else None


def get_workspace_metadata(doc: tomlkit.TOMLDocument) -> dict[str, Any]:
    """Return [workspace.metadata.workspaces] as plain Python."""
    return _table(doc, "workspace", "metadata", "workspaces")


def get_package_metadata(doc: tomlkit.TOMLDocument) -> dict[str, Any]:
    """Return [package.metadata.workspaces] as plain Python."""
    return _table(doc, "package", "metadata", "workspaces")


def get_workspace_dependencies(doc: tomlkit.TOMLDocument) -> dict[str, Any]:
    """Return [workspace.dependencies] as plain Python."""
    return _table(doc, "workspace", "dependencies")


def _parse_dependency(
    key: str,
    entry: Any,
    kind: DependencyKind,
    target: str | None,
    workspace_deps: dict[str, Any],
) -> Dependency:
    """Build a Dependency from a string or table entry.

    Inherited entries (``workspace = true``) take their requirement and
    ``package`` name from [workspace.dependencies].
    """
    if isinstance(entry, str):
        return Dependency(name=key, req=entry, kind=kind, target=target)

    inherited = entry.get("workspace") is True
    source = entry
    if inherited:
        shared = workspace_deps.get(key, {})
        source = {"version": shared} if isinstance(shared, str) else shared

    package = source.get("package") or entry.get("package")
    return Dependency(
        name=str(package or key),
        rename=key if package else None,
        req=str(source.get("version", "*")),
        kind=kind,
        target=target,
        inherited=inherited,
        path=source.get("path"),
    )


def get_dependencies(
    doc: tomlkit.TOMLDocument, workspace_deps: dict[str, Any] | None = None
) -> list[Dependency]:
    """Collect every dependency declaration from a manifest.

    Gathers ``[dependencies]``, ``[build-dependencies]`` and
    ``[dev-dependencies]``, each also under ``[target.<cfg>]``. Entries
    declared with ``workspace = true`` take their requirement, path and
    alias from ``workspace_deps`` (the root's ``[workspace.dependencies]``).
    """
    workspace_deps = workspace_deps or {}
    sections: list[tuple[str | None, dict[str, Any]]] = [(None, _table(doc))]
    for target, table in _table(doc, "target").items():
        if isinstance(table, dict):
            sections.append((str(target), table))

    deps: list[Dependency] = []
    for target, section in sections:
        for table_name, kind in DEPENDENCY_TABLES.items():
            for key, entry in _table(section, table_name).items():
                deps.append(_parse_dependency(key, entry, kind, target, workspace_deps))
    return deps
