"""Workspace discovery.

Reads the root Cargo.toml, expands ``[workspace] members`` globs and loads
every member manifest into a :class:`~cargo_relay.models.Package`.
"""

from __future__ import annotations

import glob
from pathlib import Path

from pydantic import BaseModel, Field

from .config import PackageConfig, WorkspaceConfig, read_config
from .errors import ConfigError, ManifestError, PackageNotInWorkspace
from .models import Package
from .shell import debug
from .toml import (
    get_dependencies,
    get_package_metadata,
    get_package_name,
    get_package_version,
    get_publish,
    get_workspace_dependencies,
    get_workspace_members,
    get_workspace_metadata,
    get_workspace_package_version,
    has_package,
    has_workspace,
    load_manifest,
)

MANIFEST = "Cargo.toml"


class Workspace(BaseModel):
    """A discovered workspace.

    Attributes:
        root: Workspace root directory.
        manifest_path: The root Cargo.toml.
        packages: Members in discovery order (root package first).
        config: ``[workspace.metadata.workspaces]``.
        version: ``[workspace.package] version``, if declared.
    """

    root: Path
    manifest_path: Path
    packages: list[Package] = Field(default_factory=list)
    config: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    version: str | None = None

    def get(self, name: str) -> Package | None:
        """The package called ``name``, if it is a member."""
        for pkg in self.packages:
            if pkg.name == name:
                return pkg
        return None


def find_root_manifest(manifest_path: Path | None = None, cwd: Path | None = None) -> Path:
    """Locate the workspace root manifest.

    An explicit ``manifest_path`` wins. Otherwise walk up from ``cwd`` and
    take the outermost Cargo.toml declaring ``[workspace]``, falling back to
    the nearest Cargo.toml.
    """
    if manifest_path is not None:
        path = manifest_path.resolve()
        if path.is_dir():
            path = path / MANIFEST
        if not path.is_file():
            raise ManifestError(str(path), "manifest not found")
        return path

    start = (cwd or Path.cwd()).resolve()
    nearest: Path | None = None
    workspace_root: Path | None = None
    for directory in (start, *start.parents):
        candidate = directory / MANIFEST
        if not candidate.is_file():
            continue
        nearest = nearest or candidate
        if has_workspace(load_manifest(candidate)):
            workspace_root = candidate
    found = workspace_root or nearest
    if found is None:
        raise ManifestError(str(start / MANIFEST), "could not find Cargo.toml in this or any parent directory")
    return found


def _relative(path: Path, root: Path) -> str:
    """``path`` relative to ``root`` with forward slashes, ``"."`` for the root itself."""
    rel = path.relative_to(root).as_posix()
    return rel or "."


def _load_package(
    manifest_path: Path,
    root: Path,
    workspace_version: str | None,
    workspace_deps: dict,
) -> Package:
    """Read one member manifest into a Package."""
    doc = load_manifest(manifest_path)
    try:
        version, inherited = get_package_version(doc, workspace_version)
    except ManifestError as exc:
        raise ManifestError(str(manifest_path), str(exc)) from exc
    config = read_config(PackageConfig, get_package_metadata(doc), str(manifest_path))
    return Package(
        name=get_package_name(doc, manifest_path.parent.name),
        version=version,
        manifest_path=manifest_path,
        path=_relative(manifest_path.parent, root),
        dependencies=get_dependencies(doc, workspace_deps),
        publish=get_publish(doc),
        independent=config.independent,
        version_inherited=inherited,
    )


def discover_workspace(manifest_path: Path | None = None) -> Workspace:
    """Scan the workspace and load all member packages.

    Raises:
        ManifestError: If a manifest cannot be read.
        PackageNotInWorkspace: If a member lies outside the root.
        ConfigError: On invalid configuration or duplicate package names.
    """
    root_manifest = find_root_manifest(manifest_path)
    root = root_manifest.parent
    root_doc = load_manifest(root_manifest)

    config = read_config(WorkspaceConfig, get_workspace_metadata(root_doc), str(root_manifest))
    workspace_version = get_workspace_package_version(root_doc)
    workspace_deps = get_workspace_dependencies(root_doc)
    member_globs, exclude = get_workspace_members(root_doc)
    excluded = {(root / e).resolve() for e in exclude}

    member_dirs: list[Path] = []
    if has_package(root_doc):
        member_dirs.append(root)
    for pattern in member_globs:
        for match in sorted(glob.glob(str(root / pattern))):
            d = Path(match).resolve()
            if not (d / MANIFEST).is_file() or d in member_dirs:
                continue
            if any(d == e or e in d.parents for e in excluded):
                continue
            member_dirs.append(d)

    packages: list[Package] = []
    seen: dict[str, Path] = {}
    for d in member_dirs:
        if d != root and root not in d.parents:
            raise PackageNotInWorkspace(d.name, str(root))
        pkg = _load_package(d / MANIFEST, root, workspace_version, workspace_deps)
        if pkg.name in seen:
            raise ConfigError(
                f"package `{pkg.name}` is declared twice: "
                f"{seen[pkg.name]} and {pkg.manifest_path}"
            )
        seen[pkg.name] = pkg.manifest_path
        packages.append(pkg)
        debug("discovered", f"{pkg.name} {pkg.version} ({pkg.path})")

    return Workspace(
        root=root,
        manifest_path=root_manifest,
        packages=packages,
        config=config,
        version=workspace_version,
    )
