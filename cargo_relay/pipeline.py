"""Release pipeline: discover → detect changes → plan → rewrite → commit → publish.

This module orchestrates the cargo-relay commands:

- ``list`` / ``changed`` print workspace packages.
- ``version`` plans new versions, rewrites manifests, refreshes Cargo.lock,
  commits, tags and pushes.
- ``publish`` runs ``version`` (unless publishing from git as-is), then
  publishes in dependency order and tags once every upload succeeded.
- ``rename`` renames packages and every declaration referring to them.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field

from . import cargo
from .changes import ChangeData, ChangeOptions, get_changed_packages
from .config import compile_glob
from .errors import ConfigError, StalePlan
from .git import GitOptions
from .graph import dag
from .groups import resolve
from .manifest import (
    WORKSPACE_VERSION_KEY,
    change_versions,
    read_manifest,
    rename_packages,
    write_manifest,
)
from .models import DEFAULT_GROUP, Package, VersionPlan, WorkspaceGroups
from .planner import VersionOptions, VersionPlanner
from .prompt import Prompter
from .publisher import PublishCoordinator, PublishOptions
from .shell import info, step
from .toml import get_package_version, get_workspace_package_version, load_manifest
from .workspace import Workspace

Listing = list[tuple[str, Package]]


class ListOptions(BaseModel):
    """Output options shared by ``list`` and ``changed``."""

    long: bool = False
    all: bool = False
    json_output: bool = False
    groups: list[str] = Field(default_factory=list)


class VersionRun(BaseModel):
    """What ``version`` did, for ``publish`` to continue from."""

    plan: VersionPlan
    branch: str | None = None


# Listing


def _group_header(name: str) -> str | None:
    if name == DEFAULT_GROUP:
        return None
    return f"[{name}]"


def listing(groups: WorkspaceGroups, group_filter: list[str] | None = None) -> Listing:
    """Flatten groups into (group name, package) pairs, optionally for some groups only."""
    return [
        (group.name, pkg)
        for group in groups
        if not group_filter or group.name in group_filter
        for pkg in group.packages
    ]


def format_listing(entries: Listing, options: ListOptions) -> str:
    """Render packages as text lines or a JSON array."""
    if options.json_output:
        return json.dumps(
            [
                {
                    "name": pkg.name,
                    "version": pkg.version,
                    "location": str(pkg.location),
                    "private": pkg.private,
                    "group": group,
                }
                for group, pkg in entries
            ],
            indent=2,
        )
    if not entries:
        return ""

    name_w = max(len(pkg.name) for _, pkg in entries)
    version_w = max(len(pkg.version) + 1 for _, pkg in entries)
    path_w = max(len(pkg.path) for _, pkg in entries)

    lines: list[str] = []
    last_group: str | None = None
    for group, pkg in entries:
        if group != last_group:
            header = _group_header(group)
            if header:
                lines.append(header)
            last_group = group

        line = pkg.name.ljust(name_w) if options.long or options.all else pkg.name
        if options.long:
            line += f" {('v' + pkg.version).ljust(version_w)} {pkg.path.ljust(path_w)}"
        if options.all and pkg.private:
            line += " (PRIVATE)"
        lines.append(line.rstrip())
    return "\n".join(lines)


def run_list(workspace: Workspace, options: ListOptions) -> str:
    """The ``list`` command's output."""
    groups = resolve(workspace.packages, workspace.config, options.all, allow_empty=True)
    return format_listing(listing(groups, options.groups), options)


def run_changed(
    workspace: Workspace,
    options: ListOptions,
    change_options: ChangeOptions,
    since: str | None = None,
) -> str:
    """The ``changed`` command's output.

    Without ``since``, changes are counted from the last release tag, and
    nothing is listed when HEAD is that release.
    """
    if since is None:
        change_data = ChangeData.from_git(workspace.root, change_options)
        if change_data.count == "0":
            info("changed", "current HEAD is already released, skipping change detection")
            return ""
        since = change_data.since

    groups = resolve(workspace.packages, workspace.config, options.all, allow_empty=True)
    changed, _ = get_changed_packages(
        workspace.root, groups, since, change_options, options.groups
    )
    names = {p.name for p in changed}
    entries = [(group, pkg) for group, pkg in listing(groups) if pkg.name in names]
    return format_listing(entries, options)


# Versioning


def check_plan(workspace: Workspace, plan: VersionPlan) -> None:
    """Verify every planned package still has the version it was planned from.

    Raises:
        StalePlan: If a manifest changed since discovery.
    """
    workspace_version = get_workspace_package_version(load_manifest(workspace.manifest_path))
    for pkg in workspace.packages:
        bump = plan.bumps.get(pkg.name)
        if bump is None:
            continue
        found, _ = get_package_version(load_manifest(pkg.manifest_path), workspace_version)
        if found != bump.old:
            raise StalePlan(pkg.name, bump.old, found)


def apply_plan(workspace: Workspace, plan: VersionPlan, *, exact: bool = False) -> list[Path]:
    """Rewrite every manifest affected by ``plan``.

    Returns:
        Paths of the manifests that changed.
    """
    check_plan(workspace, plan)
    versions = plan.new_versions()

    targets: dict[Path, str] = {}
    for pkg in workspace.packages:
        if pkg.name in versions or any(d.name in versions for d in pkg.dependencies):
            targets[pkg.manifest_path] = pkg.name

    root_versions = dict(versions)
    inherits = any(p.version_inherited and p.name in versions for p in workspace.packages)
    shared = plan.group_versions.get(DEFAULT_GROUP)
    if inherits and shared is not None:
        root_versions[WORKSPACE_VERSION_KEY] = shared
    # [workspace.package] and [workspace.dependencies] live in the root manifest.
    targets.setdefault(workspace.manifest_path, "")

    written: list[Path] = []
    for path, name in targets.items():
        text = read_manifest(path)
        new_text = change_versions(
            text,
            name,
            root_versions if path == workspace.manifest_path else versions,
            exact=exact,
            dev_deps=True,
            autoversion=plan.autoversion,
        )
        if new_text != text:
            write_manifest(path, new_text)
            written.append(path)
            info("updated", str(path.relative_to(workspace.root)))
    return written


def run_version(
    workspace: Workspace,
    options: VersionOptions,
    change_options: ChangeOptions,
    git_options: GitOptions,
    prompter: Prompter,
    *,
    defer_tags: bool = False,
) -> VersionRun | None:
    """Plan and apply new versions.

    Args:
        defer_tags: Only commit; leave tagging and pushing to the caller.

    Returns:
        The applied plan, or ``None`` when there was nothing to version.
    """
    root = workspace.root
    config = workspace.config
    branch = git_options.preflight(root, config)

    step("Detecting changes")
    change_data = ChangeData.from_git(root, change_options)
    if change_options.force is None and change_data.released:
        info("version", "current HEAD is already released, skipping versioning")
        return None

    groups = resolve(workspace.packages, config, options.include_private)
    changed, unchanged = get_changed_packages(root, groups, change_data.since, change_options)
    if not changed:
        info("version", "no changes detected, skipping versioning")
        return None

    step("Planning versions")
    planner = VersionPlanner(groups, options, prompter, config.version)
    plan = planner.plan(changed, unchanged)
    if not plan:
        info("version", "no version changes planned")
        return None

    step("Updating manifests")
    apply_plan(workspace, plan, exact=options.exact)
    for name in plan.bumps:
        cargo.update(root, name)

    git_options.commit(root, plan)
    if not defer_tags:
        packages = {p.name: p for p in workspace.packages}
        git_options.tag_release(root, plan, packages, config)
        git_options.push(root, branch)
    return VersionRun(plan=plan, branch=branch)


# Publishing


def run_publish(
    workspace: Workspace,
    publish_options: PublishOptions,
    options: VersionOptions,
    change_options: ChangeOptions,
    git_options: GitOptions,
    prompter: Prompter,
    coordinator: PublishCoordinator | None = None,
) -> list[str]:
    """Version (unless ``from_git``) and publish.

    Returns:
        Names of the packages published.
    """
    coordinator = coordinator or PublishCoordinator(workspace.root, publish_options)
    plan: VersionPlan | None = None
    branch: str | None = None

    if publish_options.from_git:
        groups = resolve(workspace.packages, workspace.config, True)
        candidates = [(pkg, pkg.version) for pkg in groups.packages()]
        git_options = git_options.model_copy(update={"tag_existing": True})
        branch = git_options.preflight(workspace.root, workspace.config)
    else:
        run = run_version(
            workspace, options, change_options, git_options, prompter, defer_tags=True
        )
        if run is None:
            return []
        plan, branch = run.plan, run.branch
        by_name = {p.name: p for p in workspace.packages}
        candidates = [(by_name[name], bump.new) for name, bump in plan.bumps.items()]

    index, order = dag(candidates)
    return coordinator.publish(
        order,
        index,
        plan,
        git=git_options,
        config=workspace.config,
        branch=branch,
    )


# Renaming


def run_rename(
    workspace: Workspace,
    to: str,
    *,
    include_private: bool = False,
    ignore: str | None = None,
    groups: list[str] | None = None,
) -> dict[str, str]:
    """Rename packages to ``to`` with ``%n`` standing for the old name.

    Returns:
        Old name → new name.
    """
    if "%n" not in to:
        raise ConfigError(f"new name {to!r} must contain %n")

    resolved = resolve(workspace.packages, workspace.config, include_private, allow_empty=True)
    ignore_re = compile_glob(ignore) if ignore else None

    renames: dict[str, str] = {}
    for group, pkg in listing(resolved):
        if ignore_re is not None and ignore_re.match(pkg.name):
            continue
        if groups and group not in groups:
            continue
        renames[pkg.name] = to.replace("%n", pkg.name)

    for pkg in workspace.packages:
        if pkg.name in renames or any(d.name in renames for d in pkg.dependencies):
            text = read_manifest(pkg.manifest_path)
            new_text = rename_packages(text, pkg.name, renames)
            if new_text != text:
                write_manifest(pkg.manifest_path, new_text)

    if workspace.manifest_path not in {p.manifest_path for p in workspace.packages}:
        text = read_manifest(workspace.manifest_path)
        new_text = rename_packages(text, "", renames)
        if new_text != text:
            write_manifest(workspace.manifest_path, new_text)

    for old, new in renames.items():
        info("renamed", f"{old} -> {new}")
    return renames

