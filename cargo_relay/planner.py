"""Version planning.

Turns the set of changed packages into new versions:

1. Each group's changed packages are split into the cohort (sharing one
   version) and independent packages (versioned on their own).
2. A cohort gets one new version, asked once per group unless the group
   declares a fixed version. Independent packages are asked one by one.
3. Unchanged packages whose requirement on a bumped package no longer
   matches, or is unconstrained (``*``), are pulled in and planned too,
   until nothing new is pulled in. Dev-dependencies count here, though
   they do not constrain publish order.
4. Unconstrained requirements on bumped packages are surfaced so the user
   can choose to have explicit requirements written.
5. The plan is shown and must be confirmed.
"""

from __future__ import annotations

import click
import semver
from pydantic import BaseModel, model_validator

from .errors import ConfigError, ManifestError, ReleaseAborted
from .models import DEFAULT_GROUP, Package, VersionBump, VersionPlan, WorkspaceGroups
from .prompt import Prompter
from .shell import info, warn
from .versions import (
    Bump,
    VersionReq,
    bump_version,
    custom_pre,
    inc_preid,
    is_trivial_version,
    is_unversioned_req,
    parse_version,
    version_items,
)

UnversionedDeps = dict[str, list[tuple[str, str, str]]]


class VersionOptions(BaseModel):
    """Options steering the planner.

    Attributes:
        bump: Apply this bump everywhere instead of prompting.
        custom: Version to use with ``Bump.CUSTOM``.
        pre_id: Prerelease identifier for pre-bumps.
        include_private: Also version packages that are never published.
        exact: Pin internal dependency requirements with ``=``.
        yes: Skip confirmation prompts.
        auto_version: Write explicit requirements for unconstrained ones
                      without asking.
    """

    bump: Bump | None = None
    custom: str | None = None
    pre_id: str | None = None
    include_private: bool = False
    exact: bool = False
    yes: bool = False
    auto_version: bool = False

    @model_validator(mode="after")
    def _custom_needs_version(self) -> VersionOptions:
        if self.bump is Bump.CUSTOM and not self.custom:
            raise ValueError("a custom bump needs a version")
        if self.custom is not None:
            parse_version(self.custom)
        return self


class VersionPlanner:
    """Plans new versions for a set of changed packages.

    Args:
        groups: Resolved workspace groups.
        options: Bump mode and confirmation settings.
        prompter: Where questions go.
        default_version: Fixed version of the default group, if configured.
    """

    def __init__(
        self,
        groups: WorkspaceGroups,
        options: VersionOptions,
        prompter: Prompter,
        default_version: str | None = None,
    ) -> None:
        self.groups = groups
        self.options = options
        self.prompter = prompter
        self.default_version = default_version
        self._packages = {p.name: p for p in groups.packages(include_excluded=True)}
        self._plan = VersionPlan()

    def plan(self, changed: list[Package], unchanged: list[Package]) -> VersionPlan:
        """Plan new versions for ``changed`` and everything they drag along.

        Raises:
            ReleaseAborted: If the user aborts or declines the plan.
        """
        while changed:
            self._plan_round(changed)
            changed = [p for p in unchanged if self._needs_bump(p)]
            pulled = {p.name for p in changed}
            unchanged = [p for p in unchanged if p.name not in pulled]

        if not self._plan:
            return self._plan

        self._plan.autoversion = self.alert_unversioned(self.unversioned_deps())
        self.confirm()
        return self._plan

    def _plan_round(self, changed: list[Package]) -> None:
        """Plan every package in ``changed``, cohort by cohort."""
        names = {p.name for p in changed}
        for group in self.groups:
            if group.excluded:
                continue
            members = [p for p in group.packages if p.name in names]
            cohort = [p for p in members if p.version_inherited or not p.independent]
            independent = [p for p in members if p not in cohort]

            if cohort:
                self._plan_cohort(group.name, group.version, cohort)
            for pkg in independent:
                current = parse_version(pkg.version)
                new = self.ask_version(current, pkg.name)
                self._add(pkg, new, group.name)

    def _plan_cohort(self, group: str, fixed: str | None, cohort: list[Package]) -> None:
        """Give every cohort member the group's version, choosing it on first use."""
        new = self._plan.group_versions.get(group)
        if new is None:
            if group == DEFAULT_GROUP:
                fixed = fixed or self.default_version
            if fixed is not None:
                new = fixed
            else:
                current = max(parse_version(p.version) for p in cohort)
                label = "current common version"
                if group != DEFAULT_GROUP:
                    label = f"current common version of group {group}"
                info(label, str(current))
                new = str(self.ask_version(current, None))
            self._plan.group_versions[group] = new

        for pkg in cohort:
            self._add(pkg, parse_version(new), group)

    def _add(self, pkg: Package, new: semver.Version, group: str) -> None:
        """Record ``pkg`` going to ``new`` unless it is already there."""
        if pkg.version == str(new):
            return
        if parse_version(pkg.version) > new:
            warn(f"{pkg.name} goes down from {pkg.version} to {new}")
        self._plan.bumps[pkg.name] = VersionBump(old=pkg.version, new=str(new), group=group)

    def _needs_bump(self, pkg: Package) -> bool:
        """Whether a requirement of ``pkg`` no longer accepts a planned version."""
        for dep in pkg.dependencies:
            bump = self._plan.bumps.get(dep.name)
            if bump is None:
                continue
            if is_unversioned_req(dep.req):
                return True
            try:
                if not VersionReq.parse(dep.req).matches(parse_version(bump.new)):
                    return True
            except ValueError as exc:
                raise ManifestError(str(pkg.manifest_path), str(exc)) from exc
        return False

    def ask_version(self, current: semver.Version, pkg_name: str | None) -> semver.Version:
        """Choose the next version, from options or by prompting."""
        bump = self.options.bump
        if bump is not None and bump not in (Bump.PRERELEASE, Bump.CUSTOM):
            return bump_version(current, bump, self.options.pre_id)

        items = version_items(current, self.options.pre_id)
        if bump is not None:
            selected = bump.selected
        else:
            labels = [label for label, _ in items] + ["Custom Prerelease", "Custom Version"]
            target = f"for {pkg_name} " if pkg_name else ""
            selected = self.prompter.select(
                f"Select a new version {target}(currently {current})", labels
            )

        if selected == Bump.PRERELEASE.selected:
            default_id, yielded = custom_pre(current)
            preid = self.options.pre_id or default_id
            if bump is None and not self.options.pre_id:
                preid = self.prompter.text(
                    f"Enter a prerelease identifier (default: '{default_id}', yielding {yielded})",
                    default=default_id,
                )
            return inc_preid(current, preid)

        if selected == Bump.CUSTOM.selected:
            text = self.options.custom or self.prompter.text("Enter a custom version")
            try:
                return parse_version(text)
            except ValueError as exc:
                raise ConfigError(f"invalid custom version {text!r}") from exc

        return items[selected][1]

    def unversioned_deps(self) -> UnversionedDeps:
        """Planned packages depending on planned packages through ``*``.

        Returns:
            Dependent name → list of (dependency, requirement, new version).
        """
        found: UnversionedDeps = {}
        for name in self._plan.bumps:
            pkg = self._packages.get(name)
            if pkg is None:
                continue
            for dep in pkg.dependencies:
                bump = self._plan.bumps.get(dep.name)
                if bump is None or not is_unversioned_req(dep.req):
                    continue
                if is_trivial_version(parse_version(bump.new)):
                    continue
                found.setdefault(name, []).append((dep.name, dep.req, bump.new))
        return found

    def alert_unversioned(self, unversioned: UnversionedDeps) -> bool:
        """Ask whether to write explicit requirements. Returns the choice."""
        if not unversioned:
            return False
        if self.options.auto_version or self.options.yes:
            return self.options.auto_version

        while True:
            choice = self.prompter.select(
                f"You have {len(unversioned)} packages with unversioned dependencies",
                ["Review Dependencies", "Auto-version", "Skip", "Abort"],
            )
            if choice == 1:
                if self.prompter.confirm(
                    "Are you sure you want this tool to auto-inject these versions?"
                ):
                    return True
            elif choice == 2:
                return False
            elif choice == 3:
                raise ReleaseAborted("aborted on unversioned dependencies")
            else:
                for name, deps in unversioned.items():
                    click.echo(f" │ {name}", err=True)
                    for dep, req, new in deps:
                        click.echo(f" │ ↳ {dep}: {req} => {new}", err=True)

    def confirm(self) -> None:
        """Print the planned changes and ask for confirmation.

        Raises:
            ReleaseAborted: If the user declines.
        """
        click.echo("\nChanges:", err=True)
        for name, bump in self._plan.bumps.items():
            click.echo(f" - {name}: {bump.old} => {bump.new}", err=True)
        click.echo(err=True)

        if self.options.yes:
            return
        if not self.prompter.confirm("Are you sure you want to create these versions?"):
            raise ReleaseAborted("versions not confirmed")
