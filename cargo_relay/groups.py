"""Group resolution.

Every workspace package belongs to exactly one group:

- ``excluded`` when its path matches an ``exclude.members`` glob,
- the custom group whose ``members`` globs match its path,
- ``default`` otherwise.

Globs are matched against the package directory relative to the workspace
root, with forward slashes.
"""

from __future__ import annotations

from .config import WorkspaceConfig, glob_matches
from .errors import EmptyWorkspace, PackageExistsInMultipleGroups
from .models import DEFAULT_GROUP, EXCLUDED_GROUP, Group, Package, WorkspaceGroups


def resolve(
    packages: list[Package],
    config: WorkspaceConfig,
    include_private: bool,
    *,
    allow_empty: bool = False,
) -> WorkspaceGroups:
    """Assign packages to groups.

    Args:
        packages: Workspace members.
        config: Workspace configuration holding exclusion and group globs.
        include_private: Keep packages that cannot be published.
        allow_empty: Tolerate a workspace where every package is excluded.

    Returns:
        Groups ordered default, custom groups (config order), excluded.
        Packages inside a group are sorted by name.

    Raises:
        PackageExistsInMultipleGroups: If a package matches more than one
            custom group, or inherits the workspace version and matches one.
        EmptyWorkspace: If no package is left outside the excluded group.
        ConfigError: If a glob does not compile.
    """
    default = Group(name=DEFAULT_GROUP)
    custom = {spec.name: Group(name=spec.name, version=spec.version) for spec in config.group}
    excluded = Group(name=EXCLUDED_GROUP)
    non_empty = False

    for pkg in packages:
        if not include_private and pkg.private:
            continue

        if any(glob_matches(p, pkg.path) for p in config.exclude.members):
            excluded.packages.append(pkg)
            continue

        non_empty = True
        matched = [
            spec.name
            for spec in config.group
            if any(glob_matches(p, pkg.path) for p in spec.members)
        ]

        if pkg.version_inherited and matched:
            raise PackageExistsInMultipleGroups(pkg.name, pkg.path, matched, inherits=True)
        if len(matched) > 1:
            raise PackageExistsInMultipleGroups(pkg.name, pkg.path, matched)
        target = custom[matched[0]] if matched else default
        target.packages.append(pkg)

    if not non_empty and not allow_empty:
        raise EmptyWorkspace()

    ordered = [default, *custom.values(), excluded]
    for group in ordered:
        group.packages.sort(key=lambda p: p.name)
    return WorkspaceGroups(groups=ordered)
