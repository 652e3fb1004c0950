"""Change detection.

Finds the last release tag reachable from HEAD and the packages whose
files changed since then.
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel

from .config import compile_glob
from .git import git
from .models import Package, WorkspaceGroups
from .shell import info

_SHA = re.compile(r"^([0-9a-f]{7,40})(-dirty)?$")
_TAG = re.compile(r"^((?:.*@)?v?(.*))-(\d+)-g([0-9a-f]{7,40})(-dirty)?$")


class ChangeOptions(BaseModel):
    """Options for change detection.

    Attributes:
        include_merged_tags: Also consider tags on merged branches.
        force: Glob of package names always treated as changed.
        ignore_changes: Glob of files whose changes are ignored.
    """

    include_merged_tags: bool = False
    force: str | None = None
    ignore_changes: str | None = None


class ChangeData(BaseModel):
    """What ``git describe`` says about HEAD.

    Attributes:
        since: The last release tag, if any.
        version: Version part of that tag.
        sha: Abbreviated commit hash of HEAD.
        count: Commits since the tag (or since the root without one).
        dirty: The working tree has uncommitted changes.
    """

    since: str | None = None
    version: str | None = None
    sha: str = ""
    count: str = "0"
    dirty: bool = False

    @property
    def released(self) -> bool:
        """HEAD is exactly the last release and the tree is clean."""
        return self.count == "0" and not self.dirty

    @classmethod
    def from_git(cls, root: Path, options: ChangeOptions) -> ChangeData:
        """Describe HEAD relative to the last tag.

        Without any tag, ``count`` is the number of commits reachable from HEAD.
        """
        args = ["describe", "--always", "--long", "--dirty", "--tags"]
        if not options.include_merged_tags:
            args.append("--first-parent")
        description = git(root, *args).stdout

        m = _SHA.match(description)
        if m:
            sha = m.group(1)
            count = git(root, "rev-list", "--count", sha).stdout
            return cls(sha=sha, dirty=m.group(2) is not None, count=count)

        m = _TAG.match(description)
        if m:
            return cls(
                since=m.group(1),
                version=m.group(2),
                count=m.group(3),
                sha=m.group(4),
                dirty=m.group(5) is not None,
            )
        return cls()


def _touches(path: str, changed_file: str) -> bool:
    """Whether ``changed_file`` lies inside the package directory ``path``."""
    if path == ".":
        return True
    return changed_file == path or changed_file.startswith(path.rstrip("/") + "/")


def get_changed_packages(
    root: Path,
    groups: WorkspaceGroups,
    since: str | None,
    options: ChangeOptions,
    group_filter: list[str] | None = None,
) -> tuple[list[Package], list[Package]]:
    """Partition packages into (changed, unchanged).

    Without ``since`` every package counts as changed. Packages of the
    excluded group are never returned.

    Args:
        root: Workspace root, where git runs.
        groups: Resolved workspace groups.
        since: Ref to diff against, usually the last release tag.
        options: Force and ignore globs.
        group_filter: Only packages of these groups can be changed, unless
            forced. Empty or ``None`` means all groups.
    """
    candidates = [
        (group.name, pkg) for group in groups if not group.excluded for pkg in group.packages
    ]
    if since is None:
        return [pkg for _, pkg in candidates], []

    info("looking for changes since", since)
    output = git(root, "diff", "--name-only", "--relative", since).stdout
    changed_files = [f for f in output.splitlines() if f]

    force = compile_glob(options.force) if options.force else None
    ignore = compile_glob(options.ignore_changes) if options.ignore_changes else None
    if ignore is not None:
        changed_files = [f for f in changed_files if not ignore.match(f)]

    changed: list[Package] = []
    unchanged: list[Package] = []
    for group_name, pkg in candidates:
        if force is not None and force.match(pkg.name):
            changed.append(pkg)
        elif group_filter and group_name not in group_filter:
            unchanged.append(pkg)
        elif any(_touches(pkg.path, f) for f in changed_files):
            changed.append(pkg)
        else:
            unchanged.append(pkg)
    return changed, unchanged
