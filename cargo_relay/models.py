"""Data models for cargo-relay.

These Pydantic models represent the core data structures used throughout
the release pipeline. They are derived fresh from the manifests on every
invocation; nothing here is persisted.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_GROUP = "default"
EXCLUDED_GROUP = "excluded"


class DependencyKind(str, Enum):
    """Which dependency table a declaration comes from."""

    NORMAL = "normal"
    BUILD = "build"
    DEV = "dev"


class Dependency(BaseModel):
    """One dependency declaration from a manifest.

    Attributes:
        name: Name of the depended-on package (the ``package`` field when
              the dependency is aliased, otherwise the key).
        rename: The key the dependency is declared under, when aliased.
        req: Version requirement string, ``"*"`` when none is declared.
        kind: Normal, build, or dev dependency.
        target: Platform condition for ``[target.<cfg>.*]`` tables.
        inherited: Declared with ``workspace = true``.
        path: Local path, for path dependencies.
    """

    name: str
    rename: str | None = None
    req: str = "*"
    kind: DependencyKind = DependencyKind.NORMAL
    target: str | None = None
    inherited: bool = False
    path: str | None = None

    @property
    def orders_publish(self) -> bool:
        """Whether this edge constrains publish order."""
        return self.kind is not DependencyKind.DEV


class Package(BaseModel):
    """A workspace member.

    Attributes:
        name: Package name, unique within the workspace.
        version: Current version string from the manifest.
        manifest_path: Absolute path to the package's Cargo.toml.
        path: Directory relative to the workspace root (``"."`` for the
              root package), always with forward slashes.
        dependencies: All declared dependencies, external ones included.
        publish: Registries the package may be published to. ``None``
                 means unrestricted, an empty list means private.
        independent: Versioned on its own rather than with its group.
        version_inherited: Declares ``version.workspace = true``.
    """

    name: str
    version: str
    manifest_path: Path
    path: str
    dependencies: list[Dependency] = Field(default_factory=list)
    publish: list[str] | None = None
    independent: bool = False
    version_inherited: bool = False

    @property
    def private(self) -> bool:
        """Never published (``publish = false``)."""
        return self.publish == []

    @property
    def location(self) -> Path:
        """Directory holding the package manifest."""
        return self.manifest_path.parent


class Group(BaseModel):
    """A named partition of workspace packages.

    ``version`` is the fixed version declared for a custom group, if any.
    """

    name: str
    version: str | None = None
    packages: list[Package] = Field(default_factory=list)

    @property
    def excluded(self) -> bool:
        return self.name == EXCLUDED_GROUP


class WorkspaceGroups(BaseModel):
    """Groups in iteration order: default, custom groups, excluded."""

    groups: list[Group] = Field(default_factory=list)

    def __iter__(self):  # type: ignore[override]
        return iter(self.groups)

    def get(self, name: str) -> Group | None:
        """The group called ``name``, if any."""
        for group in self.groups:
            if group.name == name:
                return group
        return None

    def packages(self, *, include_excluded: bool = False) -> list[Package]:
        """Packages of every group in iteration order, excluded ones on request."""
        return [
            pkg
            for group in self.groups
            if include_excluded or not group.excluded
            for pkg in group.packages
        ]

    def group_of(self, name: str) -> str | None:
        """Name of the group holding package ``name``."""
        for group in self.groups:
            if any(p.name == name for p in group.packages):
                return group.name
        return None


class VersionBump(BaseModel):
    """Records a version change for a package.

    Attributes:
        old: The version before bumping, as read from the manifest.
        new: The version after bumping.
        group: Name of the group the package belongs to.
    """

    old: str
    new: str
    group: str = DEFAULT_GROUP


class VersionPlan(BaseModel):
    """The result of planning: new versions keyed by package name.

    Attributes:
        bumps: Package name → version change, in planning order.
        group_versions: Group name → shared cohort version chosen this run.
        autoversion: Whether unversioned dependency requirements should be
                     rewritten to explicit ones when applying the plan.
    """

    bumps: dict[str, VersionBump] = Field(default_factory=dict)
    group_versions: dict[str, str] = Field(default_factory=dict)
    autoversion: bool = False

    @property
    def workspace_version(self) -> str | None:
        """The shared version of the release.

        The default cohort's version, or the only cohort version chosen.
        """
        if DEFAULT_GROUP in self.group_versions:
            return self.group_versions[DEFAULT_GROUP]
        if len(self.group_versions) == 1:
            return next(iter(self.group_versions.values()))
        return None

    def new_versions(self) -> dict[str, str]:
        """Package name → new version."""
        return {name: bump.new for name, bump in self.bumps.items()}

    def __bool__(self) -> bool:
        return bool(self.bumps)
