"""Workspace and package configuration.

Configuration lives in the root manifest under
``[workspace.metadata.workspaces]`` and in member manifests under
``[package.metadata.workspaces]``::

    [workspace.metadata.workspaces]
    allow_branch = "main"
    exclude = ["examples/*"]

    [[workspace.metadata.workspaces.group]]
    name = "plugins"
    members = ["plugins/*"]
    version = "0.4.0"
"""

from __future__ import annotations

import fnmatch
import re
from typing import Annotated, Any, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import ConfigError
from .models import DEFAULT_GROUP, EXCLUDED_GROUP
from .versions import parse_version

RESERVED_GROUP_NAMES = frozenset({DEFAULT_GROUP, EXCLUDED_GROUP})
_GROUP_NAME_INVALID = re.compile(r"[:\s]")


def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a member glob into a regex.

    Raises:
        ConfigError: Naming the pattern if it is empty or does not compile.
    """
    if not pattern.strip():
        raise ConfigError(f"invalid glob pattern: {pattern!r}")
    try:
        return re.compile(fnmatch.translate(pattern))
    except re.error as exc:
        raise ConfigError(f"invalid glob pattern: {pattern!r} ({exc})") from exc


def glob_matches(pattern: str, path: str) -> bool:
    """Whether the whole of ``path`` matches the glob ``pattern``."""
    return compile_glob(pattern).match(path) is not None


def validate_group_name(name: str) -> str:
    """Reject group names with ``:`` or whitespace, and the reserved names."""
    if not name or _GROUP_NAME_INVALID.search(name):
        raise ValueError(f"group name {name!r} may not contain ':' or whitespace")
    if name in RESERVED_GROUP_NAMES:
        raise ValueError(f"group name {name!r} is reserved")
    return name


def _check_globs(members: list[str]) -> list[str]:
    for pattern in members:
        compile_glob(pattern)
    return members


def _check_version(version: str | None) -> str | None:
    if version is not None:
        parse_version(version)
    return version


Globs = Annotated[list[str], AfterValidator(_check_globs)]
VersionStr = Annotated[str | None, AfterValidator(_check_version)]


class GroupSpec(BaseModel):
    """One ``[[workspace.metadata.workspaces.group]]`` entry."""

    model_config = ConfigDict(extra="ignore")

    name: Annotated[str, AfterValidator(validate_group_name)]
    members: Globs = Field(default_factory=list)
    version: VersionStr = None


class ExcludeSpec(BaseModel):
    """Globs of package paths that are never versioned or published."""

    members: Globs = Field(default_factory=list)


class WorkspaceConfig(BaseModel):
    """``[workspace.metadata.workspaces]``."""

    model_config = ConfigDict(extra="ignore")

    version: VersionStr = None
    exclude: ExcludeSpec = Field(default_factory=ExcludeSpec)
    group: list[GroupSpec] = Field(default_factory=list)
    allow_branch: str | None = None
    no_individual_tags: bool = False

    @field_validator("exclude", mode="before")
    @classmethod
    def _exclude_list(cls, value: Any) -> Any:
        # `exclude = [...]` is shorthand for `exclude = { members = [...] }`.
        if isinstance(value, list):
            return {"members": value}
        return value

    @model_validator(mode="after")
    def _unique_groups(self) -> WorkspaceConfig:
        seen: set[str] = set()
        for spec in self.group:
            if spec.name in seen:
                raise ValueError(f"group {spec.name!r} is declared more than once")
            seen.add(spec.name)
        return self


class PackageConfig(BaseModel):
    """``[package.metadata.workspaces]``."""

    model_config = ConfigDict(extra="ignore")

    independent: bool = False


ConfigT = TypeVar("ConfigT", bound=BaseModel)


def read_config(model: type[ConfigT], table: Any, source: str) -> ConfigT:
    """Validate a plain-Python config table into ``model``.

    Raises:
        ConfigError: Carrying ``source`` (usually the manifest path) on any
            validation failure.
    """
    try:
        return model.model_validate(table or {})
    except ValidationError as exc:
        raise ConfigError(f"{source}: invalid configuration\n{exc}") from exc
