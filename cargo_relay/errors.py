"""Exceptions raised by the release engine.

Every failure is a subclass of :class:`ReleaseError` so the CLI can render
it uniformly. Messages carry the package name, file path, or raw command
output needed to act on them without re-running in verbose mode.
"""

from __future__ import annotations

from collections.abc import Sequence


class ReleaseError(Exception):
    """Base class for all cargo-relay errors."""


class ReleaseAborted(ReleaseError):
    """The user declined to continue. Not a failure: exit cleanly."""


# Configuration


class ConfigError(ReleaseError):
    """Malformed workspace or package configuration."""


class PackageExistsInMultipleGroups(ConfigError):
    def __init__(
        self, name: str, rel_path: str, groups: Sequence[str], inherits: bool = False
    ) -> None:
        self.name = name
        self.rel_path = rel_path
        self.groups = list(groups)
        self.inherits = inherits
        listed = ", ".join(f"`{g}`" for g in self.groups)
        if inherits:
            msg = (
                f"package `{name}` at `{rel_path}` inherits its version from the "
                f"workspace and cannot also be a member of group {listed}"
            )
        else:
            msg = (
                f"package `{name}` at `{rel_path}` matches multiple groups: {listed}"
            )
        super().__init__(msg)


class EmptyWorkspace(ConfigError):
    def __init__(self) -> None:
        super().__init__("no packages left in the workspace after exclusions")


class PackageNotInWorkspace(ConfigError):
    def __init__(self, name: str, workspace_root: str) -> None:
        self.name = name
        super().__init__(
            f"package `{name}` is not inside the workspace root `{workspace_root}`"
        )


class ManifestError(ReleaseError):
    """A manifest could not be read, understood, or written."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"{path}: {reason}")


class DependencyCycle(ReleaseError):
    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"dependency cycle detected: {' -> '.join(self.cycle)}")


class StalePlan(ReleaseError):
    def __init__(self, name: str, planned: str, found: str) -> None:
        super().__init__(
            f"package `{name}` was planned from version {planned} but its "
            f"manifest now says {found}"
        )


# Workspace state (git pre-flight)


class WorkspaceStateError(ReleaseError):
    """The repository is not in a state that allows releasing."""


class NotGitRepository(WorkspaceStateError):
    def __init__(self) -> None:
        super().__init__("not a git repository")


class NoCommits(WorkspaceStateError):
    def __init__(self) -> None:
        super().__init__("no commits in this repository")


class DetachedHead(WorkspaceStateError):
    def __init__(self) -> None:
        super().__init__("not on a git branch (HEAD is detached)")


class BranchNotAllowed(WorkspaceStateError):
    def __init__(self, branch: str, pattern: str) -> None:
        super().__init__(
            f"branch `{branch}` is not allowed to release, allowed pattern is `{pattern}`"
        )


class NoRemote(WorkspaceStateError):
    def __init__(self, remote: str, branch: str) -> None:
        super().__init__(f"remote branch `{remote}/{branch}` does not exist")


class BehindRemote(WorkspaceStateError):
    def __init__(self, branch: str, upstream: str) -> None:
        super().__init__(f"local branch `{branch}` is behind upstream `{upstream}`")


class GitCommandError(ReleaseError):
    def __init__(self, action: str, stdout: str, stderr: str) -> None:
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"unable to {action}\n{stdout}\n{stderr}".rstrip())


class UnterminatedTagMessage(ConfigError):
    def __init__(self, msg: str) -> None:
        super().__init__(f"unterminated `%{{` scope in tag message: {msg}")


# Build tool


class CargoError(ReleaseError):
    """A cargo subcommand failed or printed something unexpected."""


class BadConfigGetOutput(CargoError):
    def __init__(self, output: str) -> None:
        super().__init__(f"unable to parse `cargo config get` output: {output!r}")


class UpdateFailed(CargoError):
    def __init__(self, name: str, stderr: str) -> None:
        self.name = name
        super().__init__(f"unable to update Cargo.lock for `{name}`\n{stderr}")


# Publishing


class PublishFailed(ReleaseError):
    def __init__(self, name: str, output: str = "") -> None:
        self.name = name
        self.output = output
        super().__init__(f"unable to publish package `{name}`\n{output}".rstrip())


class PublishTimeout(ReleaseError):
    def __init__(self, name: str, version: str, timeout: float) -> None:
        self.name = name
        self.version = version
        super().__init__(
            f"`{name} v{version}` did not appear in the registry index "
            f"within {timeout:.0f}s"
        )


class RegistryIndexError(ReleaseError):
    """The registry index could not be reached or read."""
