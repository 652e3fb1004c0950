"""Git operations for a release: pre-flight checks, commit, tags, push."""

from __future__ import annotations

import fnmatch
import subprocess
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from .config import WorkspaceConfig
from .errors import (
    BehindRemote,
    BranchNotAllowed,
    DetachedHead,
    GitCommandError,
    NoCommits,
    NoRemote,
    NotGitRepository,
    UnterminatedTagMessage,
)
from .models import Package, VersionPlan
from .shell import capture, info, warn

DEFAULT_ALLOW_BRANCH = "master"


def git(root: Path, *args: str) -> subprocess.CompletedProcess[str]:
    """Run a git command in ``root``. Never raises on a non-zero exit."""
    return capture("git", *args, cwd=root)


def git_checked(root: Path, action: str, *args: str) -> str:
    """Run a git command, raising ``GitCommandError`` if it fails."""
    result = git(root, *args)
    if result.returncode != 0:
        raise GitCommandError(action, result.stdout, result.stderr)
    return result.stdout


def render_tag_msg(msg: str, version: str, entries: list[tuple[str, str]]) -> str:
    """Expand a global tag message.

    ``%{...}`` scopes are repeated once per released package with ``%n``
    and ``%v`` standing for that package's name and version; ``%v``
    outside scopes is the release version.

    Example:
        "Release %v%{\\n- %n %v}" with [("a", "1.0.1")] →
        "Release 1.0.1\\n- a 1.0.1"
    """
    parts = msg.split("%{")
    out = [parts[0]]
    for scope in parts[1:]:
        template, sep, rest = scope.partition("}")
        if not sep:
            raise UnterminatedTagMessage(msg)
        for name, pkg_version in entries:
            out.append(template.replace("%n", name).replace("%v", pkg_version))
        out.append(rest)
    return "".join(out).replace("%v", version)


class GitOptions(BaseModel):
    """How a release is recorded in git.

    Attributes:
        no_git_commit: Do not commit version changes.
        allow_branch: Glob of branches allowed to release. Falls back to
                      the workspace config, then ``master``.
        amend: Amend the last commit instead of creating one.
        message: Commit message, ``%v`` is the release version.
        no_git_tag: Do not create tags.
        tag_existing: Tag HEAD even when no commit was created.
        no_individual_tags: Skip per-package tags.
        no_global_tag: Skip the workspace tag.
        tag_private: Also tag private packages.
        tag_prefix: Prefix of the workspace tag.
        individual_tag_prefix: Prefix of per-package tags, contains ``%n``.
        tag_msg: Workspace tag messages (see :func:`render_tag_msg`).
        individual_tag_msg: Per-package tag message (``%n`` and ``%v``).
        no_git_push: Do not push.
        git_remote: Remote to push to.
    """

    no_git_commit: bool = False
    allow_branch: str | None = None
    amend: bool = False
    message: str | None = None
    no_git_tag: bool = False
    tag_existing: bool = False
    no_individual_tags: bool = False
    no_global_tag: bool = False
    tag_private: bool = False
    tag_prefix: str = "v"
    individual_tag_prefix: str = "%n@"
    tag_msg: list[str] = Field(default_factory=list)
    individual_tag_msg: str | None = None
    no_git_push: bool = False
    git_remote: str = "origin"

    @field_validator("individual_tag_prefix")
    @classmethod
    def _contains_name(cls, value: str) -> str:
        if "%n" not in value:
            raise ValueError("individual tag prefix must contain %n")
        return value

    def preflight(self, root: Path, config: WorkspaceConfig) -> str | None:
        """Check the repository can take a release commit.

        Returns:
            The current branch, or ``None`` when no commit will be made.

        Raises:
            WorkspaceStateError: Naming the first failed check.
        """
        if self.no_git_commit:
            return None

        result = git(root, "rev-list", "--count", "--all", "--max-count=1")
        if "not a git repository" in result.stderr:
            raise NotGitRepository()
        if result.stdout == "0":
            raise NoCommits()

        branch = git(root, "rev-parse", "--abbrev-ref", "HEAD").stdout
        if branch == "HEAD":
            raise DetachedHead()

        allow_branch = self.allow_branch or config.allow_branch or DEFAULT_ALLOW_BRANCH
        test_branch = branch
        if branch == "main" and allow_branch == DEFAULT_ALLOW_BRANCH:
            test_branch = DEFAULT_ALLOW_BRANCH
        if not fnmatch.fnmatchcase(test_branch, allow_branch):
            raise BranchNotAllowed(branch, allow_branch)

        if not self.no_git_push:
            remote_branch = f"{self.git_remote}/{branch}"
            shown = git(root, "show-ref", "--verify", f"refs/remotes/{remote_branch}")
            if not shown.stdout:
                raise NoRemote(self.git_remote, branch)

            git(root, "remote", "update")
            behind = git(root, "rev-list", "--left-only", "--count", f"{remote_branch}...{branch}")
            if behind.stdout != "0":
                raise BehindRemote(branch, remote_branch)

        return branch

    def commit_message(self, plan: VersionPlan) -> str:
        """The release commit message, listing every new version.

        ``%v`` is the shared release version, or "independent packages" without one.
        """
        msg = self.message or "Release %v"
        listed = "\n".join(f"{name}@{bump.new}" for name, bump in plan.bumps.items())
        msg = f"{msg}\n\n{listed}\n\nGenerated by cargo-relay"
        return msg.replace("%v", plan.workspace_version or "independent packages")

    def commit(self, root: Path, plan: VersionPlan) -> None:
        """Stage tracked changes and commit (or amend) them."""
        if self.no_git_commit:
            return
        info("version", "committing changes")
        git_checked(root, "stage changes", "add", "-u")
        if self.amend:
            git_checked(root, "amend commit", "commit", "--amend", "--no-edit")
        else:
            git_checked(root, "commit changes", "commit", "-m", self.commit_message(plan))

    def tag(self, root: Path, tag: str, msgs: list[str]) -> bool:
        """Create an annotated tag unless it exists. Returns whether it was created."""
        existing = git(root, "tag").stdout.splitlines()
        if tag in existing:
            warn(f"tag {tag} already exists, skipping")
            return False
        args = ["tag", tag, "-a"]
        for msg in msgs:
            args.extend(["-m", msg])
        git_checked(root, f"create tag {tag}", *args)
        return True

    def tag_release(
        self,
        root: Path,
        plan: VersionPlan,
        packages: dict[str, Package],
        config: WorkspaceConfig,
    ) -> list[str]:
        """Create the workspace tag and per-package tags for ``plan``.

        Returns:
            Names of the tags that were created.
        """
        if self.no_git_tag or (self.no_git_commit and not self.tag_existing):
            return []

        info("version", "tagging")
        entries = [
            (name, bump.new)
            for name, bump in plan.bumps.items()
            if self.tag_private or not packages[name].private
        ]
        created: list[str] = []

        version = plan.workspace_version
        if not self.no_global_tag and version is not None:
            tag = f"{self.tag_prefix}{version}"
            msgs = [render_tag_msg(m, version, entries) for m in self.tag_msg] or [tag]
            if self.tag(root, tag, msgs):
                created.append(tag)

        if not (self.no_individual_tags or config.no_individual_tags):
            for name, pkg_version in entries:
                tag = f"{self.individual_tag_prefix.replace('%n', name)}{pkg_version}"
                msg = tag
                if self.individual_tag_msg is not None:
                    msg = self.individual_tag_msg.replace("%n", name).replace("%v", pkg_version)
                if self.tag(root, tag, [msg]):
                    created.append(tag)

        return created

    def push(self, root: Path, branch: str | None) -> None:
        """Push the branch with its annotated tags."""
        if self.no_git_push or branch is None:
            return
        info("git", "pushing")
        git_checked(root, "push changes", "push", "--follow-tags", self.git_remote, branch)
