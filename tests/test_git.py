"""Tests for cargo_relay.git."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest
from pydantic import ValidationError

from cargo_relay.config import WorkspaceConfig
from cargo_relay.errors import (
    BehindRemote,
    BranchNotAllowed,
    DetachedHead,
    GitCommandError,
    NoCommits,
    NoRemote,
    NotGitRepository,
    UnterminatedTagMessage,
)
from cargo_relay.git import GitOptions, git_checked, render_tag_msg
from cargo_relay.models import VersionBump, VersionPlan

from conftest import completed, make_package

ROOT = Path("/ws")


def _plan(group_versions: dict[str, str] | None = None, **bumps: str) -> VersionPlan:
    return VersionPlan(
        bumps={name: VersionBump(old="1.0.0", new=new) for name, new in bumps.items()},
        group_versions=group_versions if group_versions is not None else {},
    )


def _preflight_outputs(branch: str = "master", behind: str = "0") -> list:
    return [
        completed("1"),
        completed(branch),
        completed(f"abc123 refs/remotes/origin/{branch}"),
        completed(""),
        completed(behind),
    ]


class TestRenderTagMsg:
    """Tests for render_tag_msg()."""

    def test_plain(self) -> None:
        assert render_tag_msg("Release %v", "1.0.1", []) == "Release 1.0.1"

    def test_scope_repeats_per_package(self) -> None:
        """A %{...} scope is rendered once per tagged package."""
        entries = [("a", "1.0.1"), ("b", "2.0.0")]
        result = render_tag_msg("Release %v%{\n- %n %v}", "1.0.1", entries)
        assert result == "Release 1.0.1\n- a 1.0.1\n- b 2.0.0"

    def test_text_after_scope(self) -> None:
        assert render_tag_msg("%{%n }done", "1", [("a", "1")]) == "a done"

    def test_unterminated(self) -> None:
        """An unclosed scope is an error."""
        with pytest.raises(UnterminatedTagMessage):
            render_tag_msg("Release %{%n", "1.0.0", [("a", "1.0.0")])


class TestGitOptions:
    """Tests for GitOptions validation and messages."""

    def test_individual_prefix_needs_name(self) -> None:
        """The individual tag prefix must contain %n."""
        with pytest.raises(ValidationError, match="%n"):
            GitOptions(individual_tag_prefix="v")

    def test_commit_message(self) -> None:
        """The commit message lists every bumped package."""
        plan = _plan({"default": "1.0.1"}, core="1.0.1", cli="1.0.1")
        assert GitOptions().commit_message(plan) == (
            "Release 1.0.1\n\ncore@1.0.1\ncli@1.0.1\n\nGenerated by cargo-relay"
        )

    def test_commit_message_independent(self) -> None:
        """Without a group version the subject says independent."""
        plan = _plan(a="0.2.0", b="3.0.0")
        message = GitOptions(message="Publish %v").commit_message(plan)
        assert message.startswith("Publish independent packages\n")


class TestPreflight:
    """Tests for GitOptions.preflight()."""

    @patch("cargo_relay.git.git")
    def test_ok(self, mock_git: MagicMock) -> None:
        """A clean, allowed, up-to-date branch passes and is returned."""
        mock_git.side_effect = _preflight_outputs()

        assert GitOptions().preflight(ROOT, WorkspaceConfig()) == "master"

        mock_git.assert_has_calls(
            [
                call(ROOT, "remote", "update"),
                call(ROOT, "rev-list", "--left-only", "--count", "origin/master...master"),
            ]
        )

    @patch("cargo_relay.git.git")
    def test_main_passes_default(self, mock_git: MagicMock) -> None:
        mock_git.side_effect = _preflight_outputs("main")
        assert GitOptions().preflight(ROOT, WorkspaceConfig()) == "main"

    @patch("cargo_relay.git.git")
    def test_no_commit_skips_checks(self, mock_git: MagicMock) -> None:
        """Nothing is checked when no commit will be made."""
        assert GitOptions(no_git_commit=True).preflight(ROOT, WorkspaceConfig()) is None
        mock_git.assert_not_called()

    @patch("cargo_relay.git.git")
    def test_not_a_repository(self, mock_git: MagicMock) -> None:
        mock_git.return_value = completed(
            stderr="fatal: not a git repository (or any of the parent directories): .git",
            returncode=128,
        )
        with pytest.raises(NotGitRepository):
            GitOptions().preflight(ROOT, WorkspaceConfig())

    @patch("cargo_relay.git.git")
    def test_no_commits(self, mock_git: MagicMock) -> None:
        mock_git.return_value = completed("0")
        with pytest.raises(NoCommits):
            GitOptions().preflight(ROOT, WorkspaceConfig())

    @patch("cargo_relay.git.git")
    def test_detached(self, mock_git: MagicMock) -> None:
        """A detached HEAD cannot be released from."""
        mock_git.side_effect = [completed("1"), completed("HEAD")]
        with pytest.raises(DetachedHead):
            GitOptions().preflight(ROOT, WorkspaceConfig())

    @patch("cargo_relay.git.git")
    def test_branch_not_allowed(self, mock_git: MagicMock) -> None:
        mock_git.side_effect = [completed("1"), completed("feature/x")]
        with pytest.raises(BranchNotAllowed, match="feature/x"):
            GitOptions().preflight(ROOT, WorkspaceConfig())

    @patch("cargo_relay.git.git")
    def test_allow_branch_from_config(self, mock_git: MagicMock) -> None:
        mock_git.side_effect = _preflight_outputs("release/1.x")
        config = WorkspaceConfig(allow_branch="release/*")
        assert GitOptions().preflight(ROOT, config) == "release/1.x"

    @patch("cargo_relay.git.git")
    def test_option_overrides_config(self, mock_git: MagicMock) -> None:
        """--allow-branch wins over the workspace setting."""
        mock_git.side_effect = [completed("1"), completed("release/1.x")]
        config = WorkspaceConfig(allow_branch="release/*")
        with pytest.raises(BranchNotAllowed):
            GitOptions(allow_branch="main").preflight(ROOT, config)

    @patch("cargo_relay.git.git")
    def test_no_remote(self, mock_git: MagicMock) -> None:
        mock_git.side_effect = [completed("1"), completed("master"), completed("")]
        with pytest.raises(NoRemote, match="origin/master"):
            GitOptions().preflight(ROOT, WorkspaceConfig())

    @patch("cargo_relay.git.git")
    def test_behind(self, mock_git: MagicMock) -> None:
        """A branch behind its remote is rejected."""
        mock_git.side_effect = _preflight_outputs(behind="2")
        with pytest.raises(BehindRemote):
            GitOptions().preflight(ROOT, WorkspaceConfig())

    @patch("cargo_relay.git.git")
    def test_no_push_skips_remote_checks(self, mock_git: MagicMock) -> None:
        """Without a push the remote is never queried."""
        mock_git.side_effect = [completed("1"), completed("master")]
        assert GitOptions(no_git_push=True).preflight(ROOT, WorkspaceConfig()) == "master"
        assert mock_git.call_count == 2


class TestCommit:
    """Tests for GitOptions.commit()."""

    @patch("cargo_relay.git.git")
    def test_commit(self, mock_git: MagicMock) -> None:
        mock_git.return_value = completed()
        plan = _plan({"default": "1.0.1"}, core="1.0.1")

        GitOptions().commit(ROOT, plan)

        assert mock_git.call_args_list == [
            call(ROOT, "add", "-u"),
            call(ROOT, "commit", "-m", GitOptions().commit_message(plan)),
        ]

    @patch("cargo_relay.git.git")
    def test_amend(self, mock_git: MagicMock) -> None:
        """--amend folds the changes into HEAD."""
        mock_git.return_value = completed()
        GitOptions(amend=True).commit(ROOT, _plan(core="1.0.1"))
        mock_git.assert_called_with(ROOT, "commit", "--amend", "--no-edit")

    @patch("cargo_relay.git.git")
    def test_no_commit(self, mock_git: MagicMock) -> None:
        GitOptions(no_git_commit=True).commit(ROOT, _plan(core="1.0.1"))
        mock_git.assert_not_called()

    @patch("cargo_relay.git.git")
    def test_failure(self, mock_git: MagicMock) -> None:
        """A failing git command raises with its stderr."""
        mock_git.return_value = completed(stderr="nothing to commit", returncode=1)
        with pytest.raises(GitCommandError, match="nothing to commit"):
            git_checked(ROOT, "commit changes", "commit", "-m", "x")


class TestTagRelease:
    """Tests for GitOptions.tag_release()."""

    PACKAGES = {
        "core": make_package("core"),
        "cli": make_package("cli"),
        "internal": make_package("internal", publish=[]),
    }

    @staticmethod
    def _tag_calls(mock_git: MagicMock) -> list[tuple]:
        return [c.args[1:] for c in mock_git.call_args_list if c.args[1:2] == ("tag",) and len(c.args) > 2]

    @patch("cargo_relay.git.git")
    def test_global_and_individual(self, mock_git: MagicMock) -> None:
        """A cohort release gets one global tag plus one tag per package."""
        mock_git.return_value = completed()
        plan = _plan({"default": "1.0.1"}, core="1.0.1", cli="1.0.1")

        created = GitOptions().tag_release(ROOT, plan, self.PACKAGES, WorkspaceConfig())

        assert created == ["v1.0.1", "core@1.0.1", "cli@1.0.1"]
        assert self._tag_calls(mock_git) == [
            ("tag", "v1.0.1", "-a", "-m", "v1.0.1"),
            ("tag", "core@1.0.1", "-a", "-m", "core@1.0.1"),
            ("tag", "cli@1.0.1", "-a", "-m", "cli@1.0.1"),
        ]

    @patch("cargo_relay.git.git")
    def test_existing_tag_skipped(self, mock_git: MagicMock) -> None:
        """Tags that already exist are not recreated."""
        mock_git.return_value = completed("v1.0.1\ncore@1.0.1")
        plan = _plan({"default": "1.0.1"}, core="1.0.1")

        created = GitOptions().tag_release(ROOT, plan, self.PACKAGES, WorkspaceConfig())

        assert created == []

    @patch("cargo_relay.git.git")
    def test_private_skipped_unless_requested(self, mock_git: MagicMock) -> None:
        """Private packages are only tagged with --tag-private."""
        mock_git.return_value = completed()
        plan = _plan(internal="0.2.0", core="1.0.1")

        created = GitOptions().tag_release(ROOT, plan, self.PACKAGES, WorkspaceConfig())
        assert created == ["core@1.0.1"]

        created = GitOptions(tag_private=True).tag_release(
            ROOT, plan, self.PACKAGES, WorkspaceConfig()
        )
        assert created == ["internal@0.2.0", "core@1.0.1"]

    @patch("cargo_relay.git.git")
    def test_messages_and_prefixes(self, mock_git: MagicMock) -> None:
        """Prefixes and message templates reach git tag."""
        mock_git.return_value = completed()
        plan = _plan({"default": "2.0.0"}, core="2.0.0")
        options = GitOptions(
            tag_prefix="release-",
            individual_tag_prefix="%n-v",
            tag_msg=["Release %v", "%{%n=%v}"],
            individual_tag_msg="%n %v",
        )

        created = options.tag_release(ROOT, plan, self.PACKAGES, WorkspaceConfig())

        assert created == ["release-2.0.0", "core-v2.0.0"]
        assert self._tag_calls(mock_git) == [
            ("tag", "release-2.0.0", "-a", "-m", "Release 2.0.0", "-m", "core=2.0.0"),
            ("tag", "core-v2.0.0", "-a", "-m", "core 2.0.0"),
        ]

    @patch("cargo_relay.git.git")
    def test_no_individual_tags_from_config(self, mock_git: MagicMock) -> None:
        mock_git.return_value = completed()
        plan = _plan({"default": "1.0.1"}, core="1.0.1")
        config = WorkspaceConfig(no_individual_tags=True)
        assert GitOptions().tag_release(ROOT, plan, self.PACKAGES, config) == ["v1.0.1"]

    @patch("cargo_relay.git.git")
    def test_no_global_tag(self, mock_git: MagicMock) -> None:
        mock_git.return_value = completed()
        plan = _plan({"default": "1.0.1"}, core="1.0.1")
        created = GitOptions(no_global_tag=True).tag_release(
            ROOT, plan, self.PACKAGES, WorkspaceConfig()
        )
        assert created == ["core@1.0.1"]

    @patch("cargo_relay.git.git")
    def test_disabled(self, mock_git: MagicMock) -> None:
        """No tags without tagging or committing."""
        plan = _plan({"default": "1.0.1"}, core="1.0.1")
        for options in (GitOptions(no_git_tag=True), GitOptions(no_git_commit=True)):
            assert options.tag_release(ROOT, plan, self.PACKAGES, WorkspaceConfig()) == []
        mock_git.assert_not_called()

    @patch("cargo_relay.git.git")
    def test_tag_existing_without_commit(self, mock_git: MagicMock) -> None:
        mock_git.return_value = completed()
        plan = _plan(core="1.0.1")
        options = GitOptions(no_git_commit=True, tag_existing=True)
        assert options.tag_release(ROOT, plan, self.PACKAGES, WorkspaceConfig()) == ["core@1.0.1"]


class TestPush:
    """Tests for GitOptions.push()."""

    @patch("cargo_relay.git.git")
    def test_push(self, mock_git: MagicMock) -> None:
        """Tags travel with the branch to the chosen remote."""
        mock_git.return_value = completed()
        GitOptions(git_remote="upstream").push(ROOT, "main")
        mock_git.assert_called_once_with(ROOT, "push", "--follow-tags", "upstream", "main")

    @patch("cargo_relay.git.git")
    def test_skipped(self, mock_git: MagicMock) -> None:
        """No push when disabled or without a branch."""
        GitOptions(no_git_push=True).push(ROOT, "main")
        GitOptions().push(ROOT, None)
        mock_git.assert_not_called()
