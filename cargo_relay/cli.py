"""CLI entry point for cargo-relay."""

from __future__ import annotations

import functools
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from .changes import ChangeOptions
from .errors import ReleaseAborted, ReleaseError
from .git import GitOptions
from .pipeline import ListOptions, run_changed, run_list, run_publish, run_rename, run_version
from .planner import VersionOptions
from .prompt import InteractivePrompter
from .publisher import PublishOptions
from .shell import set_debug
from .versions import Bump
from .workspace import discover_workspace


def _handle_errors(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Turn release errors into click exits."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except ReleaseAborted:
            raise click.exceptions.Exit(0)
        except ReleaseError as exc:
            raise click.ClickException(str(exc)) from exc
        except ValidationError as exc:
            raise click.UsageError(str(exc)) from exc

    return wrapper


def _split_groups(values: tuple[str, ...]) -> list[str]:
    """Flatten repeated, comma separated ``--groups`` values."""
    return [g.strip() for value in values for g in value.split(",") if g.strip()]


def _list_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by ``list`` and ``changed``."""
    for decorator in reversed(
        [
            click.option("-l", "--long", is_flag=True, help="Show extended information."),
            click.option("-a", "--all", "all_", is_flag=True, help="Show private crates."),
            click.option("--json", "json_output", is_flag=True, help="Print a JSON array."),
        ]
    ):
        fn = decorator(fn)
    return fn


def _change_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Change detection options."""
    for decorator in reversed(
        [
            click.option(
                "--include-merged-tags", is_flag=True, help="Include tags from merged branches."
            ),
            click.option(
                "--force",
                metavar="PATTERN",
                help="Always include crates matched by glob even without changes.",
            ),
            click.option(
                "--ignore-changes", metavar="PATTERN", help="Ignore changes in files matched by glob."
            ),
        ]
    ):
        fn = decorator(fn)
    return fn


def _version_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Arguments and options shared by ``version`` and ``publish``."""
    for decorator in reversed(
        [
            click.argument(
                "bump", required=False, type=click.Choice([b.value for b in Bump])
            ),
            click.argument("custom", required=False),
            click.option("--pre-id", metavar="IDENTIFIER", help="Prerelease identifier."),
            click.option("-a", "--all", "all_", is_flag=True, help="Also version private crates."),
            click.option("--exact", is_flag=True, help="Pin internal dependencies with `=`."),
            click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompts."),
            click.option(
                "--auto-version",
                is_flag=True,
                help="Write explicit versions for unversioned internal dependencies.",
            ),
            # git
            click.option("--no-git-commit", is_flag=True, help="Do not commit version changes."),
            click.option("--allow-branch", metavar="PATTERN", help="Branches allowed to release."),
            click.option("--amend", is_flag=True, help="Amend the last commit."),
            click.option("-m", "--message", help="Commit message, %v is the version."),
            click.option("--no-git-tag", is_flag=True, help="Do not tag the release."),
            click.option("--tag-existing", is_flag=True, help="Tag HEAD even without a commit."),
            click.option("--no-individual-tags", is_flag=True, help="Skip per-crate tags."),
            click.option("--no-global-tag", is_flag=True, help="Skip the workspace tag."),
            click.option("--tag-private", is_flag=True, help="Also tag private crates."),
            click.option("--tag-prefix", default="v", show_default=True),
            click.option("--individual-tag-prefix", default="%n@", show_default=True),
            click.option("--tag-msg", multiple=True, help="Workspace tag message (repeatable)."),
            click.option("--individual-tag-msg", help="Per-crate tag message (%n, %v)."),
            click.option("--no-git-push", is_flag=True, help="Do not push to the remote."),
            click.option("--git-remote", default="origin", show_default=True),
        ]
    ):
        fn = decorator(fn)
    return _change_options(fn)


def _build_options(kw: dict[str, Any]) -> tuple[VersionOptions, ChangeOptions, GitOptions]:
    """Turn the shared command options into option models."""
    version = VersionOptions(
        bump=Bump(kw["bump"]) if kw["bump"] else None,
        custom=kw["custom"],
        pre_id=kw["pre_id"],
        include_private=kw["all_"],
        exact=kw["exact"],
        yes=kw["yes"],
        auto_version=kw["auto_version"],
    )
    change = ChangeOptions(
        include_merged_tags=kw["include_merged_tags"],
        force=kw["force"],
        ignore_changes=kw["ignore_changes"],
    )
    git = GitOptions(
        no_git_commit=kw["no_git_commit"],
        allow_branch=kw["allow_branch"],
        amend=kw["amend"],
        message=kw["message"],
        no_git_tag=kw["no_git_tag"],
        tag_existing=kw["tag_existing"],
        no_individual_tags=kw["no_individual_tags"],
        no_global_tag=kw["no_global_tag"],
        tag_private=kw["tag_private"],
        tag_prefix=kw["tag_prefix"],
        individual_tag_prefix=kw["individual_tag_prefix"],
        tag_msg=list(kw["tag_msg"]),
        individual_tag_msg=kw["individual_tag_msg"],
        no_git_push=kw["no_git_push"],
        git_remote=kw["git_remote"],
    )
    return version, change, git


@click.group()
@click.version_option(package_name="cargo-relay")
@click.option(
    "--manifest-path",
    type=click.Path(path_type=Path),
    help="Path to the workspace root Cargo.toml.",
)
@click.option("-v", "--verbose", is_flag=True, help="Trace git and cargo invocations.")
@click.pass_context
def cli(ctx: click.Context, manifest_path: Path | None, verbose: bool) -> None:
    """Release the crates of a Cargo workspace."""
    if verbose:
        set_debug(True)
    ctx.obj = manifest_path


@cli.command("list")
@_list_options
@click.option("--groups", multiple=True, help="Comma separated groups to list.")
@click.pass_obj
@_handle_errors
def list_cmd(
    manifest_path: Path | None, long: bool, all_: bool, json_output: bool, groups: tuple[str, ...]
) -> None:
    """List crates in the workspace."""
    workspace = discover_workspace(manifest_path)
    options = ListOptions(long=long, all=all_, json_output=json_output, groups=_split_groups(groups))
    output = run_list(workspace, options)
    if output:
        click.echo(output)


cli.add_command(list_cmd, name="ls")


@cli.command()
@_list_options
@_change_options
@click.option("--since", metavar="REF", help="Use this git reference instead of the last tag.")
@click.option("--groups", multiple=True, help="Comma separated groups to check.")
@click.pass_obj
@_handle_errors
def changed(
    manifest_path: Path | None,
    long: bool,
    all_: bool,
    json_output: bool,
    include_merged_tags: bool,
    force: str | None,
    ignore_changes: str | None,
    since: str | None,
    groups: tuple[str, ...],
) -> None:
    """List crates changed since the last tagged release."""
    workspace = discover_workspace(manifest_path)
    options = ListOptions(long=long, all=all_, json_output=json_output, groups=_split_groups(groups))
    change = ChangeOptions(
        include_merged_tags=include_merged_tags, force=force, ignore_changes=ignore_changes
    )
    output = run_changed(workspace, options, change, since)
    if output:
        click.echo(output)


@cli.command()
@_version_options
@click.pass_obj
@_handle_errors
def version(manifest_path: Path | None, **kw: Any) -> None:
    """Bump versions of changed crates, commit, tag and push."""
    workspace = discover_workspace(manifest_path)
    options, change, git = _build_options(kw)
    run = run_version(workspace, options, change, git, InteractivePrompter())
    if run is not None:
        click.echo(f"Released {len(run.plan.bumps)} crates")


@cli.command()
@_version_options
@click.option(
    "--from-git",
    "--publish-as-is",
    "from_git",
    is_flag=True,
    help="Publish the current commit without versioning.",
)
@click.option("--no-verify", is_flag=True, help="Skip crate verification.")
@click.option("--allow-dirty", is_flag=True, help="Allow a dirty working directory.")
@click.option("--token", help="Registry token.")
@click.option("--registry", help="Registry to publish to.")
@click.pass_obj
@_handle_errors
def publish(
    manifest_path: Path | None,
    from_git: bool,
    no_verify: bool,
    allow_dirty: bool,
    token: str | None,
    registry: str | None,
    **kw: Any,
) -> None:
    """Version (unless --from-git) and publish crates in dependency order."""
    workspace = discover_workspace(manifest_path)
    options, change, git = _build_options(kw)
    publish_options = PublishOptions(
        from_git=from_git,
        no_verify=no_verify,
        allow_dirty=allow_dirty,
        token=token,
        registry=registry,
    )
    published = run_publish(
        workspace, publish_options, options, change, git, InteractivePrompter()
    )
    click.echo(f"Published {len(published)} crates")


@cli.command()
@click.argument("to")
@click.option("-a", "--all", "all_", is_flag=True, help="Rename private crates too.")
@click.option("--ignore", metavar="PATTERN", help="Ignore crates matched by glob.")
@click.option("--groups", multiple=True, help="Comma separated groups to rename.")
@click.pass_obj
@_handle_errors
def rename(
    manifest_path: Path | None,
    to: str,
    all_: bool,
    ignore: str | None,
    groups: tuple[str, ...],
) -> None:
    """Rename crates to TO, where %n is the current name."""
    if "%n" not in to:
        raise click.BadParameter("must contain %n", param_hint="TO")
    workspace = discover_workspace(manifest_path)
    run_rename(
        workspace, to, include_private=all_, ignore=ignore, groups=_split_groups(groups)
    )
