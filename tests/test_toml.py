"""Tests for cargo_relay.toml."""

from __future__ import annotations

from pathlib import Path

import pytest
import tomlkit

from cargo_relay.errors import ManifestError
from cargo_relay.models import DependencyKind
from cargo_relay.toml import (
    get_dependencies,
    get_package_name,
    get_package_version,
    get_publish,
    get_workspace_dependencies,
    get_workspace_members,
    get_workspace_metadata,
    get_workspace_package_version,
    has_package,
    has_workspace,
    load_manifest,
)


def _doc(text: str) -> tomlkit.TOMLDocument:
    return tomlkit.parse(text)


class TestLoadManifest:
    """Tests for load_manifest()."""

    def test_loads(self, tmp_path: Path) -> None:
        path = tmp_path / "Cargo.toml"
        path.write_text('[package]\nname = "a"\n')
        assert get_package_name(load_manifest(path), "x") == "a"

    def test_missing(self, tmp_path: Path) -> None:
        """A missing file raises ManifestError naming it."""
        with pytest.raises(ManifestError, match="Cargo.toml"):
            load_manifest(tmp_path / "Cargo.toml")

    def test_invalid(self, tmp_path: Path) -> None:
        """Unparseable TOML raises ManifestError."""
        path = tmp_path / "Cargo.toml"
        path.write_text("[package\n")
        with pytest.raises(ManifestError):
            load_manifest(path)


class TestPackageFields:
    """Tests for the [package] accessors."""

    def test_has_tables(self) -> None:
        doc = _doc('[workspace]\nmembers = []\n')
        assert has_workspace(doc)
        assert not has_package(doc)

    def test_name_fallback(self) -> None:
        """Without a name the directory name is used."""
        assert get_package_name(_doc(""), "dir") == "dir"

    def test_version(self) -> None:
        doc = _doc('[package]\nversion = "1.2.3"\n')
        assert get_package_version(doc, None) == ("1.2.3", False)

    def test_missing_version(self) -> None:
        """A package without a version reads as 0.0.0."""
        assert get_package_version(_doc('[package]\nname = "a"\n'), None) == ("0.0.0", False)

    def test_inherited_version(self) -> None:
        """version.workspace takes the workspace version."""
        doc = _doc("[package]\nversion.workspace = true\n")
        assert get_package_version(doc, "2.0.0") == ("2.0.0", True)

    def test_inherited_version_without_workspace_version(self) -> None:
        """Inheriting a version the workspace lacks is an error."""
        doc = _doc('[package]\nname = "a"\nversion.workspace = true\n')
        with pytest.raises(ManifestError, match="inherited"):
            get_package_version(doc, None)

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("false", []), ("true", None), ('["internal"]', ["internal"])],
    )
    def test_publish(self, value: str, expected: list[str] | None) -> None:
        assert get_publish(_doc(f"[package]\npublish = {value}\n")) == expected

    def test_publish_missing(self) -> None:
        """No publish key means any registry."""
        assert get_publish(_doc("[package]\n")) is None


class TestWorkspaceFields:
    """Tests for the [workspace] accessors."""

    DOC = """\
[workspace]
members = ["crates/*", "cli"]
exclude = ["crates/old"]

[workspace.package]
version = "0.5.0"

[workspace.dependencies]
core = { path = "crates/core", version = "0.5.0" }
serde = "1"

[workspace.metadata.workspaces]
allow_branch = "main"
"""

    def test_members(self) -> None:
        assert get_workspace_members(_doc(self.DOC)) == (["crates/*", "cli"], ["crates/old"])

    def test_package_version(self) -> None:
        assert get_workspace_package_version(_doc(self.DOC)) == "0.5.0"
        assert get_workspace_package_version(_doc("[workspace]\n")) is None

    def test_metadata_is_plain(self) -> None:
        """Metadata comes back as plain Python containers."""
        metadata = get_workspace_metadata(_doc(self.DOC))
        assert metadata == {"allow_branch": "main"}
        assert type(metadata) is dict

    def test_workspace_dependencies(self) -> None:
        deps = get_workspace_dependencies(_doc(self.DOC))
        assert deps["serde"] == "1"
        assert deps["core"]["path"] == "crates/core"


class TestGetDependencies:
    """Tests for get_dependencies()."""

    def test_kinds_and_targets(self) -> None:
        """Every dependency table is read with its kind and target."""
        doc = _doc(
            """\
[dependencies]
core = { path = "../core", version = "1.0" }
serde = "1"

[build-dependencies]
gen = { path = "../gen" }

[dev-dependencies]
harness = "0.1"

[target.'cfg(unix)'.dependencies]
nix = "0.27"
"""
        )
        deps = {d.name: d for d in get_dependencies(doc)}
        assert deps["core"].req == "1.0"
        assert deps["core"].path == "../core"
        assert deps["core"].kind is DependencyKind.NORMAL
        assert deps["gen"].req == "*"
        assert deps["gen"].kind is DependencyKind.BUILD
        assert deps["harness"].kind is DependencyKind.DEV
        assert not deps["harness"].orders_publish
        assert deps["nix"].target == "cfg(unix)"
        assert deps["serde"].target is None

    def test_renamed(self) -> None:
        """The package key names the real crate; the table key is the rename."""
        doc = _doc('[dependencies]\nalias = { path = "../real", package = "real" }\n')
        (dep,) = get_dependencies(doc)
        assert dep.name == "real"
        assert dep.rename == "alias"

    def test_inherited_from_workspace(self) -> None:
        """workspace = true pulls the entry from [workspace.dependencies]."""
        doc = _doc("[dependencies]\ncore = { workspace = true }\nserde.workspace = true\n")
        workspace_deps = {"core": {"path": "crates/core", "version": "0.5.0"}, "serde": "1"}
        deps = {d.name: d for d in get_dependencies(doc, workspace_deps)}
        assert deps["core"].inherited
        assert deps["core"].req == "0.5.0"
        assert deps["core"].path == "crates/core"
        assert deps["serde"].req == "1"

    def test_inherited_alias_from_workspace(self) -> None:
        """An inherited alias resolves through the workspace entry."""
        doc = _doc("[dependencies]\nalias = { workspace = true }\n")
        (dep,) = get_dependencies(doc, {"alias": {"package": "real", "version": "2"}})
        assert dep.name == "real"
        assert dep.rename == "alias"
        assert dep.req == "2"

    def test_none(self) -> None:
        assert get_dependencies(_doc('[package]\nname = "a"\n')) == []
