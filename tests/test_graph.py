"""Tests for cargo_relay.graph."""

from __future__ import annotations

import pytest

from cargo_relay.errors import DependencyCycle
from cargo_relay.graph import dag
from cargo_relay.models import DependencyKind

from conftest import make_package


def _names(candidates):
    index, order = dag(candidates)
    return [index[path][0].name for path in order]


class TestDag:
    """Tests for dag()."""

    def test_no_deps_keeps_input_order(self) -> None:
        """Independent packages stay in input order."""
        candidates = [(make_package(n), "1.0.1") for n in ("b", "a", "c")]
        assert _names(candidates) == ["b", "a", "c"]

    def test_linear_deps(self) -> None:
        """A chain publishes leaf first."""
        candidates = [
            (make_package("a", deps=["b"]), "1.0.1"),
            (make_package("b", deps=["c"]), "1.0.1"),
            (make_package("c"), "1.0.1"),
        ]
        assert _names(candidates) == ["c", "b", "a"]

    def test_diamond_deps(self) -> None:
        """Both branches of a diamond come after the base and before the top."""
        candidates = [
            (make_package("top", deps=["left", "right"]), "1.0.1"),
            (make_package("left", deps=["bottom"]), "1.0.1"),
            (make_package("right", deps=["bottom"]), "1.0.1"),
            (make_package("bottom"), "1.0.1"),
        ]
        result = _names(candidates)
        assert result.index("bottom") < result.index("left")
        assert result.index("bottom") < result.index("right")
        assert result.index("left") < result.index("top")
        assert result.index("right") < result.index("top")
        assert len(result) == 4

    def test_deterministic(self) -> None:
        """Ties break by input order on every run."""
        candidates = [
            (make_package("top", deps=["left", "right"]), "1.0.1"),
            (make_package("right", deps=["bottom"]), "1.0.1"),
            (make_package("left", deps=["bottom"]), "1.0.1"),
            (make_package("bottom"), "1.0.1"),
        ]
        assert _names(candidates) == _names(candidates) == ["bottom", "left", "right", "top"]

    def test_index_carries_versions(self) -> None:
        pkg = make_package("a")
        index, order = dag([(pkg, "2.0.0")])
        assert order == [pkg.manifest_path]
        assert index[pkg.manifest_path] == (pkg, "2.0.0")

    def test_empty(self) -> None:
        assert dag([]) == ({}, [])

    def test_external_deps_ignored(self) -> None:
        """Dependencies outside the candidate set do not constrain the order.

        This happens when publishing only the packages that were bumped.
        """
        candidates = [
            (make_package("a", deps=["serde"]), "1.0.1"),
            (make_package("b", deps=["a"]), "1.0.1"),
        ]
        assert _names(candidates) == ["a", "b"]

    def test_dev_deps_ignored(self) -> None:
        """Dev-dependencies neither order nor close a cycle."""
        candidates = [
            (make_package("a", deps=["b"], kind=DependencyKind.DEV), "1.0.1"),
            (make_package("b", deps=["a"]), "1.0.1"),
        ]
        assert _names(candidates) == ["a", "b"]

    def test_build_deps_order(self) -> None:
        """Build-dependencies order like normal ones."""
        candidates = [
            (make_package("a", deps=["b"], kind=DependencyKind.BUILD), "1.0.1"),
            (make_package("b"), "1.0.1"),
        ]
        assert _names(candidates) == ["b", "a"]

    def test_cycle_raises(self) -> None:
        """A two-package cycle is reported with its path."""
        candidates = [
            (make_package("a", deps=["b"]), "1.0.1"),
            (make_package("b", deps=["a"]), "1.0.1"),
        ]
        with pytest.raises(DependencyCycle, match="cycle") as exc_info:
            dag(candidates)
        assert exc_info.value.cycle == ["a", "b", "a"]

    def test_three_way_cycle_raises(self) -> None:
        candidates = [
            (make_package("a", deps=["b"]), "1.0.1"),
            (make_package("b", deps=["c"]), "1.0.1"),
            (make_package("c", deps=["a"]), "1.0.1"),
        ]
        with pytest.raises(DependencyCycle, match="a -> b -> c -> a"):
            dag(candidates)
