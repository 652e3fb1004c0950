"""Dependency graph utilities.

Provides the topological ordering used for publishing. Packages must be
published in dependency order so that when package A depends on package B,
B is already visible in the registry by the time A is uploaded.
"""

from __future__ import annotations

from pathlib import Path

from .errors import DependencyCycle
from .models import Package

Candidate = tuple[Package, str]


def dag(candidates: list[Candidate]) -> tuple[dict[Path, Candidate], list[Path]]:
    """Order candidates so that dependencies come before dependents.

    Depth-first post-order over normal and build dependencies, restricted
    to the candidate set. Candidates are visited in the order given and
    dependencies in declaration order, so the same input always produces
    the same order.

    Args:
        candidates: Pairs of (package, version to publish).

    Returns:
        Tuple of (manifest path → candidate, manifest paths in order).

    Raises:
        DependencyCycle: If the normal/build edges among candidates form a
            cycle.

    Example:
        If A depends on B, and B depends on C:
        dag([A, B, C]) → [C, B, A]
    """
    by_name = {pkg.name: (pkg, version) for pkg, version in candidates}
    index: dict[Path, Candidate] = {}
    visiting: list[str] = []

    def visit(pkg: Package, version: str) -> None:
        if pkg.manifest_path in index:
            return
        if pkg.name in visiting:
            cycle = visiting[visiting.index(pkg.name):] + [pkg.name]
            raise DependencyCycle(cycle)

        visiting.append(pkg.name)
        for dep in pkg.dependencies:
            if dep.orders_publish and dep.name in by_name:
                visit(*by_name[dep.name])
        visiting.pop()
        index[pkg.manifest_path] = (pkg, version)

    for pkg, version in candidates:
        visit(pkg, version)

    return index, list(index)
