"""Publishing.

Packages are uploaded one at a time in dependency order. After each upload
the registry index is polled until the new version is visible, so that
dependents published next can resolve it.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel

from . import cargo
from .config import WorkspaceConfig
from .errors import PublishFailed
from .git import GitOptions
from .graph import Candidate
from .index import DEFAULT_INDEX, POLL_INTERVAL, POLL_TIMEOUT, IndexClient
from .models import Package, VersionBump, VersionPlan
from .shell import info, step

#: Registry name cargo reserves for crates.io; it has no ``registries`` entry.
CRATES_IO = "crates-io"


class PublishOptions(BaseModel):
    """Options for ``cargo publish`` and index polling.

    Attributes:
        from_git: Publish the versions in the manifests without versioning.
        no_verify: Pass ``--no-verify``.
        allow_dirty: Pass ``--allow-dirty``.
        token: Registry token.
        registry: Registry to publish to, overriding the manifest.
        poll_interval: Seconds between index checks.
        poll_timeout: Seconds to wait for a version to become visible.
    """

    from_git: bool = False
    no_verify: bool = False
    allow_dirty: bool = False
    token: str | None = None
    registry: str | None = None
    poll_interval: float = POLL_INTERVAL
    poll_timeout: float = POLL_TIMEOUT


def is_publishable(pkg: Package) -> bool:
    """Unrestricted, or restricted to at least one registry."""
    return pkg.publish is None or len(pkg.publish) > 0


class PublishCoordinator:
    """Publishes candidates in order, then tags and pushes the release.

    Index clients are created per registry index URL and shared between
    packages published to the same registry.
    """

    def __init__(
        self,
        root: Path,
        options: PublishOptions,
        *,
        index_factory: Callable[[str], IndexClient] = IndexClient,
    ) -> None:
        self.root = root
        self.options = options
        self._index_factory = index_factory
        self._indexes: dict[str, IndexClient] = {}

    def registry_for(self, pkg: Package) -> str | None:
        """The registry named by the options, else the first one the manifest allows."""
        if self.options.registry:
            return self.options.registry
        return pkg.publish[0] if pkg.publish else None

    def index_for(self, pkg: Package) -> IndexClient:
        """The index client for the registry ``pkg`` is published to."""
        registry = self.registry_for(pkg)
        url = DEFAULT_INDEX
        if registry is not None and registry != CRATES_IO:
            url = cargo.config_get(self.root, f"registries.{registry}.index")
        if url not in self._indexes:
            self._indexes[url] = self._index_factory(url)
        return self._indexes[url]

    def close(self) -> None:
        """Close every index client opened so far."""
        for index in self._indexes.values():
            index.close()
        self._indexes.clear()

    def publish_one(self, pkg: Package, version: str) -> bool:
        """Publish one package. Returns ``False`` if it was already published.

        Raises:
            PublishFailed: If cargo does not report a successful upload.
            PublishTimeout: If the version never shows up in the index.
        """
        name_ver = f"{pkg.name} v{version}"
        index = self.index_for(pkg)
        if index.is_published(pkg.name, version):
            info("already published", name_ver)
            return False

        _, stderr = cargo.publish(
            self.root,
            pkg.manifest_path,
            registry=self.options.registry,
            token=self.options.token,
            no_verify=self.options.no_verify,
            allow_dirty=self.options.allow_dirty,
        )
        if "Uploading" not in stderr or "error:" in stderr:
            raise PublishFailed(pkg.name, stderr)

        index.wait_until_published(
            pkg.name,
            version,
            interval=self.options.poll_interval,
            timeout=self.options.poll_timeout,
        )
        info("published", name_ver)
        return True

    def publish(
        self,
        order: list[Path],
        index: dict[Path, Candidate],
        plan: VersionPlan | None = None,
        *,
        git: GitOptions | None = None,
        config: WorkspaceConfig | None = None,
        branch: str | None = None,
    ) -> list[str]:
        """Publish every eligible package in ``order``, then tag and push.

        Args:
            order: Manifest paths in dependency order, from :func:`graph.dag`.
            index: Manifest path → (package, version), from :func:`graph.dag`.
            plan: The version plan that produced the versions, if any. Its
                shared version drives the workspace tag.
            git: Tagging and push options. No tags are made without them.
            config: Workspace configuration (``no_individual_tags``).
            branch: Branch to push.

        Returns:
            Names of the packages published by this run.
        """
        step("Publishing")
        published: list[str] = []
        try:
            for path in order:
                pkg, version = index[path]
                if not is_publishable(pkg):
                    continue
                if self.publish_one(pkg, version):
                    published.append(pkg.name)
        finally:
            self.close()

        if git is not None:
            packages = {pkg.name: pkg for pkg, _ in index.values()}
            if plan is None:
                plan = VersionPlan(
                    bumps={
                        pkg.name: VersionBump(old=version, new=version)
                        for pkg, version in index.values()
                        if is_publishable(pkg)
                    }
                )
            git.tag_release(self.root, plan, packages, config or WorkspaceConfig())
            git.push(self.root, branch)

        info("success", "ok")
        return published
