"""Line-oriented Cargo.toml rewriting.

tomlkit round-trips most formatting, but not all of it (inline table
spacing, quote style, comments inside tables), and a release must not touch
anything except the fields it is changing. This module therefore edits
manifests as text: a single forward scan classifies every line by the table
it sits in, and only lines holding a package ``name``/``version`` or an
internal dependency declaration are rewritten. Everything else is copied
through byte for byte, including the file's line-ending style.

Two edits are supported:

- :func:`change_versions` applies a version map (package name → new version)
  to ``[package]``/``[workspace.package]`` versions and to dependency
  requirements.
- :func:`rename_packages` applies a rename map (old name → new name) to
  ``[package]`` names and dependency declarations, keeping the old key as
  the dependency alias through a ``package = "..."`` field.

Dependency sub-tables (``[dependencies.foo]``) span several lines, so their
state is accumulated until the next table header and then flushed, which
may append a missing ``version``/``package`` line.
"""

from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ManifestError
from .versions import VersionReq, is_unversioned_req, parse_version

CRLF = "\r\n"
LF = "\n"

#: Version map key used for ``[workspace.package] version``.
WORKSPACE_VERSION_KEY = "<workspace>"

_ID = r"[0-9A-Za-z_-]+"
_Q = r"['\"]"

NAME = re.compile(rf"^(\s*{_Q}?name{_Q}?\s*=\s*{_Q})({_ID})({_Q}.*)$")
VERSION = re.compile(rf"^(\s*{_Q}?version{_Q}?\s*=\s*{_Q})([^'\"]+)({_Q}.*)$")
PACKAGE = re.compile(rf"^(\s*{_Q}?package{_Q}?\s*=\s*{_Q})({_ID})({_Q}.*)$")

PACKAGE_TABLE = re.compile(r"^\[\s*(workspace\.)?package\s*]")
DEP_TABLE = re.compile(
    r"^\[\s*(?:target\.(?:'[^']+'|\"[^\"]+\"|[^.'\"\]]+)\.|(workspace)\.)?"
    rf"(dev-|build-)?dependencies(?:\.({_ID}))?\s*]"
)

DEP_DIRECT_VERSION = re.compile(rf"^(\s*{_Q}?({_ID}){_Q}?\s*=\s*{_Q})([^'\"]+)({_Q}.*)$")
DEP_DIRECT_INHERITED = re.compile(
    rf"^\s*{_Q}?({_ID}){_Q}?\s*\.\s*{_Q}?workspace{_Q}?\s*=\s*true\s*.*$"
)
# Body of an inline table, up to its closing brace.
_IN = r"[^}]*"

DEP_OBJ_VERSION = re.compile(
    rf"^(\s*{_Q}?({_ID}){_Q}?\s*=\s*\{{{_IN}{_Q}?version{_Q}?\s*=\s*{_Q})([^'\"]+)({_Q}{_IN}}}.*)$"
)
DEP_OBJ_INHERITED = re.compile(
    rf"^\s*{_Q}?({_ID}){_Q}?\s*=\s*\{{{_IN}{_Q}?workspace{_Q}?\s*=\s*true{_IN}}}.*$"
)
DEP_OBJ_RENAME_VERSION = re.compile(
    rf"^(\s*{_Q}?({_ID}){_Q}?\s*=\s*\{{{_IN}{_Q}?version{_Q}?\s*=\s*{_Q})([^'\"]+)"
    rf"({_Q}{_IN}{_Q}?package{_Q}?\s*=\s*{_Q}({_ID}){_Q}{_IN}}}.*)$"
)
DEP_OBJ_RENAME_BEFORE_VERSION = re.compile(
    rf"^(\s*{_Q}?{_ID}{_Q}?\s*=\s*\{{{_IN}{_Q}?package{_Q}?\s*=\s*{_Q}({_ID}){_Q}"
    rf"{_IN}{_Q}?version{_Q}?\s*=\s*{_Q})([^'\"]+)({_Q}{_IN}}}.*)$"
)
DEP_DIRECT_NAME = re.compile(rf"^(\s*{_Q}?({_ID}){_Q}?\s*=\s*)({_Q}[^'\"]+{_Q})(.*)$")
DEP_OBJ_NAME = re.compile(rf"^(\s*{_Q}?({_ID}){_Q}?\s*=\s*\{{({_IN}[^\s}}])?)(\s*}}.*)$")
DEP_OBJ_RENAME_NAME = re.compile(
    rf"^(\s*{_Q}?{_ID}{_Q}?\s*=\s*\{{{_IN}{_Q}?package{_Q}?\s*=\s*{_Q})({_ID})({_Q}{_IN}}}.*)$"
)
INLINE_PACKAGE = re.compile(rf"{_Q}?package{_Q}?\s*=\s*{_Q}({_ID}){_Q}")
WORKSPACE_KEY = re.compile(rf"{_Q}?workspace{_Q}?\s*=\s*true")


@dataclass
class ManifestDocument:
    """A manifest split into lines, remembering how to join them back."""

    lines: list[str]
    newline: str = LF
    trailing_newline: bool = False

    @classmethod
    def parse(cls, text: str) -> ManifestDocument:
        """Split ``text`` into lines, noting its line ending and final newline."""
        newline = CRLF if CRLF in text else LF
        trailing = text.endswith(LF)
        body = text[:-1] if trailing else text
        lines = [line[:-1] if line.endswith("\r") else line for line in body.split(LF)]
        return cls(lines=lines, newline=newline, trailing_newline=trailing)

    def render(self, lines: list[str] | None = None) -> str:
        """Join ``lines`` (default: the parsed ones) the way the input was joined."""
        text = self.newline.join(self.lines if lines is None else lines)
        return text + self.newline if self.trailing_newline else text


# Scan contexts. ``_Irrelevant`` also covers the lines before the first table.


class _Irrelevant:
    pass


@dataclass
class _PackageTable:
    workspace: bool


class _DependencyTable:
    pass


@dataclass
class _DependencyEntry:
    name: str
    insert_at: int
    meta: tuple[int, str] | None = None
    inherits: bool = False


_Context = _Irrelevant | _PackageTable | _DependencyTable | _DependencyEntry


def _classify(header: str, dev_deps: bool, insert_at: int) -> _Context:
    """Scan context for the lines under table ``header``."""
    m = PACKAGE_TABLE.match(header)
    if m:
        return _PackageTable(workspace=m.group(1) is not None)
    m = DEP_TABLE.match(header)
    if m is None:
        return _Irrelevant()
    _workspace, kind, entry = m.groups()
    if kind == "dev-" and not dev_deps:
        return _Irrelevant()
    if entry:
        return _DependencyEntry(name=entry, insert_at=insert_at)
    return _DependencyTable()


class _Edit:
    """Per-context line handlers. ``None`` means "keep the line as is"."""

    def package_line(self, line: str, workspace: bool) -> str | None:
        return None

    def dependency_line(self, line: str) -> str | None:
        return None

    def entry_line(self, line: str, entry: _DependencyEntry, index: int) -> None:
        pass

    def finish_entry(self, entry: _DependencyEntry, lines: list[str]) -> None:
        pass


def _scan(manifest: str, edit: _Edit, dev_deps: bool) -> str:
    """Run ``edit`` over every line of ``manifest`` and return the new text."""
    doc = ManifestDocument.parse(manifest)
    context: _Context = _Irrelevant()
    new_lines: list[str] = []

    for line in doc.lines:
        trimmed = line.strip()
        if trimmed.startswith("["):
            if isinstance(context, _DependencyEntry):
                edit.finish_entry(context, new_lines)
            context = _classify(trimmed, dev_deps, len(new_lines) + 1)
            new_lines.append(line)
            continue

        new_line = None
        if isinstance(context, _PackageTable):
            new_line = edit.package_line(line, context.workspace)
        elif isinstance(context, _DependencyTable):
            new_line = edit.dependency_line(line)
        elif isinstance(context, _DependencyEntry):
            edit.entry_line(line, context, len(new_lines))
            if trimmed:
                context.insert_at = len(new_lines) + 1
        new_lines.append(line if new_line is None else new_line)

    if isinstance(context, _DependencyEntry):
        edit.finish_entry(context, new_lines)

    return doc.render(new_lines)


class _VersionEdit(_Edit):
    """Applies a version map."""

    def __init__(
        self,
        pkg_name: str,
        versions: Mapping[str, str],
        exact: bool,
        inherited: set[str],
        autoversion: bool,
    ) -> None:
        self.pkg_name = pkg_name
        self.versions = {k: str(v) for k, v in versions.items()}
        self.exact = exact
        self.inherited = inherited
        self.autoversion = autoversion

    def _needs_update(self, req: str, new_version: str) -> bool:
        """Whether requirement ``req`` must be rewritten for ``new_version``."""
        if self.exact:
            return True
        if self.autoversion and is_unversioned_req(req):
            return True
        try:
            return not VersionReq.parse(req).matches(parse_version(new_version))
        except ValueError as exc:
            raise ManifestError(self.pkg_name, str(exc)) from exc

    def _requirement(self, new_version: str) -> str:
        return f"={new_version}" if self.exact else new_version

    def _edit_version(self, m: re.Match[str], name_group: int) -> str | None:
        new_version = self.versions.get(m.group(name_group))
        if new_version is None or not self._needs_update(m.group(3), new_version):
            return None
        return f"{m.group(1)}{self._requirement(new_version)}{m.group(4)}"

    def package_line(self, line: str, workspace: bool) -> str | None:
        key = WORKSPACE_VERSION_KEY if workspace else self.pkg_name
        new_version = self.versions.get(key)
        m = VERSION.match(line)
        if new_version is None or m is None:
            return None
        return f"{m.group(1)}{new_version}{m.group(3)}"

    def dependency_line(self, line: str) -> str | None:
        """Rewrite or inject the version of a one-line dependency declaration."""
        for pattern in (DEP_DIRECT_INHERITED, DEP_OBJ_INHERITED):
            m = pattern.match(line)
            if m:
                self.inherited.add(m.group(1))
                return None

        for pattern, name_group in (
            (DEP_DIRECT_VERSION, 2),
            (DEP_OBJ_RENAME_VERSION, 5),
            (DEP_OBJ_RENAME_BEFORE_VERSION, 2),
            (DEP_OBJ_VERSION, 2),
        ):
            m = pattern.match(line)
            if m:
                return self._edit_version(m, name_group)

        m = DEP_OBJ_NAME.match(line)
        if m is None or not self.autoversion:
            return None
        inner = m.group(3) or ""
        alias = INLINE_PACKAGE.search(inner)
        new_version = self.versions.get(alias.group(1) if alias else m.group(2))
        if new_version is None:
            return None
        sep = "," if inner else ""
        return f'{m.group(1)}{sep} version = "{self._requirement(new_version)}"{m.group(4)}'

    def entry_line(self, line: str, entry: _DependencyEntry, index: int) -> None:
        if WORKSPACE_KEY.search(line):
            entry.inherits = True
            return
        m = PACKAGE.match(line)
        if m:
            entry.name = m.group(2)
        elif VERSION.match(line):
            entry.meta = (index, line)

    def finish_entry(self, entry: _DependencyEntry, lines: list[str]) -> None:
        """Rewrite the sub-table's version line, or append one."""
        if entry.inherits:
            self.inherited.add(entry.name)
            return
        new_version = self.versions.get(entry.name)
        if new_version is None:
            return
        if entry.meta is not None:
            index, line = entry.meta
            m = VERSION.match(line)
            if m and self._needs_update(m.group(2), new_version):
                lines[index] = f"{m.group(1)}{self._requirement(new_version)}{m.group(3)}"
        elif self.autoversion:
            lines.insert(entry.insert_at, f'version = "{self._requirement(new_version)}"')


class _RenameEdit(_Edit):
    """Applies a rename map, keeping old keys as aliases."""

    def __init__(self, pkg_name: str, renames: Mapping[str, str]) -> None:
        self.pkg_name = pkg_name
        self.renames = renames

    def package_line(self, line: str, workspace: bool) -> str | None:
        to = None if workspace else self.renames.get(self.pkg_name)
        m = NAME.match(line)
        if to is None or m is None:
            return None
        return f"{m.group(1)}{to}{m.group(3)}"

    def dependency_line(self, line: str) -> str | None:
        """Rename a one-line dependency declaration."""
        m = DEP_DIRECT_NAME.match(line)
        if m:
            new_name = self.renames.get(m.group(2))
            if new_name is None:
                return None
            return (
                f'{m.group(1)}{{ version = {m.group(3)}, package = "{new_name}" }}{m.group(4)}'
            )

        m = DEP_OBJ_RENAME_NAME.match(line)
        if m:
            new_name = self.renames.get(m.group(2))
            if new_name is None:
                return None
            return f"{m.group(1)}{new_name}{m.group(3)}"

        m = DEP_OBJ_NAME.match(line)
        if m:
            new_name = self.renames.get(m.group(2))
            inner = m.group(3) or ""
            if new_name is None or WORKSPACE_KEY.search(inner):
                return None
            sep = "," if inner else ""
            return f'{m.group(1)}{sep} package = "{new_name}"{m.group(4)}'
        return None

    def entry_line(self, line: str, entry: _DependencyEntry, index: int) -> None:
        if WORKSPACE_KEY.search(line):
            entry.inherits = True
        elif PACKAGE.match(line):
            entry.meta = (index, line)

    def finish_entry(self, entry: _DependencyEntry, lines: list[str]) -> None:
        """Rewrite the sub-table's package line, or append one."""
        if entry.meta is not None:
            index, line = entry.meta
            m = PACKAGE.match(line)
            new_name = self.renames.get(m.group(2)) if m else None
            if m and new_name is not None:
                lines[index] = f"{m.group(1)}{new_name}{m.group(3)}"
        elif not entry.inherits and entry.name in self.renames:
            lines.insert(entry.insert_at, f'package = "{self.renames[entry.name]}"')


def change_versions(
    manifest: str,
    pkg_name: str,
    versions: Mapping[str, str],
    *,
    exact: bool = False,
    inherited: set[str] | None = None,
    dev_deps: bool = False,
    autoversion: bool = True,
) -> str:
    """Apply a version map to a manifest's text.

    Args:
        manifest: Full manifest text.
        pkg_name: Name of the package this manifest declares. Its
            ``[package] version`` is set from ``versions[pkg_name]``;
            ``[workspace.package] version`` uses ``WORKSPACE_VERSION_KEY``.
        versions: Map of package name → new version.
        exact: Pin dependency requirements with ``=`` even when the current
            requirement already matches.
        inherited: Collects names of dependencies declared with
            ``workspace = true``; those lines are never edited.
        dev_deps: Also edit ``[dev-dependencies]`` tables.
        autoversion: Inject the new version into dependency declarations
            that have no version or an unconstrained one (``*``).

    Returns:
        The rewritten manifest text.

    Raises:
        ManifestError: If an existing requirement cannot be parsed.
    """
    edit = _VersionEdit(
        pkg_name,
        versions,
        exact,
        inherited if inherited is not None else set(),
        autoversion,
    )
    return _scan(manifest, edit, dev_deps)


def rename_packages(manifest: str, pkg_name: str, renames: Mapping[str, str]) -> str:
    """Apply a rename map to a manifest's text.

    Dependencies keep their old key and gain ``package = "<new name>"``.
    Dev-dependencies are always renamed: a stale name would break the build.
    """
    return _scan(manifest, _RenameEdit(pkg_name, renames), dev_deps=True)


def read_manifest(path: Path) -> str:
    """Read a manifest without newline translation."""
    try:
        return path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestError(str(path), f"unable to read manifest: {exc}") from exc


def write_manifest(path: Path, text: str) -> None:
    """Replace a manifest atomically: write a sibling temp file, then rename."""
    try:
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    except OSError as exc:
        raise ManifestError(str(path), f"unable to write manifest: {exc}") from exc
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(text.encode("utf-8"))
        os.replace(tmp, path)
    except OSError as exc:
        Path(tmp).unlink(missing_ok=True)
        raise ManifestError(str(path), f"unable to write manifest: {exc}") from exc
