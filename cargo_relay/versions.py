"""Version parsing, bumping and requirement matching.

Versions are ``semver.Version`` objects. Bumps follow the prerelease-aware
rules used when preparing a release:

- a patch bump of ``0.7.2-rc.0`` releases ``0.7.2`` instead of ``0.7.3``
- a minor bump of ``0.7.0-rc.0`` releases ``0.7.0``
- a major bump of ``1.0.0-rc.0`` releases ``1.0.0``

Requirements are Cargo requirement strings (``"1.2"``, ``"^0.3"``,
``"~1.2.3"``, ``">=1, <2"``, ``"*"``). ``semver`` only knows single
comparisons, so :class:`VersionReq` implements Cargo's matching rules on
top of it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

import semver

UNVERSIONED_REQS = frozenset({"*", ">=0.0.0"})


class Bump(str, Enum):
    """Bump kinds, in the order they are offered when prompting."""

    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"
    PREPATCH = "prepatch"
    PREMINOR = "preminor"
    PREMAJOR = "premajor"
    PRERELEASE = "prerelease"
    CUSTOM = "custom"

    @property
    def selected(self) -> int:
        """Index of this bump among the prompt items."""
        return list(Bump).index(self)


def parse_version(version_str: str) -> semver.Version:
    """Parse a full semver string such as ``1.2.3`` or ``1.0.0-rc.1``.

    Raises:
        ValueError: If the string is not valid semver.
    """
    return semver.Version.parse(version_str.strip())


def _pre_ids(version: semver.Version) -> list[str]:
    return version.prerelease.split(".") if version.prerelease else []


def _with_pre(version: semver.Version, ids: list[str]) -> semver.Version:
    return version.replace(prerelease=".".join(ids) if ids else None)


def inc_patch(version: semver.Version) -> semver.Version:
    """Next patch version; a prerelease of x.y.z releases as x.y.z."""
    if version.prerelease:
        return version.replace(prerelease=None)
    return semver.Version(version.major, version.minor, version.patch + 1)


def inc_minor(version: semver.Version) -> semver.Version:
    """Next minor version; a prerelease of x.y.0 releases as x.y.0."""
    if version.prerelease and version.patch == 0:
        return version.replace(prerelease=None)
    return semver.Version(version.major, version.minor + 1, 0)


def inc_major(version: semver.Version) -> semver.Version:
    """Next major version; a prerelease of x.0.0 releases as x.0.0."""
    if version.prerelease and version.patch == 0 and version.minor == 0:
        return version.replace(prerelease=None)
    return semver.Version(version.major + 1, 0, 0)


def inc_pre(pre: list[str], preid: str | None) -> list[str]:
    """Prerelease identifiers for a fresh pre-bump.

    Keeps an existing alphanumeric identifier, restarts a numeric one, and
    otherwise starts at ``<preid>.0`` (``alpha.0`` by default).
    """
    if not pre:
        return [preid or "alpha", "0"]
    if pre[0].isdigit():
        return ["0"]
    return [pre[0], "0"]


def inc_preid(version: semver.Version, preid: str) -> semver.Version:
    """Increment the prerelease of ``version`` using identifier ``preid``.

    Examples:
        "3.0.0", "beta" → "3.0.1-beta.0"
        "3.0.0-beta.4", "beta" → "3.0.0-beta.5"
        "3.0.0-alpha.19", "beta" → "3.0.0-beta.0"
        "3.0.0-11.20.a.55", "11" → "3.0.0-11.20.a.56"
    """
    pre = _pre_ids(version)
    if not pre:
        bumped = semver.Version(version.major, version.minor, version.patch + 1)
        return _with_pre(bumped, [preid, "0"])

    first = pre[0]
    if not first.isdigit():
        if preid == first and len(pre) > 1 and pre[1].isdigit():
            return _with_pre(version, [preid, str(int(pre[1]) + 1)])
        return _with_pre(version, [preid, "0"])

    if preid != first:
        return _with_pre(version, [preid, "0"])
    new_pre = list(pre)
    for i in range(len(new_pre) - 1, -1, -1):
        if new_pre[i].isdigit():
            new_pre[i] = str(int(new_pre[i]) + 1)
            break
    return _with_pre(version, new_pre)


def custom_pre(version: semver.Version) -> tuple[str, semver.Version]:
    """Default identifier for a custom prerelease and the version it yields."""
    pre = _pre_ids(version)
    preid = pre[0] if pre else "alpha"
    return preid, inc_preid(version, preid)


def version_items(
    version: semver.Version, preid: str | None = None
) -> list[tuple[str, semver.Version]]:
    """Labelled candidate versions for the bump prompt, in :class:`Bump` order."""
    pre = inc_pre(_pre_ids(version), preid)
    items = [
        ("Patch", inc_patch(version)),
        ("Minor", inc_minor(version)),
        ("Major", inc_major(version)),
        (
            "Prepatch",
            _with_pre(semver.Version(version.major, version.minor, version.patch + 1), pre),
        ),
        ("Preminor", _with_pre(semver.Version(version.major, version.minor + 1, 0), pre)),
        ("Premajor", _with_pre(semver.Version(version.major + 1, 0, 0), pre)),
    ]
    return [(f"{label} ({v})", v) for label, v in items]


def bump_version(
    version: semver.Version, bump: Bump, preid: str | None = None
) -> semver.Version:
    """Apply a non-interactive bump.

    ``Bump.CUSTOM`` has no derivable value and raises ``ValueError``.
    """
    if bump is Bump.CUSTOM:
        raise ValueError("a custom bump needs an explicit version")
    if bump is Bump.PRERELEASE:
        return inc_preid(version, preid) if preid else custom_pre(version)[1]
    return version_items(version, preid)[bump.selected][1]


def is_unversioned_req(req: str) -> bool:
    """True for requirements that accept any version (``*`` / ``>=0.0.0``)."""
    return re.sub(r"\s+", "", req) in UNVERSIONED_REQS


def is_trivial_version(version: semver.Version) -> bool:
    """Whether ``version`` is the 0.0.0 placeholder, never worth pinning."""
    return (
        version.major == 0
        and version.minor == 0
        and version.patch == 0
        and not version.prerelease
        and not version.build
    )


# Requirement matching

_PART = r"(\*|[xX]|\d+)"
_COMPARATOR = re.compile(
    rf"^(=|>=|<=|>|<|~|\^)?\s*{_PART}(?:\.{_PART})?(?:\.{_PART})?"
    r"(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)


def _cmp_pre(a: tuple[str, ...], b: tuple[str, ...]) -> int:
    """Compare prerelease identifiers; an empty prerelease sorts last."""
    if a == b:
        return 0
    if not a:
        return 1
    if not b:
        return -1
    for x, y in zip(a, b):
        if x == y:
            continue
        if x.isdigit() and y.isdigit():
            return -1 if int(x) < int(y) else 1
        if x.isdigit():
            return -1
        if y.isdigit():
            return 1
        return -1 if x < y else 1
    return -1 if len(a) < len(b) else 1


@dataclass(frozen=True)
class Comparator:
    """One comparator of a requirement, e.g. ``^1.2`` or ``>=0.3.0-beta``.

    Missing ``minor``/``patch`` components are wildcards.
    """

    op: str
    major: int
    minor: int | None = None
    patch: int | None = None
    pre: tuple[str, ...] = ()

    def _exact(self, v: semver.Version, pre: tuple[str, ...]) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return False
        return pre == self.pre

    def _greater(self, v: semver.Version, pre: tuple[str, ...]) -> bool:
        if v.major != self.major:
            return v.major > self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor > self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch > self.patch
        return _cmp_pre(pre, self.pre) > 0

    def _less(self, v: semver.Version, pre: tuple[str, ...]) -> bool:
        if v.major != self.major:
            return v.major < self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor < self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch < self.patch
        return _cmp_pre(pre, self.pre) < 0

    def _tilde(self, v: semver.Version, pre: tuple[str, ...]) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return v.patch > self.patch
        return _cmp_pre(pre, self.pre) >= 0

    def _caret(self, v: semver.Version, pre: tuple[str, ...]) -> bool:
        if v.major != self.major:
            return False
        if self.minor is None:
            return True
        if self.patch is None:
            return v.minor >= self.minor if self.major > 0 else v.minor == self.minor
        if self.major > 0:
            if v.minor != self.minor:
                return v.minor > self.minor
            if v.patch != self.patch:
                return v.patch > self.patch
        elif self.minor > 0:
            if v.minor != self.minor:
                return False
            if v.patch != self.patch:
                return v.patch > self.patch
        elif v.minor != self.minor or v.patch != self.patch:
            return False
        return _cmp_pre(pre, self.pre) >= 0

    def matches(self, v: semver.Version) -> bool:
        """Whether ``v`` satisfies this comparator, ignoring the prerelease opt-in rule."""
        pre = tuple(_pre_ids(v))
        if self.op in ("=", "*"):
            return self._exact(v, pre)
        if self.op == ">":
            return self._greater(v, pre)
        if self.op == ">=":
            return self._exact(v, pre) or self._greater(v, pre)
        if self.op == "<":
            return self._less(v, pre)
        if self.op == "<=":
            return self._exact(v, pre) or self._less(v, pre)
        if self.op == "~":
            return self._tilde(v, pre)
        return self._caret(v, pre)

    def allows_prerelease_of(self, v: semver.Version) -> bool:
        """Whether this comparator names a prerelease of the same major.minor.patch as ``v``."""
        return (
            self.major == v.major
            and self.minor == v.minor
            and self.patch == v.patch
            and bool(self.pre)
        )


@dataclass(frozen=True)
class VersionReq:
    """A parsed Cargo version requirement.

    An empty comparator list is the ``*`` requirement.
    """

    text: str
    comparators: tuple[Comparator, ...]

    @classmethod
    def parse(cls, text: str) -> VersionReq:
        """Parse a requirement string.

        Raises:
            ValueError: If any comparator is malformed.
        """
        stripped = text.strip()
        if stripped in ("*", "x", "X"):
            return cls(stripped, ())
        comparators: list[Comparator] = []
        for part in stripped.split(","):
            m = _COMPARATOR.match(part.strip())
            if not m:
                raise ValueError(f"invalid version requirement: {text!r}")
            op, *numbers, pre = m.groups()
            parsed: list[int | None] = []
            wildcard = False
            for n in numbers:
                if n is None or n in ("*", "x", "X"):
                    wildcard = wildcard or n is not None
                    parsed.append(None)
                elif any(p is None for p in parsed):
                    raise ValueError(f"invalid version requirement: {text!r}")
                else:
                    parsed.append(int(n))
            major, minor, patch = parsed
            if major is None:
                # ``*`` inside a comparator list contributes nothing.
                continue
            if wildcard and op not in (None, "="):
                raise ValueError(f"invalid wildcard requirement: {text!r}")
            comparators.append(
                Comparator(
                    op="*" if wildcard else (op or "^"),
                    major=major,
                    minor=minor,
                    patch=patch,
                    pre=tuple(pre.split(".")) if pre else (),
                )
            )
        return cls(stripped, tuple(comparators))

    def matches(self, version: semver.Version) -> bool:
        """Whether ``version`` satisfies every comparator.

        A prerelease only matches when some comparator names a prerelease of the
        same major.minor.patch, as in Cargo.
        """
        if not all(c.matches(version) for c in self.comparators):
            return False
        if not version.prerelease:
            return True
        return any(c.allows_prerelease_of(version) for c in self.comparators)

    def __str__(self) -> str:
        return self.text
