"""Sparse registry index client.

Cargo's sparse index serves one file per crate, one JSON record per line,
at a path derived from the crate name::

    a          → 1/a
    ab         → 2/ab
    abc        → 3/a/abc
    serde      → se/rd/serde

Only ``vers`` is read from each record.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Final

import httpx

from .errors import PublishTimeout, RegistryIndexError
from .shell import debug

DEFAULT_INDEX: Final[str] = "https://index.crates.io/"
POLL_INTERVAL: Final[float] = 2.0
POLL_TIMEOUT: Final[float] = 300.0
DEFAULT_TIMEOUT: Final[float] = 30.0
MAX_RETRIES: Final[int] = 3

MISSING_STATUS_CODES: Final[frozenset[int]] = frozenset({404, 410, 451})
RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})


def index_path(name: str) -> str:
    """Path of a crate's file inside the sparse index."""
    name = name.lower()
    if len(name) == 1:
        return f"1/{name}"
    if len(name) == 2:
        return f"2/{name}"
    if len(name) == 3:
        return f"3/{name[0]}/{name}"
    return f"{name[:2]}/{name[2:4]}/{name}"


def normalize_index_url(url: str) -> str:
    """Strip the ``sparse+`` scheme prefix and ensure a trailing slash.

    Raises:
        RegistryIndexError: If the index is not served over HTTP.
    """
    if url.startswith("sparse+"):
        url = url[len("sparse+"):]
    if not url.startswith(("http://", "https://")):
        raise RegistryIndexError(f"only sparse HTTP registry indexes are supported, got {url!r}")
    return url if url.endswith("/") else f"{url}/"


class IndexClient:
    """Queries a sparse index for published versions.

    Args:
        index_url: Index root, with or without ``sparse+``.
        client: An existing httpx client, e.g. one built on
            ``httpx.MockTransport`` in tests.
        sleep: Called between polls and retries.
        clock: Monotonic clock used for the poll deadline.
    """

    def __init__(
        self,
        index_url: str = DEFAULT_INDEX,
        *,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.index_url = normalize_index_url(index_url)
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(DEFAULT_TIMEOUT), follow_redirects=True
        )
        self._sleep = sleep
        self._clock = clock

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> IndexClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _get(self, url: str, fresh: bool) -> httpx.Response:
        """GET ``url``, retrying transport errors, 429 and 5xx with exponential backoff."""
        headers = {"Cache-Control": "no-cache"} if fresh else {}
        for attempt in range(MAX_RETRIES + 1):
            try:
                response = self._client.get(url, headers=headers)
            except httpx.TransportError as exc:
                if attempt == MAX_RETRIES:
                    raise RegistryIndexError(f"unable to reach registry index {url}: {exc}") from exc
                debug("index", f"{url} failed ({exc}), retrying")
            else:
                if response.status_code not in RETRYABLE_STATUS_CODES or attempt == MAX_RETRIES:
                    return response
                debug("index", f"{url} returned {response.status_code}, retrying")
            self._sleep(2.0**attempt)
        raise AssertionError("unreachable")

    def versions(self, name: str, *, fresh: bool = False) -> list[str]:
        """All versions of ``name`` known to the index, oldest first.

        Raises:
            RegistryIndexError: On an unexpected status or a malformed record.
        """
        url = f"{self.index_url}{index_path(name)}"
        response = self._get(url, fresh)
        if response.status_code in MISSING_STATUS_CODES:
            return []
        if response.status_code != 200:
            raise RegistryIndexError(
                f"registry index returned {response.status_code} for {url}"
            )
        found: list[str] = []
        for line in response.text.splitlines():
            if not line.strip():
                continue
            try:
                found.append(str(json.loads(line)["vers"]))
            except (ValueError, KeyError, TypeError) as exc:
                raise RegistryIndexError(f"malformed index record for `{name}`: {line!r}") from exc
        return found

    def is_published(self, name: str, version: str, *, fresh: bool = False) -> bool:
        """Whether ``version`` of ``name`` is in the index."""
        return version in self.versions(name, fresh=fresh)

    def wait_until_published(
        self,
        name: str,
        version: str,
        *,
        interval: float = POLL_INTERVAL,
        timeout: float = POLL_TIMEOUT,
    ) -> None:
        """Poll until ``name@version`` is visible.

        Raises:
            PublishTimeout: If it is not visible within ``timeout`` seconds
                of the first check.
        """
        deadline = self._clock() + timeout
        attempt = 0
        while True:
            attempt += 1
            if self.is_published(name, version, fresh=True):
                debug("index", f"{name} v{version} visible after {attempt} checks")
                return
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise PublishTimeout(name, version, timeout)
            self._sleep(min(interval, remaining))
