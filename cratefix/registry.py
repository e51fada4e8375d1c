"""crates.io sparse index client."""

import asyncio
import json
import logging
import weakref

import httpx

from .errors import InvalidRequirement, NetworkError, NotFoundError, OfflineError
from .policy import AvailableVersion
from .semver import Version

logger = logging.getLogger(__name__)

DEFAULT_INDEX_URL = "https://index.crates.io"


def index_path(name: str) -> str:
    """Return the sparse index path of a crate.

    Args:
        name: Crate name

    Returns:
        Path relative to the index root, e.g. ``se/rd/serde``
    """
    name = name.lower()
    if len(name) == 1:
        return f"1/{name}"
    if len(name) == 2:
        return f"2/{name}"
    if len(name) == 3:
        return f"3/{name[0]}/{name}"
    return f"{name[:2]}/{name[2:4]}/{name}"


def parse_index_file(text: str) -> list[AvailableVersion]:
    """Parse a sparse index file (one JSON object per line)."""
    versions = []
    for line in text.splitlines():
        if not line.strip():
            continue
        record = json.loads(line)
        try:
            version = Version.parse(record["vers"])
        except InvalidRequirement:
            logger.debug("skipping unparsable version %r", record.get("vers"))
            continue
        features = dict(record.get("features", {}))
        features.update(record.get("features2", {}))
        versions.append(
            AvailableVersion(version=version, yanked=bool(record.get("yanked", False)), features=features)
        )
    versions.sort(key=lambda item: item.version)
    return versions


class CratesRegistry:
    """Fetches published versions from a crates.io-style sparse index."""

    def __init__(
        self,
        index_url: str = DEFAULT_INDEX_URL,
        timeout: float = 30.0,
        max_concurrency: int = 6,
        offline: bool = False,
    ):
        """Initialize the registry client.

        Args:
            index_url: Root URL of the sparse index
            timeout: Request timeout in seconds
            max_concurrency: Maximum concurrent requests
            offline: Refuse every lookup instead of touching the network
        """
        self.index_url = index_url.rstrip("/")
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self.offline = offline
        self._cache: dict[str, list[AvailableVersion]] = {}
        # One limiter per event loop; each operation runs its own loop.
        self._semaphores: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()

    async def get_versions(self, name: str) -> list[AvailableVersion]:
        """Get every published version of a crate.

        Args:
            name: Crate name

        Returns:
            Published versions, oldest first
        """
        key = name.lower()
        if key in self._cache:
            return self._cache[key]
        if self.offline:
            raise OfflineError(f"cannot look up `{name}` while offline")

        async with self._limiter():
            text = await self._fetch_index_file(name)
        versions = parse_index_file(text)
        self._cache[key] = versions
        logger.debug("%s: %d published version(s)", name, len(versions))
        return versions

    async def get_many(
        self,
        names: list[str],
        return_exceptions: bool = False,
    ) -> dict[str, list[AvailableVersion] | BaseException]:
        """Look up several crates concurrently.

        Args:
            names: Crate names
            return_exceptions: Map a failed lookup to its exception instead of raising

        Returns:
            Mapping of crate name to its published versions
        """
        unique = list(dict.fromkeys(names))
        results = await asyncio.gather(
            *(self.get_versions(name) for name in unique),
            return_exceptions=return_exceptions,
        )
        return dict(zip(unique, results))

    def _limiter(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        semaphore = self._semaphores.get(loop)
        if semaphore is None:
            semaphore = self._semaphores[loop] = asyncio.Semaphore(self.max_concurrency)
        return semaphore

    async def _fetch_index_file(self, name: str) -> str:
        url = f"{self.index_url}/{index_path(name)}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
                if response.status_code == 404:
                    raise NotFoundError(f"the crate `{name}` could not be found in registry index")
                response.raise_for_status()
                return response.text
        except httpx.TimeoutException as exc:
            raise NetworkError(f"timeout fetching index entry for `{name}`") from exc
        except httpx.HTTPStatusError as exc:
            raise NetworkError(f"HTTP error fetching `{name}`: {exc}") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"network error fetching `{name}`: {exc}") from exc
