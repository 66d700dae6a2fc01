"""Short-lived on-disk cache for issue listings.

One JSON file per query shape under ``<config-root>/cache``. The cache is an
optimization only: unreadable, stale or corrupt files are misses and write
failures are logged at debug level, never raised.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from collections.abc import Callable
from pathlib import Path

from .errors import CacheError
from .models import CacheEntry, IssueListItem

logger = logging.getLogger(__name__)

CACHE_TTL_MS = 2 * 60 * 1000
CONFIG_DIR_ENV = "LOOMCORE_CONFIG_DIR"


def default_cache_dir() -> Path:
    root = os.environ.get(CONFIG_DIR_ENV)
    base = Path(root).expanduser() if root else Path.home() / ".config" / "loomcore"
    return base / "cache"


def cache_key(
    project_path: str | Path,
    provider: str,
    limit: int,
    sprint: str | None = None,
    mine: bool = False,
) -> str:
    raw = f"{project_path}:{provider}:{limit}:{sprint or ''}:{'mine' if mine else ''}"
    return hashlib.md5(raw.encode("utf-8"), usedforsecurity=False).hexdigest()[:12]


class IssueListCache:
    def __init__(
        self,
        cache_dir: Path | None = None,
        *,
        ttl_ms: int = CACHE_TTL_MS,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = cache_dir or default_cache_dir()
        self.ttl_ms = ttl_ms
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def path_for(self, key: str) -> Path:
        return self.cache_dir / f"issues-{key}.json"

    def _load(self, path: Path) -> CacheEntry:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise TypeError("cache file must contain an object")
            return CacheEntry.from_dict(raw)
        except (OSError, ValueError, TypeError, KeyError) as exc:
            raise CacheError(f"Unreadable cache file {path}: {exc}") from exc

    def read(self, key: str) -> list[IssueListItem] | None:
        """Return cached items for ``key`` or None on any miss."""
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            entry = self._load(path)
        except CacheError as exc:
            logger.debug("cache miss (%s)", exc)
            return None
        if self._now_ms() - entry.timestamp_ms >= self.ttl_ms:
            logger.debug("cache expired for %s", path)
            return None
        return entry.data

    def write(
        self, key: str, project_path: str | Path, provider: str, items: list[IssueListItem]
    ) -> None:
        entry = CacheEntry(
            timestamp_ms=self._now_ms(),
            project_path=str(project_path),
            provider=provider,
            data=list(items),
        )
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(entry.to_dict(), indent=2) + "\n", encoding="utf-8")
        except (OSError, TypeError) as exc:
            logger.debug("Failed to write issue cache %s: %s", path, exc)


__all__ = ["IssueListCache", "cache_key", "default_cache_dir", "CACHE_TTL_MS"]
