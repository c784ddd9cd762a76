"""Ledger snapshot cache with 30-day TTL"""

import json
import logging
import time
from pathlib import Path

from vibesync.core.storage import atomic_write_json

logger = logging.getLogger(__name__)

TTL_DAYS = 30
TTL_SECONDS = TTL_DAYS * 24 * 60 * 60


class LedgerCache:
    """Last-known-good copy of each ledger document, keyed by document path."""

    def __init__(self, cache_file: Path = Path("/config/vibesync/.ledger_cache.json")):
        self._file = cache_file
        self._cache: dict[str, dict] = {}
        self._dirty = False
        self._load()
        self._prune_expired()

    def _load(self) -> None:
        if not self._file.exists():
            return

        try:
            data = json.loads(self._file.read_text())
            for key, value in data.items():
                if isinstance(value, dict) and isinstance(value.get("data"), dict):
                    self._cache[key] = value
                else:
                    self._dirty = True
            logger.debug(f"Loaded {len(self._cache)} cached documents")
        except Exception as e:
            logger.warning(f"Cache load failed: {e}")
            self._cache = {}

    def _prune_expired(self) -> None:
        now = time.time()
        expired = [k for k, v in self._cache.items() if now - v.get("cached_at", 0) > TTL_SECONDS]
        if expired:
            for key in expired:
                del self._cache[key]
            self._dirty = True
            logger.info(f"Pruned {len(expired)} expired cache entries")

    def save(self) -> None:
        if not self._dirty:
            return

        try:
            atomic_write_json(self._file, self._cache, prefix=".cache_")
            self._dirty = False
        except Exception as e:
            logger.error(f"Cache save failed: {e}")

    def get(self, path: str) -> dict | None:
        entry = self._cache.get(path)
        if not entry:
            return None
        if time.time() - entry.get("cached_at", 0) > TTL_SECONDS:
            del self._cache[path]
            self._dirty = True
            return None
        return entry["data"]

    def put(self, path: str, data: dict) -> None:
        self._cache[path] = {"data": data, "cached_at": time.time()}
        self._dirty = True

    def update(self, path: str, data: dict) -> None:
        """Field-level merge into the cached copy, like a merge write on the server."""
        current = self.get(path) or {}
        self.put(path, {**current, **data})

    def discard(self, path: str) -> None:
        if self._cache.pop(path, None) is not None:
            self._dirty = True

    def __len__(self) -> int:
        return len(self._cache)
