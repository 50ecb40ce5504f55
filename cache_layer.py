from __future__ import annotations

import os
import threading
from typing import Any, Callable

from cachetools import TTLCache

STAGE_DOCS_PREFIX = "STAGE_DOCS:"


def stage_docs_key(stage: str) -> str:
    return f"{STAGE_DOCS_PREFIX}{str(stage or '').strip().lower()}"


class _InMemoryTTLCache:
    """Process-local cache for read-mostly catalog rows (stage document definitions)."""

    def __init__(self):
        ttl = int(os.getenv("CACHE_TTL_SECONDS", "300") or "300")
        max_items = int(os.getenv("CACHE_MAX_ITEMS", "1000") or "1000")
        ttl = max(1, min(3600, ttl))
        max_items = max(16, min(100_000, max_items))
        self._cache = TTLCache(maxsize=max_items, ttl=ttl)
        self._lock = threading.RLock()

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        with self._lock:
            hit = self._cache.get(key)
        if hit is not None:
            return hit
        value = loader()
        with self._lock:
            self._cache[key] = value
        return value

    def invalidate_prefix(self, prefix: str) -> int:
        pfx = str(prefix or "")
        if not pfx:
            return 0
        with self._lock:
            keys = [k for k in list(self._cache.keys()) if str(k).startswith(pfx)]
            for k in keys:
                self._cache.pop(k, None)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


_cache = _InMemoryTTLCache()


def cache_get_or_load(key: str, loader: Callable[[], Any]) -> Any:
    return _cache.get_or_load(key, loader)


def cache_invalidate_prefix(prefix: str) -> int:
    return _cache.invalidate_prefix(prefix)


def cache_clear() -> None:
    _cache.clear()
