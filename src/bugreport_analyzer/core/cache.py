"""Bounded in-process store of analysis results (LRU eviction plus max age)."""

from __future__ import annotations

import hashlib
import os
import threading
import time
from collections import OrderedDict
from pathlib import Path

from .models import AnalysisResult

DEFAULT_CACHE_SIZE = 16
DEFAULT_CACHE_TTL_SECONDS = 3600

# Only the head of the archive is hashed; path and size disambiguate the rest.
_ID_HASH_BYTES = 1 << 20


def _env_int(name: str, default: int) -> int:
    env = os.getenv(name)
    if not env:
        return default
    try:
        value = int(env)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < 1:
        raise ValueError(f"{name} must be >= 1")
    return value


def analysis_id_for(path: str | Path, head: bytes, size: int) -> str:
    digest = hashlib.sha256()
    digest.update(str(Path(path).resolve()).encode("utf-8"))
    digest.update(str(size).encode("ascii"))
    digest.update(head[:_ID_HASH_BYTES])
    return digest.hexdigest()[:16]


class AnalysisCache:
    """Thread-safe LRU cache whose entries also expire after `ttl_seconds`."""

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE, ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._items: OrderedDict[str, tuple[float, AnalysisResult]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._expire(time.monotonic())
            return len(self._items)

    def _expire(self, now: float) -> None:
        expired = [k for k, (stored_at, _) in self._items.items() if now - stored_at > self.ttl_seconds]
        for key in expired:
            del self._items[key]

    def set(self, key: str, result: AnalysisResult) -> None:
        with self._lock:
            now = time.monotonic()
            self._expire(now)
            self._items.pop(key, None)
            while len(self._items) >= self.max_size:
                self._items.popitem(last=False)
            self._items[key] = (now, result)

    def get(self, key: str) -> AnalysisResult | None:
        with self._lock:
            self._expire(time.monotonic())
            item = self._items.get(key)
            if item is None:
                return None
            self._items.move_to_end(key)
            return item[1]

    def keys(self) -> list[str]:
        with self._lock:
            self._expire(time.monotonic())
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


_default_cache: AnalysisCache | None = None
_default_lock = threading.Lock()


def default_cache() -> AnalysisCache:
    """Process-wide cache sized from BUGREPORT_CACHE_SIZE / BUGREPORT_CACHE_TTL_SECONDS."""
    global _default_cache
    with _default_lock:
        if _default_cache is None:
            _default_cache = AnalysisCache(
                max_size=_env_int("BUGREPORT_CACHE_SIZE", DEFAULT_CACHE_SIZE),
                ttl_seconds=_env_int("BUGREPORT_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS),
            )
        return _default_cache


def reset_default_cache() -> None:
    global _default_cache
    with _default_lock:
        _default_cache = None
