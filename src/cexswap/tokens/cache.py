"""In-memory TTL cache with single-flight loading.

Concurrent misses for the same key share one loader call.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any = None
    has_value: bool = False
    expires_at: float = 0.0
    in_flight: Optional[asyncio.Task] = None


class TTLCache:
    """In-memory TTL cache with single-flight loading.

    Concurrent callers for the same key share one loader call. If a reload
    fails, the last good value is served instead of the error.
    """

    def __init__(self, default_ttl: float = 600, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        """Get a fresh value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None or not entry.has_value or entry.expires_at <= self._clock():
            return None
        return entry.value

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        refresh: bool = False,
        ttl: Optional[float] = None,
    ) -> tuple[Any, bool]:
        """Return (value, cached) for a key, loading it at most once at a time."""
        entry = self._entries.setdefault(key, CacheEntry())

        if not refresh:
            if entry.has_value and entry.expires_at > self._clock():
                return entry.value, True
            if entry.in_flight is not None:
                return await asyncio.shield(entry.in_flight), True

        task = asyncio.ensure_future(self._load(key, entry, loader, ttl or self.default_ttl))
        entry.in_flight = task
        return await asyncio.shield(task), False

    async def _load(
        self,
        key: str,
        entry: CacheEntry,
        loader: Callable[[], Awaitable[Any]],
        ttl: float,
    ) -> Any:
        try:
            value = await loader()
        except Exception as e:
            if entry.has_value:
                logger.warning(f"Cache reload for {key!r} failed, serving last good value: {e}")
                return entry.value
            logger.error(f"Cache load for {key!r} failed: {e}")
            raise
        finally:
            if entry.in_flight is asyncio.current_task():
                entry.in_flight = None

        entry.value = value
        entry.has_value = True
        entry.expires_at = self._clock() + ttl
        return value

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one key, or everything."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def size(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.has_value)
