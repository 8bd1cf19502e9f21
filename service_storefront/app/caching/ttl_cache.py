"""
In-memory TTL cache for upstream catalog lookups.
"""

import asyncio
import json
import time
from collections import OrderedDict
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger


DEFAULT_TTL_SECONDS = 300
DEFAULT_CHECK_PERIOD_SECONDS = 60
DEFAULT_MAX_KEYS = 1000


@dataclass
class CacheEntry:
    """A cached value with its absolute expiry (``None`` never expires)."""
    key: str
    value: Any
    expires_at: Optional[float]
    size: int = 0

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass(frozen=True)
class CacheStats:
    entry_count: int
    hit_count: int
    miss_count: int
    approx_key_bytes: int
    approx_value_bytes: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class TTLCache:
    """Key/value store with per-entry expiry and a bounded entry count.

    Every operation is synchronous, so each one completes within a single
    step of the event loop and needs no locking. Expired entries are dropped
    lazily on read and periodically by a background sweep that must be
    started with :meth:`start` and stopped with :meth:`stop`.

    Public operations never raise: internal faults are logged and the
    operation degrades to a miss (``get``), ``False`` (``set``) or ``0``
    (``delete``/``delete_pattern``).
    """

    def __init__(
        self,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        check_period: float = DEFAULT_CHECK_PERIOD_SECONDS,
        max_keys: int = DEFAULT_MAX_KEYS,
        *,
        clock: Callable[[], float] = time.monotonic,
        name: str = "catalog",
    ):
        if max_keys < 1:
            raise ValueError("max_keys must be at least 1")
        self.default_ttl = default_ttl
        self.check_period = check_period
        self.max_keys = max_keys
        self.name = name
        self.logger = get_logger(f"storefront.ttl_cache.{name}")

        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._sweep_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the background expiry sweep."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        self.logger.info("Cache sweep started", check_period=self.check_period, max_keys=self.max_keys)

    async def stop(self):
        """Stop the background expiry sweep."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
        self.logger.info("Cache sweep stopped")

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.check_period)
            try:
                removed = self.purge_expired()
                if removed:
                    self.logger.debug("Cache sweep removed expired entries", removed=removed)
            except Exception as exc:
                self.logger.error("Cache sweep error", error=str(exc))

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for ``key`` or ``default``."""
        try:
            key = self._normalize_key(key)
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                self.logger.debug("Cache MISS", key=key)
                return default

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                self.logger.debug("Cache EXPIRED", key=key)
                return default

            self._hits += 1
            self.logger.debug("Cache HIT", key=key)
            return entry.value
        except Exception as exc:
            self.logger.error("Cache get error", key=repr(key), error=str(exc))
            return default

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Store ``value`` under ``key`` for ``ttl`` seconds (0 = no expiry).

        Overwriting a key resets its expiry and makes it the newest write.
        """
        try:
            key = self._normalize_key(key)
            ttl = self.default_ttl if ttl is None else ttl
            if ttl < 0:
                raise ValueError(f"ttl must be >= 0, got {ttl}")

            size = self._estimate_size(value)
            expires_at = None if ttl == 0 else self._clock() + ttl

            if key in self._entries:
                del self._entries[key]
            else:
                self._make_room()

            self._entries[key] = CacheEntry(key=key, value=value, expires_at=expires_at, size=size)
            self.logger.debug("Cache SET", key=key, ttl=ttl)
            return True
        except Exception as exc:
            self.logger.error("Cache set error", key=repr(key), error=str(exc))
            return False

    def delete(self, key: str) -> int:
        """Remove ``key``; returns the number of entries removed (0 or 1)."""
        try:
            key = self._normalize_key(key)
            if self._entries.pop(key, None) is None:
                return 0
            self.logger.debug("Cache DELETE", key=key)
            return 1
        except Exception as exc:
            self.logger.error("Cache delete error", key=repr(key), error=str(exc))
            return 0

    def delete_pattern(self, pattern: str) -> int:
        """Remove every key containing ``pattern`` as a substring."""
        try:
            if not pattern:
                self.logger.warning("Cache delete pattern ignored: empty pattern")
                return 0
            matching = [key for key in self._entries if pattern in key]
            for key in matching:
                del self._entries[key]
            self.logger.info("Cache DELETE pattern", pattern=pattern, deleted=len(matching))
            return len(matching)
        except Exception as exc:
            self.logger.error("Cache delete pattern error", pattern=repr(pattern), error=str(exc))
            return 0

    def clear(self) -> None:
        """Remove every entry and reset hit/miss counters."""
        try:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self.logger.info("Cache CLEARED")
        except Exception as exc:
            self.logger.error("Cache clear error", error=str(exc))

    def keys(self) -> List[str]:
        """Keys of the entries that are still live."""
        now = self._clock()
        return [key for key, entry in self._entries.items() if not entry.is_expired(now)]

    def stats(self) -> CacheStats:
        try:
            self.purge_expired()
            return CacheStats(
                entry_count=len(self._entries),
                hit_count=self._hits,
                miss_count=self._misses,
                approx_key_bytes=sum(len(key.encode("utf-8")) for key in self._entries),
                approx_value_bytes=sum(entry.size for entry in self._entries.values()),
            )
        except Exception as exc:
            self.logger.error("Cache stats error", error=str(exc))
            return CacheStats(0, self._hits, self._misses, 0, 0)

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def _make_room(self):
        """Evict until one more entry fits, expired entries first, then oldest writes."""
        if len(self._entries) < self.max_keys:
            return
        self.purge_expired()
        while len(self._entries) >= self.max_keys:
            evicted_key, _ = self._entries.popitem(last=False)
            self.logger.debug("Cache EVICT", key=evicted_key, max_keys=self.max_keys)

    @staticmethod
    def _normalize_key(key: Any) -> str:
        if isinstance(key, bool) or not isinstance(key, (str, int)):
            raise TypeError(f"cache keys must be str or int, got {type(key).__name__}")
        return str(key)

    @staticmethod
    def _estimate_size(value: Any) -> int:
        return len(json.dumps(value, default=str).encode("utf-8"))
