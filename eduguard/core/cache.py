"""
In-process cache for per-school risk rule settings

Settings are read on every detection run but change rarely, so the
provider keeps validated RiskRuleSettings here for `ttl_seconds`.
Updates through the settings provider invalidate the school's entry.

With several API workers each process has its own cache; the TTL bounds
how long a worker can serve rules another worker already replaced.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

from .constants import DEFAULT_SETTINGS_CACHE_MAX_SIZE, DEFAULT_SETTINGS_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


class TTLCache:
    """
    Bounded cache whose entries expire `ttl_seconds` after they were stored.

    When full, the least recently read entry is evicted. Thread-safe.

    Args:
        ttl_seconds: Entry lifetime; 0 disables caching
        max_entries: Capacity
        timer: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_SETTINGS_CACHE_TTL_SECONDS,
        max_entries: int = DEFAULT_SETTINGS_CACHE_MAX_SIZE,
        timer: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._timer = timer
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "expired": 0, "evicted": 0}

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            expires_at, value = entry
            if self._timer() >= expires_at:
                del self._entries[key]
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                return None
            self._entries.move_to_end(key)
            self._stats["hits"] += 1
            return value

    def set(self, key: str, value: Any) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries[key] = (self._timer() + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._stats["evicted"] += 1
                logger.debug("Settings cache evicted entry", extra={"cache_key": evicted})

    def invalidate(self, key: str) -> None:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("Cache entry invalidated", extra={"cache_key": key})

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return dict(
                self._stats,
                current_size=len(self._entries),
                max_entries=self.max_entries,
                ttl_seconds=self.ttl_seconds,
            )


_settings_cache: Optional[TTLCache] = None
_cache_lock = threading.Lock()


def get_settings_cache() -> TTLCache:
    """Process-wide settings cache, built once under a lock"""
    global _settings_cache
    if _settings_cache is None:
        with _cache_lock:
            if _settings_cache is None:
                _settings_cache = TTLCache()
                logger.info(
                    "Settings cache initialized",
                    extra={"ttl_seconds": _settings_cache.ttl_seconds}
                )
    return _settings_cache
