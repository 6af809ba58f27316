import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import quote

from app import config

logger = logging.getLogger(__name__)


def generate_key(prefix: str, *parts: Any) -> str:
    """Build a cache key as ``prefix:part1:part2``.

    Each part is percent-encoded, so a part can never contain the ``:``
    separator and two different part tuples never map to the same key.
    """
    encoded = [quote(str(p), safe="") for p in parts]
    return ":".join([prefix, *encoded])


class CacheStore:
    """In-process key/value store with a TTL per key.

    Shared by every tenant; values are deep-copied on the way in and out so
    that no request can mutate what another request reads.
    """

    def __init__(
        self,
        default_ttl: int = 300,
        purge_interval: int = config.CACHE_PURGE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._default_ttl = default_ttl
        self._purge_interval = purge_interval
        self._clock = clock
        self._last_purge = clock()

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                return None
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        stored = copy.deepcopy(value)
        now = self._clock()
        with self._lock:
            self._entries[key] = (now + ttl, stored)
            if now - self._last_purge >= self._purge_interval:
                self._purge_locked(now)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge_locked(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for k in expired:
            del self._entries[k]
        self._last_purge = now
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))
