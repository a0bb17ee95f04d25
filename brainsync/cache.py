"""
In-memory resource cache with lazy TTL expiry.

Maps a resource key (a document or a whole collection listing) to the value
last fetched for it. Entries are never swept; an expired entry is dropped the
next time it is read, and reads of expired entries behave exactly like
misses.

The cache knows nothing about writes. Whoever mutates a resource must
invalidate the matching entries.
"""

import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from .types import ResourceKey

# Five minutes, used when neither the caller nor the config gives a TTL
DEFAULT_TTL = 300.0

KeyLike = Union[ResourceKey, str]


def _cache_key(key: KeyLike) -> str:
    if isinstance(key, ResourceKey):
        return key.cache_key
    return key


@dataclass
class CacheEntry:
    """A cached value and when it was fetched (clock seconds)."""
    value: Any
    fetched_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now > self.fetched_at + self.ttl


class ResourceCache:
    """
    TTL cache keyed by ResourceKey (or its string form).

    Args:
        default_ttl: Seconds an entry stays fresh when set() gets no ttl
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[str, CacheEntry] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self.hits = 0
        self.misses = 0

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def lookup(self, key: KeyLike) -> Optional[CacheEntry]:
        """Return the live entry for ``key``, or None on a miss or expiry."""
        k = _cache_key(key)
        entry = self._entries.get(k)
        if entry is None:
            self.misses += 1
            return None
        if entry.expired(self._clock()):
            del self._entries[k]
            self.misses += 1
            return None
        self.hits += 1
        return entry

    def get(self, key: KeyLike, default: Any = None) -> Any:
        entry = self.lookup(key)
        return default if entry is None else entry.value

    def set(self, key: KeyLike, value: Any, ttl: Optional[float] = None) -> None:
        if ttl is None:
            ttl = self._default_ttl
        self._entries[_cache_key(key)] = CacheEntry(
            value=value, fetched_at=self._clock(), ttl=ttl,
        )

    def invalidate(self, key: KeyLike) -> bool:
        """Drop one exact key. Returns True if it was present."""
        return self._entries.pop(_cache_key(key), None) is not None

    def invalidate_collection(self, collection: str) -> int:
        """Drop a collection's listing and every document entry under it."""
        prefix = collection + "/"
        doomed = [k for k in self._entries if k == collection or k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop every key matching a regular expression (re.search)."""
        regex = re.compile(pattern)
        doomed = [k for k in self._entries if regex.search(k)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        """Keys currently held, expired or not."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: KeyLike) -> bool:
        return self.lookup(key) is not None
