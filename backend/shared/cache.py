"""In-process TTL cache with stale fallback.

Uses cachetools.TTLCache for zero-infrastructure caching. The relay keeps one
instance for synthesized speech so repeated alerts do not re-hit the upstream
TTS provider, and so a provider outage can still serve recently fetched audio.
"""

import asyncio
import functools
import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Sentinel object to distinguish "not in cache" from cached None values
MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """Async-aware TTL cache with a stale fallback store.

    Two tiers:
      1. ``_cache`` (TTLCache): fresh values, governed by *ttl*.
      2. ``_stale`` (OrderedDict, LRU, bounded by *maxsize*): last-known-good
         values that survive TTL expiry, served only when the upstream fails.
    """

    def __init__(self, maxsize: int = 128, ttl: float = 60.0):
        self._maxsize = maxsize
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._stale: OrderedDict[str, Any] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}
        self.hits = 0
        self.misses = 0

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            if len(self._locks) > self._maxsize * 2:
                for k in list(self._locks):
                    if k not in self._stale and k not in self._cache:
                        del self._locks[k]
        return self._locks[key]

    def get(self, key: str) -> Any:
        """Return fresh value or ``MISSING``."""
        return self._cache.get(key, MISSING)

    def set(self, key: str, value: Any) -> None:
        """Write to both fresh cache and stale store."""
        self._cache[key] = value
        self._stale[key] = value
        self._stale.move_to_end(key)
        while len(self._stale) > self._maxsize:
            self._stale.popitem(last=False)

    def get_stale(self, key: str) -> Any:
        """Return last-known-good value or ``MISSING``."""
        value = self._stale.get(key, MISSING)
        if value is not MISSING:
            self._stale.move_to_end(key)
        return value

    def clear(self) -> None:
        """Clear fresh cache; stale store is preserved."""
        self._cache.clear()

    @property
    def size(self) -> int:
        return len(self._cache)

    @property
    def stale_size(self) -> int:
        return len(self._stale)


def cached(cache: AsyncTTLCache, key_func: Callable[..., str]):
    """Cache an async function's results, falling back to stale values on failure.

    ``key_func`` receives the same ``(*args, **kwargs)`` as the decorated
    function. Concurrent misses for one key share a single upstream call. When
    the call raises, a stale value is returned if one exists; otherwise the
    exception propagates.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            cache_key = key_func(*args, **kwargs)

            result = cache.get(cache_key)
            if result is not MISSING:
                cache.hits += 1
                return result

            async with cache._get_lock(cache_key):
                result = cache.get(cache_key)
                if result is not MISSING:
                    cache.hits += 1
                    return result

                cache.misses += 1
                try:
                    result = await func(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    stale = cache.get_stale(cache_key)
                    if stale is MISSING:
                        raise
                    logger.warning(f"Returning stale value for {cache_key} ({type(exc).__name__})")
                    return stale
                cache.set(cache_key, result)
                return result

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
