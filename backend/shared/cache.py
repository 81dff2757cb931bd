"""Read-through cache for repository lookups.

Fresh values live in a cachetools TTLCache. Every value also lands in a
bounded LRUCache of last-known-good entries, which a decorated read only
consults after the database has failed every retry. Writes drop both, so
an outage never serves a row that predates the write.
"""

import asyncio
import functools
import logging
import weakref
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from cachetools import LRUCache, TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Distinguishes "not cached" from a cached None
MISSING = object()

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


class AsyncTTLCache:
    def __init__(self, maxsize: int = 128, ttl: float = 60.0):
        self._fresh: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._fallback: LRUCache = LRUCache(maxsize=maxsize)
        # Locks vanish once no reader holds or waits on them
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def get(self, key: str) -> Any:
        return self._fresh.get(key, MISSING)

    def fallback(self, key: str) -> Any:
        return self._fallback.get(key, MISSING)

    def set(self, key: str, value: Any) -> None:
        self._fresh[key] = value
        self._fallback[key] = value

    def invalidate(self, key: str) -> None:
        self._fresh.pop(key, None)
        self._fallback.pop(key, None)

    def clear(self) -> None:
        self._fresh.clear()
        self._fallback.clear()


async def _load(
    func: Callable[..., Awaitable[Any]],
    args: tuple,
    kwargs: dict,
    key: str,
    retry: int,
    retry_delay: float,
) -> Any:
    """Run *func* up to *retry* times with a linearly growing delay."""
    for attempt in range(1, retry + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as exc:
            if attempt == retry:
                raise
            delay = retry_delay * attempt
            logger.warning(
                f"DB attempt {attempt}/{retry} failed for {key}: "
                f"{type(exc).__name__}, retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")


def cached(
    cache: AsyncTTLCache,
    key_func: Callable[..., str],
    *,
    retry: int = 3,
    retry_delay: float = 1.0,
):
    """Cache an async read; serve the last good value if the source stays down.

    ``key_func`` receives the same arguments as the decorated coroutine.
    Concurrent misses on one key share a single load.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            key = key_func(*args, **kwargs)
            result = cache.get(key)
            if result is not MISSING:
                return result

            async with cache.lock_for(key):
                result = cache.get(key)
                if result is not MISSING:
                    return result
                try:
                    result = await _load(func, args, kwargs, key, retry, retry_delay)
                except Exception as exc:
                    stale = cache.fallback(key)
                    if stale is MISSING:
                        raise
                    logger.warning(f"Returning stale data for {key} ({type(exc).__name__})")
                    return stale
                cache.set(key, result)
                return result

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
