"""In-process TTL cache for workspace settings.

Backed by ``cachetools.TTLCache``. Each repository module owns its cache
instances. When the database is unreachable, reads fall back to the last
value seen for the key, even if its TTL expired.
"""

import asyncio
import functools
import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# distinguishes "not cached" from a cached None
MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """TTL cache plus a bounded last-known-good store.

    ``invalidate`` only drops the fresh value, the last-known-good copy stays
    available to :meth:`get_stale`.
    """

    def __init__(self, maxsize: int = 128, ttl: float = 60.0):
        self._maxsize = maxsize
        self._fresh: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._last_good: OrderedDict[str, Any] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, key: str) -> Any:
        return self._fresh.get(key, MISSING)

    def set(self, key: str, value: Any) -> None:
        self._fresh[key] = value
        self._last_good[key] = value
        self._last_good.move_to_end(key)
        while len(self._last_good) > self._maxsize:
            evicted, _ = self._last_good.popitem(last=False)
            self._locks.pop(evicted, None)

    def invalidate(self, key: str) -> None:
        self._fresh.pop(key, None)

    def clear(self) -> None:
        self._fresh.clear()

    def get_stale(self, key: str) -> Any:
        value = self._last_good.get(key, MISSING)
        if value is not MISSING:
            self._last_good.move_to_end(key)
        return value

    @property
    def size(self) -> int:
        return len(self._fresh)


def cached(
    cache: AsyncTTLCache,
    key_func: Callable[..., str],
    *,
    retry: int = 3,
    retry_delay: float = 1.0,
):
    """Cache the result of an async loader.

    ``key_func`` receives the same arguments as the decorated function. After
    ``retry`` failed attempts the last-known-good value is returned if there
    is one, otherwise the last exception propagates.
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

                last_exc: Exception | None = None
                for attempt in range(1, retry + 1):
                    try:
                        result = await func(*args, **kwargs)
                    except asyncio.CancelledError:
                        raise
                    except Exception as exc:
                        last_exc = exc
                        if attempt < retry:
                            logger.warning(
                                f"Load attempt {attempt}/{retry} failed for {key}: "
                                f"{type(exc).__name__}, retrying"
                            )
                            await asyncio.sleep(retry_delay * attempt)
                        continue
                    cache.set(key, result)
                    return result

                stale = cache.get_stale(key)
                if stale is not MISSING:
                    logger.warning(f"Returning stale value for {key} ({type(last_exc).__name__})")
                    return stale
                if last_exc is None:
                    raise ValueError(f"retry must be at least 1, got {retry}")
                raise last_exc

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
