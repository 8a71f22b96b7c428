import pytest

from officehours.core.cache import MISSING, AsyncTTLCache, cached


class Loader:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self, key):
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def decorate(loader, cache, retry=3):
    return cached(cache, key_func=lambda key: f"k:{key}", retry=retry, retry_delay=0)(loader)


@pytest.mark.asyncio
async def test_second_call_hits_cache():
    cache = AsyncTTLCache()
    loader = Loader("value")
    load = decorate(loader, cache)

    assert await load(1) == "value"
    assert await load(1) == "value"
    assert loader.calls == 1
    assert cache.size == 1


@pytest.mark.asyncio
async def test_retries_until_success():
    loader = Loader(ConnectionError(), ConnectionError(), "value")
    load = decorate(loader, AsyncTTLCache())

    assert await load(1) == "value"
    assert loader.calls == 3


@pytest.mark.asyncio
async def test_falls_back_to_stale_value():
    cache = AsyncTTLCache()
    loader = Loader("old", ConnectionError(), ConnectionError())
    load = decorate(loader, cache, retry=2)

    assert await load(1) == "old"
    cache.invalidate("k:1")
    assert cache.get("k:1") is MISSING

    assert await load(1) == "old"
    assert loader.calls == 3


@pytest.mark.asyncio
async def test_raises_without_stale_value():
    loader = Loader(ConnectionError("a"), ConnectionError("b"))
    load = decorate(loader, AsyncTTLCache(), retry=2)

    with pytest.raises(ConnectionError, match="b"):
        await load(1)


@pytest.mark.asyncio
async def test_cached_none_is_not_reloaded():
    loader = Loader(None)
    load = decorate(loader, AsyncTTLCache())

    assert await load(1) is None
    assert await load(1) is None
    assert loader.calls == 1


def test_last_good_store_is_bounded():
    cache = AsyncTTLCache(maxsize=2)
    for key in ("a", "b", "c"):
        cache.set(key, key)

    assert cache.get_stale("a") is MISSING
    assert cache.get_stale("c") == "c"


@pytest.mark.asyncio
async def test_zero_retries_is_rejected():
    loader = Loader("value")
    load = decorate(loader, AsyncTTLCache(), retry=0)

    with pytest.raises(ValueError, match="retry must be at least 1"):
        await load(1)
    assert loader.calls == 0
