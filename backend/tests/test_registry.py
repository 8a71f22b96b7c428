import asyncio

import pytest

from officehours.engine import ServerRegistry
from officehours.engine.errors import ServerNotInitializedError
from tests.fakes import build_server


@pytest.fixture
def registry():
    return ServerRegistry()


@pytest.mark.asyncio
async def test_get_unknown_workspace(registry):
    with pytest.raises(ServerNotInitializedError):
        registry.get(42)
    assert registry.safe_get(42) is None
    assert 42 not in registry


@pytest.mark.asyncio
async def test_concurrent_creation_builds_once(registry, transport, notifier, clock):
    calls = 0

    async def factory():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        return await build_server(transport, notifier, clock)

    first, second = await asyncio.gather(
        registry.get_or_create(42, factory),
        registry.get_or_create(42, factory),
    )

    assert calls == 1
    assert first is second
    assert registry.get(42) is first
    assert len(registry) == 1
    assert list(registry) == [first]


@pytest.mark.asyncio
async def test_failed_creation_registers_nothing(registry):
    async def factory():
        raise RuntimeError("discord down")

    with pytest.raises(RuntimeError):
        await registry.get_or_create(42, factory)

    assert 42 not in registry


@pytest.mark.asyncio
async def test_remove_tears_down(registry, transport, notifier, clock, recorder):
    async def factory():
        return await build_server(transport, notifier, clock, extensions=[recorder])

    server = await registry.get_or_create(42, factory)

    assert await registry.remove(42) is server
    assert 42 not in registry
    assert "on_server_delete" in recorder.names()
    assert await registry.remove(42) is None
