"""Process-wide map of workspace id to its aggregate."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator

from .errors import ServerNotInitializedError
from .server import AttendingServer

logger = logging.getLogger(__name__)


class ServerRegistry:
    """Keyed registry owned by the bot.

    Entries are only inserted or removed as a whole. Creation of one
    workspace is serialized by a per-workspace lock so two concurrent joins
    build exactly one aggregate.
    """

    def __init__(self) -> None:
        self._servers: dict[int, AttendingServer] = {}
        self._creation_locks: dict[int, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._servers)

    def __contains__(self, workspace_id: int) -> bool:
        return workspace_id in self._servers

    def __iter__(self) -> Iterator[AttendingServer]:
        return iter(list(self._servers.values()))

    def get(self, workspace_id: int) -> AttendingServer:
        """
        Raises:
            ServerNotInitializedError: the workspace has no aggregate yet.
        """
        server = self._servers.get(workspace_id)
        if server is None:
            raise ServerNotInitializedError()
        return server

    def safe_get(self, workspace_id: int) -> AttendingServer | None:
        return self._servers.get(workspace_id)

    async def get_or_create(
        self,
        workspace_id: int,
        factory: Callable[[], Awaitable[AttendingServer]],
    ) -> AttendingServer:
        existing = self._servers.get(workspace_id)
        if existing is not None:
            return existing

        lock = self._creation_locks.setdefault(workspace_id, asyncio.Lock())
        async with lock:
            existing = self._servers.get(workspace_id)
            if existing is not None:
                return existing
            server = await factory()
            self._servers[workspace_id] = server
            logger.info(f"Registered workspace {server.workspace_name} ({workspace_id})")
        self._creation_locks.pop(workspace_id, None)
        return server

    async def remove(self, workspace_id: int) -> AttendingServer | None:
        """Unregister a workspace and let it back up and tear down."""
        server = self._servers.pop(workspace_id, None)
        if server is None:
            return None
        try:
            await server.graceful_delete()
        except Exception as e:
            logger.error(f"Failed to tear down workspace {workspace_id}: {type(e).__name__}: {e}")
        logger.info(f"Unregistered workspace {workspace_id}")
        return server
