"""Saves and restores workspace backups through the database."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from ..models import ServerBackup, ServerSnapshot, backup_from_snapshot
from ..repositories import BackupRepository
from .base import BaseExtension

logger = logging.getLogger(__name__)


class BackupExtension(BaseExtension):
    """Persists the waiting lines so they survive restarts.

    Also acts as the backup source handed to ``AttendingServer.create``.
    """

    name = "backup"

    def __init__(
        self,
        repo: BackupRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.repo = repo
        self.clock = clock

    async def load_backup(self, workspace_id: int) -> ServerBackup | None:
        backup = await self.repo.load(workspace_id)
        if backup is None:
            logger.info(f"No backup found for workspace {workspace_id}")
        return backup

    async def on_server_request_backup(self, server: ServerSnapshot) -> None:
        backup = backup_from_snapshot(server, self.clock())
        await self.repo.save(backup)
        waiting = sum(len(q.waiting) for q in backup.queues)
        logger.debug(f"Backed up {server.workspace_name}: {waiting} waiting")
