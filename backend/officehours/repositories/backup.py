"""Repository for the workspace_backups table."""

from __future__ import annotations

import json

import asyncpg

from ..models import ServerBackup


class BackupRepository:
    """Stores one opaque JSON backup per workspace."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def save(self, backup: ServerBackup) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO workspace_backups (workspace_id, workspace_name, payload)
                VALUES ($1, $2, $3::jsonb)
                ON CONFLICT (workspace_id) DO UPDATE SET
                    workspace_name = EXCLUDED.workspace_name,
                    payload        = EXCLUDED.payload,
                    updated_at     = NOW()
                """,
                backup.workspace_id,
                backup.workspace_name,
                json.dumps(backup.to_dict()),
            )

    async def load(self, workspace_id: int) -> ServerBackup | None:
        async with self.pool.acquire() as conn:
            payload = await conn.fetchval(
                "SELECT payload FROM workspace_backups WHERE workspace_id = $1",
                workspace_id,
            )
        if payload is None:
            return None
        data = json.loads(payload) if isinstance(payload, str) else payload
        return ServerBackup.from_dict(data)
