"""Repository for the workspace_settings table."""

from __future__ import annotations

from typing import Any

import asyncpg

from ..core.cache import AsyncTTLCache, cached
from ..models import WorkspaceSettings

_settings_cache = AsyncTTLCache(maxsize=256, ttl=120)

_UPDATABLE_FIELDS = frozenset(
    {"after_session_message", "auto_clear_minutes", "tracking_enabled", "logging_channel_id"}
)


def _settings_key(self: WorkspaceSettingsRepository, workspace_id: int) -> str:
    return f"settings:{workspace_id}"


class WorkspaceSettingsRepository:
    """Pure SQL operations for workspace settings, cached per workspace."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    @cached(_settings_cache, key_func=_settings_key)
    async def get(self, workspace_id: int) -> WorkspaceSettings:
        """Stored settings, or defaults when the workspace has none yet."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM workspace_settings WHERE workspace_id = $1",
                workspace_id,
            )
        if row is None:
            return WorkspaceSettings(workspace_id=workspace_id)
        return WorkspaceSettings(**dict(row))

    async def update(self, workspace_id: int, **fields: Any) -> None:
        """Upsert the given columns.

        Raises:
            ValueError: an unknown column was passed.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings field(s): {', '.join(sorted(unknown))}")
        if not fields:
            return

        columns = list(fields)
        placeholders = ", ".join(f"${i}" for i in range(2, len(columns) + 2))
        assignments = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns)
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO workspace_settings (workspace_id, {", ".join(columns)})
                VALUES ($1, {placeholders})
                ON CONFLICT (workspace_id) DO UPDATE SET
                    {assignments},
                    updated_at = NOW()
                """,  # noqa: S608
                workspace_id,
                *fields.values(),
            )
        _settings_cache.invalidate(f"settings:{workspace_id}")
