"""Repository for attendance_entries and help_sessions tables."""

from __future__ import annotations

from collections.abc import Sequence

import asyncpg

from ..models import AttendanceEntry, HelpSessionEntry


class AttendanceRepository:
    """Append-only storage of finished helper and help sessions."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def add_attendance(self, workspace_id: int, entry: AttendanceEntry) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO attendance_entries (
                    workspace_id, helper_id, helper_name, help_start, help_end,
                    active_time_ms, served_participant_ids
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                workspace_id,
                entry.helper_id,
                entry.helper_name,
                entry.help_start,
                entry.help_end,
                entry.active_time_ms,
                entry.served_participant_ids,
            )

    async def add_help_sessions(
        self, workspace_id: int, sessions: Sequence[HelpSessionEntry]
    ) -> None:
        closed = [s for s in sessions if s.session_end is not None]
        if not closed:
            return
        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO help_sessions (
                    workspace_id, participant_id, helper_id, queue_name,
                    wait_start, session_start, session_end, wait_time_ms
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                [
                    (
                        workspace_id,
                        s.participant_id,
                        s.helper_id,
                        s.queue_name,
                        s.wait_start,
                        s.session_start,
                        s.session_end,
                        s.wait_time_ms,
                    )
                    for s in closed
                ],
            )
