"""Writes attendance and help-session records when tracking is enabled."""

from __future__ import annotations

import logging

from ..models import AttendanceEntry, HelperSnapshot, HelpSessionEntry, ServerSnapshot
from ..repositories import AttendanceRepository
from .base import BaseExtension

logger = logging.getLogger(__name__)


class AttendanceExtension(BaseExtension):
    name = "attendance"

    def __init__(self, repo: AttendanceRepository) -> None:
        self.repo = repo

    async def on_helper_stop(
        self,
        server: ServerSnapshot,
        helper: HelperSnapshot,
        attendance: AttendanceEntry | None,
    ) -> None:
        if not server.tracking_enabled or attendance is None:
            return
        await self.repo.add_attendance(server.workspace_id, attendance)
        logger.info(
            f"Recorded attendance of {helper.helper_id} in {server.workspace_name}: "
            f"{attendance.active_time_ms}ms active"
        )

    async def on_student_leave_session(
        self,
        server: ServerSnapshot,
        participant_id: int,
        sessions: tuple[HelpSessionEntry, ...],
    ) -> None:
        if not server.tracking_enabled or not sessions:
            return
        await self.repo.add_help_sessions(server.workspace_id, sessions)
