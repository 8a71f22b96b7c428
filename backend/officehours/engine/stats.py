"""Attendance and help-session accumulation for one workspace."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from ..models import AttendanceEntry, Helper, HelpSessionEntry, WaitingEntry

logger = logging.getLogger(__name__)


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return max(int((end - start).total_seconds() * 1000), 0)


class StatsCollector:
    """Derives attendance and help-session records from engine events.

    Usage:
        - ``on_helper_start`` when a helper starts hosting
        - ``on_participant_join_session`` / ``on_participant_leave_session``
          when a served participant enters or leaves a session channel
        - ``finalize`` when the helper stops; the entry is handed out once
    """

    def __init__(self, clock: Callable[[], datetime]) -> None:
        self._clock = clock
        # key is helper id
        self._attendance: dict[int, AttendanceEntry] = {}
        # key is participant id, one entry per helper present
        self._sessions: dict[int, list[HelpSessionEntry]] = {}

    def attendance(self, helper_id: int) -> AttendanceEntry | None:
        return self._attendance.get(helper_id)

    def open_sessions(self, participant_id: int) -> tuple[HelpSessionEntry, ...]:
        return tuple(s for s in self._sessions.get(participant_id, []) if s.is_open)

    def on_helper_start(self, helper: Helper) -> AttendanceEntry:
        entry = AttendanceEntry(
            helper_id=helper.helper_id,
            help_start=helper.help_start,
            helper_name=helper.display_name,
        )
        self._attendance[helper.helper_id] = entry
        return entry

    def on_participant_join_session(
        self, entry: WaitingEntry, helper_ids: Iterable[int]
    ) -> list[HelpSessionEntry]:
        """Open one help session per helper present in the session channel."""
        now = self._clock()
        opened: list[HelpSessionEntry] = []
        for helper_id in helper_ids:
            session = HelpSessionEntry(
                participant_id=entry.participant_id,
                helper_id=helper_id,
                queue_name=entry.queue_name,
                wait_start=entry.wait_start,
                session_start=now,
            )
            self._sessions.setdefault(entry.participant_id, []).append(session)
            opened.append(session)

            attendance = self._attendance.get(helper_id)
            if attendance is not None and attendance.latest_join is None:
                attendance.latest_join = now
        return opened

    def on_participant_leave_session(self, participant_id: int) -> tuple[HelpSessionEntry, ...]:
        """Close the participant's open sessions and accumulate active time.

        Helpers that still have another served participant with them, in any
        session channel, keep their active window open.
        Returns the closed sessions, which are no longer kept afterwards.
        """
        now = self._clock()
        sessions = self._sessions.pop(participant_id, [])
        for session in sessions:
            if session.session_end is None:
                session.session_end = now

        engaged = {
            s.helper_id for others in self._sessions.values() for s in others if s.is_open
        }
        for helper_id, attendance in self._attendance.items():
            if attendance.latest_join is None:
                continue
            attendance.active_time_ms += _elapsed_ms(attendance.latest_join, now)
            attendance.latest_join = now if helper_id in engaged else None

        return tuple(sessions)

    def finalize(self, helper: Helper) -> AttendanceEntry | None:
        """Hand out the finished attendance entry of a helper.

        Returns None when the entry was already exported or never opened.
        """
        attendance = self._attendance.pop(helper.helper_id, None)
        if attendance is None:
            logger.warning(f"No attendance entry to export for helper {helper.helper_id}")
            return None

        help_end = helper.help_end or self._clock()
        if attendance.latest_join is not None:
            attendance.active_time_ms += _elapsed_ms(attendance.latest_join, help_end)
            attendance.latest_join = None
        attendance.help_end = help_end
        attendance.served_participant_ids = [e.participant_id for e in helper.helped_list]
        return attendance
