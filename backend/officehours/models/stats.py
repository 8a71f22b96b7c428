"""Data models for attendance_entries and help_sessions tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class AttendanceEntry:
    """Attendance record of one helper session.

    ``active_time_ms`` accumulates wall-clock time during which at least one
    served participant was present in the helper's session channel.
    """

    helper_id: int
    help_start: datetime
    helper_name: str = ""
    help_end: datetime | None = None
    active_time_ms: int = 0
    latest_join: datetime | None = None
    served_participant_ids: list[int] = field(default_factory=list)

    @property
    def session_ms(self) -> int:
        if self.help_end is None:
            return 0
        return int((self.help_end - self.help_start).total_seconds() * 1000)

    @property
    def idle_ms(self) -> int:
        return max(self.session_ms - self.active_time_ms, 0)


@dataclass
class HelpSessionEntry:
    """One (served participant, helper) pairing inside a session channel."""

    participant_id: int
    helper_id: int
    queue_name: str
    wait_start: datetime
    session_start: datetime
    session_end: datetime | None = None

    @property
    def wait_time_ms(self) -> int:
        return int((self.session_start - self.wait_start).total_seconds() * 1000)

    @property
    def is_open(self) -> bool:
        return self.session_end is None
