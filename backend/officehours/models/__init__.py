"""Data models for the office hours bot."""

from .backups import (
    QueueBackup,
    ServerBackup,
    WaitingEntryBackup,
    WorkspaceSettings,
    backup_from_snapshot,
)
from .member_states import Helper, HelperState, QueueChannel, WaitingEntry
from .snapshots import EntrySnapshot, HelperSnapshot, QueueSnapshot, ServerSnapshot
from .stats import AttendanceEntry, HelpSessionEntry

__all__ = [
    "AttendanceEntry",
    "EntrySnapshot",
    "Helper",
    "HelperSnapshot",
    "HelperState",
    "HelpSessionEntry",
    "QueueBackup",
    "QueueChannel",
    "QueueSnapshot",
    "ServerBackup",
    "ServerSnapshot",
    "WaitingEntry",
    "WaitingEntryBackup",
    "WorkspaceSettings",
    "backup_from_snapshot",
]
