"""Repository layer of the office hours bot."""

from .attendance import AttendanceRepository
from .backup import BackupRepository
from .settings import WorkspaceSettingsRepository

__all__ = [
    "AttendanceRepository",
    "BackupRepository",
    "WorkspaceSettingsRepository",
]
