"""Queue and helper matching engine."""

from .display import QueueDisplay
from .errors import OfficeHoursError, QueueError, ServerError, UnsafeRenderError, UsageError
from .protocols import BackupSource, RecentMessage, RenderTransport, SessionNotifier
from .queue import HelpQueue, QueueViewModel
from .registry import ServerRegistry
from .server import AttendingServer, FinishedSession, ServeResult, utcnow
from .stats import StatsCollector

__all__ = [
    "AttendingServer",
    "BackupSource",
    "FinishedSession",
    "HelpQueue",
    "OfficeHoursError",
    "QueueDisplay",
    "QueueError",
    "QueueViewModel",
    "RecentMessage",
    "RenderTransport",
    "ServeResult",
    "ServerError",
    "ServerRegistry",
    "SessionNotifier",
    "StatsCollector",
    "UnsafeRenderError",
    "UsageError",
    "utcnow",
]
