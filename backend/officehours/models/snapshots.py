"""Read-only views handed to extensions.

Extensions run concurrently, so they never receive the live queue or server
objects, only these frozen copies.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .member_states import HelperState


@dataclass(frozen=True)
class EntrySnapshot:
    participant_id: int
    display_name: str
    wait_start: datetime
    queue_id: int
    queue_name: str
    up_next: bool


@dataclass(frozen=True)
class QueueSnapshot:
    queue_id: int
    name: str
    channel_id: int
    is_open: bool
    waiting: tuple[EntrySnapshot, ...]
    authorized_helper_ids: frozenset[int]
    notify_subscribers: frozenset[int]


@dataclass(frozen=True)
class HelperSnapshot:
    helper_id: int
    display_name: str
    help_start: datetime
    help_end: datetime | None
    active_state: HelperState
    helped: tuple[EntrySnapshot, ...]


@dataclass(frozen=True)
class ServerSnapshot:
    workspace_id: int
    workspace_name: str
    queues: tuple[QueueSnapshot, ...]
    helpers: tuple[HelperSnapshot, ...]
    tracking_enabled: bool
    logging_channel_id: int | None
