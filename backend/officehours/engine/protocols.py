"""Narrow interfaces to the collaborators the engine depends on.

The Discord bot implements these in ``cogs.queue.transport``; tests use
in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from ..models import QueueChannel, ServerBackup


@dataclass(frozen=True)
class RecentMessage:
    message_id: int
    author_id: int


class RenderTransport(Protocol):
    """Message operations on a queue channel."""

    @property
    def self_id(self) -> int:
        """Author id of messages sent through this transport."""
        ...

    async def send_message(self, channel_id: int, payload: Any) -> int: ...

    async def edit_message(self, channel_id: int, message_id: int, payload: Any) -> None: ...

    async def fetch_recent_messages(self, channel_id: int, limit: int) -> list[RecentMessage]:
        """Return up to ``limit`` most recent messages, oldest first."""
        ...

    async def delete_all_messages(self, channel_id: int) -> None: ...


class SessionNotifier(Protocol):
    """Direct messages and session invites."""

    async def send_direct(self, participant_id: int, content: str) -> None: ...

    async def invite_to_session(
        self, participant_id: int, helper_id: int, queue: QueueChannel
    ) -> None:
        """Invite the participant to the helper's session channel."""
        ...


class BackupSource(Protocol):
    async def load_backup(self, workspace_id: int) -> ServerBackup | None: ...
