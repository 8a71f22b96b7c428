"""In-memory collaborators for engine tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from officehours.engine import AttendingServer, RecentMessage
from officehours.extensions.base import BaseExtension
from officehours.models import QueueChannel, ServerBackup

BOT_ID = 999
START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@dataclass
class FakeMessage:
    message_id: int
    author_id: int
    payload: Any


class FakeTransport:
    """A channel store where every message keeps its author."""

    def __init__(self, self_id: int = BOT_ID) -> None:
        self._self_id = self_id
        self.channels: dict[int, list[FakeMessage]] = {}
        self.sent: list[tuple[int, Any]] = []
        self.edits: list[tuple[int, int, Any]] = []
        self.purges: list[int] = []
        self._next_id = 1000

    @property
    def self_id(self) -> int:
        return self._self_id

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def post(self, channel_id: int, author_id: int, payload: Any = "hello") -> int:
        """Someone else writes into the channel."""
        message = FakeMessage(self._new_id(), author_id, payload)
        self.channels.setdefault(channel_id, []).append(message)
        return message.message_id

    def messages(self, channel_id: int) -> list[FakeMessage]:
        return list(self.channels.get(channel_id, []))

    async def send_message(self, channel_id: int, payload: Any) -> int:
        message = FakeMessage(self._new_id(), self._self_id, payload)
        self.channels.setdefault(channel_id, []).append(message)
        self.sent.append((channel_id, payload))
        return message.message_id

    async def edit_message(self, channel_id: int, message_id: int, payload: Any) -> None:
        for message in self.channels.get(channel_id, []):
            if message.message_id == message_id:
                message.payload = payload
                self.edits.append((channel_id, message_id, payload))
                return
        raise LookupError(f"message {message_id} not found")

    async def fetch_recent_messages(self, channel_id: int, limit: int) -> list[RecentMessage]:
        if limit <= 0:
            return []
        return [
            RecentMessage(message_id=m.message_id, author_id=m.author_id)
            for m in self.channels.get(channel_id, [])[-limit:]
        ]

    async def delete_all_messages(self, channel_id: int) -> None:
        self.channels[channel_id] = []
        self.purges.append(channel_id)


class FakeNotifier:
    def __init__(self, unreachable: set[int] | None = None) -> None:
        self.direct: list[tuple[int, str]] = []
        self.invites: list[tuple[int, int, QueueChannel]] = []
        self.unreachable = unreachable or set()

    def recipients(self) -> list[int]:
        return [pid for pid, _ in self.direct]

    async def send_direct(self, participant_id: int, content: str) -> None:
        if participant_id in self.unreachable:
            raise RuntimeError(f"cannot DM {participant_id}")
        self.direct.append((participant_id, content))

    async def invite_to_session(
        self, participant_id: int, helper_id: int, queue: QueueChannel
    ) -> None:
        if participant_id in self.unreachable:
            raise RuntimeError(f"cannot invite {participant_id}")
        self.invites.append((participant_id, helper_id, queue))


class FakeBackupSource:
    def __init__(self, backup: ServerBackup | None = None) -> None:
        self.backup = backup

    async def load_backup(self, workspace_id: int) -> ServerBackup | None:
        return self.backup


EVENTS = [
    name for name in vars(BaseExtension) if name.startswith("on_")
]


class RecordingExtension(BaseExtension):
    """Remembers every event it receives."""

    name = "recording"

    def __init__(self) -> None:
        self.events: list[tuple[str, tuple]] = []

    def names(self) -> list[str]:
        return [event for event, _ in self.events]

    def args_of(self, event: str) -> list[tuple]:
        return [args for name, args in self.events if name == event]


def _recorder(event: str):
    async def record(self: RecordingExtension, *args) -> None:
        self.events.append((event, args))

    return record


for _event in EVENTS:
    setattr(RecordingExtension, _event, _recorder(_event))


class FailingExtension(BaseExtension):
    name = "failing"

    async def on_queue_open(self, queue) -> None:
        raise RuntimeError("calendar down")

    async def on_helper_stop(self, server, helper, attendance) -> None:
        raise RuntimeError("sheet down")


MATH = QueueChannel(queue_id=1, name="Math", channel_id=101)
PHYSICS = QueueChannel(queue_id=2, name="Physics", channel_id=102)
CHEMISTRY = QueueChannel(queue_id=3, name="Chemistry", channel_id=103)


async def build_server(
    transport: FakeTransport,
    notifier: FakeNotifier,
    clock: FakeClock,
    channels: tuple[QueueChannel, ...] = (MATH, PHYSICS),
    authorizations: dict[int, set[int]] | None = None,
    **kwargs: Any,
) -> AttendingServer:
    return await AttendingServer.create(
        42,
        "Office Hours",
        channels,
        transport,
        notifier,
        authorizations=authorizations or {},
        clock=clock,
        **kwargs,
    )
