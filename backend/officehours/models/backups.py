"""Backup payloads and workspace settings.

The backup payload is treated as an opaque document by the engine: it is
built from a snapshot, stored as JSON and handed back on aggregate creation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from .snapshots import ServerSnapshot


@dataclass
class WaitingEntryBackup:
    """A waiting entry without its queue back reference."""

    participant_id: int
    wait_start: datetime
    display_name: str = ""
    up_next: bool = False


@dataclass
class QueueBackup:
    """Data of one queue."""

    queue_id: int
    name: str
    waiting: list[WaitingEntryBackup] = field(default_factory=list)
    notify_subscribers: list[int] = field(default_factory=list)


@dataclass
class ServerBackup:
    """Data of one workspace."""

    workspace_id: int
    workspace_name: str
    timestamp: datetime
    queues: list[QueueBackup] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        for queue in data["queues"]:
            for entry in queue["waiting"]:
                entry["wait_start"] = entry["wait_start"].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerBackup:
        queues = [
            QueueBackup(
                queue_id=int(queue["queue_id"]),
                name=queue["name"],
                waiting=[
                    WaitingEntryBackup(
                        participant_id=int(entry["participant_id"]),
                        wait_start=datetime.fromisoformat(entry["wait_start"]),
                        display_name=entry.get("display_name", ""),
                        up_next=bool(entry.get("up_next", False)),
                    )
                    for entry in queue.get("waiting", [])
                ],
                notify_subscribers=[int(i) for i in queue.get("notify_subscribers", [])],
            )
            for queue in data.get("queues", [])
        ]
        return cls(
            workspace_id=int(data["workspace_id"]),
            workspace_name=data.get("workspace_name", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            queues=queues,
        )

    def queue_backup(self, queue_id: int) -> QueueBackup | None:
        return next((q for q in self.queues if q.queue_id == queue_id), None)


@dataclass
class WorkspaceSettings:
    """Workspace-level settings record."""

    workspace_id: int
    after_session_message: str = ""
    auto_clear_minutes: int | None = None
    tracking_enabled: bool = False
    logging_channel_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def backup_from_snapshot(snapshot: ServerSnapshot, timestamp: datetime) -> ServerBackup:
    return ServerBackup(
        workspace_id=snapshot.workspace_id,
        workspace_name=snapshot.workspace_name,
        timestamp=timestamp,
        queues=[
            QueueBackup(
                queue_id=queue.queue_id,
                name=queue.name,
                waiting=[
                    WaitingEntryBackup(
                        participant_id=entry.participant_id,
                        wait_start=entry.wait_start,
                        display_name=entry.display_name,
                        up_next=entry.up_next,
                    )
                    for entry in queue.waiting
                ],
                notify_subscribers=sorted(queue.notify_subscribers),
            )
            for queue in snapshot.queues
        ],
    )
