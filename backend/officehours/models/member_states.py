"""In-memory member states: participants waiting in a queue and active helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class HelperState(str, Enum):
    """Whether a helper accepts new participants into their queues."""

    ACTIVE = "active"
    PAUSED = "paused"


@dataclass
class WaitingEntry:
    """One participant's membership record inside a queue.

    Created on enqueue, removed on dequeue, leave, clear or queue deletion.
    ``up_next`` flips to True once a helper picks the participant and stays
    True until the participant shows up in the session channel.
    """

    participant_id: int
    wait_start: datetime
    queue_id: int
    queue_name: str
    display_name: str = ""
    up_next: bool = False


@dataclass
class Helper:
    """A participant currently running a help session."""

    helper_id: int
    help_start: datetime
    display_name: str = ""
    help_end: datetime | None = None
    active_state: HelperState = HelperState.ACTIVE
    helped_list: list[WaitingEntry] = field(default_factory=list)

    @property
    def is_paused(self) -> bool:
        return self.active_state is HelperState.PAUSED

    def has_helped(self, participant_id: int) -> bool:
        return any(entry.participant_id == participant_id for entry in self.helped_list)


@dataclass(frozen=True)
class QueueChannel:
    """Opaque identity of the channel backing a queue.

    ``queue_id`` maps 1:1 to the provisioned channel; the engine never looks
    inside it beyond passing it to the render transport.
    """

    queue_id: int
    name: str
    channel_id: int
