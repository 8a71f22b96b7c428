"""Extension interface and concurrent event fan-out.

!! Important !!
All extensions receiving one event are launched concurrently with
``asyncio.gather``. Extensions only get frozen snapshots and must never
mutate engine state. A failing extension is logged and reported back to the
caller; it never undoes the mutation that triggered the event.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from ..models import (
    AttendanceEntry,
    EntrySnapshot,
    HelperSnapshot,
    HelpSessionEntry,
    QueueSnapshot,
    ServerSnapshot,
)

logger = logging.getLogger(__name__)


class BaseExtension:
    """Boilerplate base class of every extension.

    Override the events you care about; the rest are no-ops.
    """

    name = "extension"

    async def on_server_init_success(self, server: ServerSnapshot) -> None:
        return None

    async def on_server_request_backup(self, server: ServerSnapshot) -> None:
        return None

    async def on_periodic_tick(self, server: ServerSnapshot) -> None:
        return None

    async def on_server_delete(self, server: ServerSnapshot) -> None:
        return None

    async def on_queue_create(self, queue: QueueSnapshot) -> None:
        return None

    async def on_queue_delete(self, queue: QueueSnapshot) -> None:
        return None

    async def on_queue_open(self, queue: QueueSnapshot) -> None:
        return None

    async def on_queue_close(self, queue: QueueSnapshot) -> None:
        return None

    async def on_enqueue(self, queue: QueueSnapshot, entry: EntrySnapshot) -> None:
        return None

    async def on_dequeue(self, queue: QueueSnapshot, entry: EntrySnapshot) -> None:
        return None

    async def on_student_remove(self, queue: QueueSnapshot, entry: EntrySnapshot) -> None:
        return None

    async def on_remove_all_students(
        self, queue: QueueSnapshot, entries: tuple[EntrySnapshot, ...]
    ) -> None:
        return None

    async def on_helper_start(self, server: ServerSnapshot, helper: HelperSnapshot) -> None:
        return None

    async def on_helper_stop(
        self,
        server: ServerSnapshot,
        helper: HelperSnapshot,
        attendance: AttendanceEntry | None,
    ) -> None:
        return None

    async def on_student_join_session(
        self, server: ServerSnapshot, entry: EntrySnapshot, helper_ids: frozenset[int]
    ) -> None:
        return None

    async def on_student_leave_session(
        self,
        server: ServerSnapshot,
        participant_id: int,
        sessions: tuple[HelpSessionEntry, ...],
    ) -> None:
        return None


class ExtensionFanout:
    """Broadcasts lifecycle events to a fixed list of extensions."""

    def __init__(self, extensions: Sequence[BaseExtension] = ()) -> None:
        self.extensions: tuple[BaseExtension, ...] = tuple(extensions)

    def __len__(self) -> int:
        return len(self.extensions)

    async def broadcast(self, event: str, *args) -> list[tuple[str, BaseException]]:
        """Invoke ``event`` on every extension and wait for all of them.

        Returns the ``(extension name, exception)`` pairs of failed calls.
        """
        if not self.extensions:
            return []

        results = await asyncio.gather(
            *(getattr(extension, event)(*args) for extension in self.extensions),
            return_exceptions=True,
        )

        failures: list[tuple[str, BaseException]] = []
        for extension, result in zip(self.extensions, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failures.append((extension.name, result))
                logger.error(
                    f"Extension {extension.name} failed on {event}: "
                    f"{type(result).__name__}: {result}",
                    exc_info=result,
                )
        return failures
