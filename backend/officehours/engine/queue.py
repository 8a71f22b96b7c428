"""A single office hours queue bound to one channel."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..extensions.base import ExtensionFanout
from ..models import EntrySnapshot, QueueBackup, QueueChannel, QueueSnapshot, WaitingEntry
from .display import QueueDisplay
from .errors import (
    AlreadyClosedError,
    AlreadyInQueueError,
    AlreadyOpenError,
    AlreadySubscribedError,
    EmptyQueueError,
    NoPermissionError,
    NotSubscribedError,
    QueueNotOpenError,
    QueuePausedError,
    UnsafeRenderError,
)
from .protocols import SessionNotifier

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class QueueViewModel:
    """Everything the render transport needs to draw the queue panel."""

    queue_id: int
    queue_name: str
    is_open: bool
    participant_names: tuple[str, ...]
    helper_ids: tuple[int, ...]
    paused_helper_ids: tuple[int, ...]
    auto_clear_at: datetime | None


def entry_snapshot(entry: WaitingEntry) -> EntrySnapshot:
    return EntrySnapshot(
        participant_id=entry.participant_id,
        display_name=entry.display_name,
        wait_start=entry.wait_start,
        queue_id=entry.queue_id,
        queue_name=entry.queue_name,
        up_next=entry.up_next,
    )


class HelpQueue:
    """Owns one FIFO waiting line.

    Every public mutator runs its precondition checks and the mutation
    before its first ``await``, so two operations on the same queue can never
    observe a half-applied change. Rendering, notifications and extension
    events happen afterwards.
    """

    def __init__(
        self,
        channel: QueueChannel,
        display: QueueDisplay,
        notifier: SessionNotifier,
        fanout: ExtensionFanout,
        clock: Clock,
        authorized_helper_ids: Iterable[int] = (),
        auto_clear: timedelta | None = None,
    ) -> None:
        self.channel = channel
        self.display = display
        self._notifier = notifier
        self._fanout = fanout
        self._clock = clock
        self._is_open = False
        self._waiting: list[WaitingEntry] = []
        self._authorized: set[int] = set(authorized_helper_ids)
        self._subscribers: set[int] = set()
        self._hosts: set[int] = set()
        self._paused_hosts: set[int] = set()
        self._session_starts: dict[int, datetime] = {}
        self._auto_clear = auto_clear
        self._auto_clear_at: datetime | None = None
        self._auto_clear_task: asyncio.Task | None = None
        self._render_error: UnsafeRenderError | None = None

    # ==================== Properties ====================

    @property
    def queue_id(self) -> int:
        return self.channel.queue_id

    @property
    def name(self) -> str:
        return self.channel.name

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def waiting(self) -> tuple[WaitingEntry, ...]:
        return tuple(self._waiting)

    @property
    def first(self) -> WaitingEntry | None:
        return self._waiting[0] if self._waiting else None

    @property
    def authorized_helper_ids(self) -> frozenset[int]:
        return frozenset(self._authorized)

    @property
    def notify_subscribers(self) -> frozenset[int]:
        return frozenset(self._subscribers)

    @property
    def host_ids(self) -> frozenset[int]:
        return frozenset(self._hosts)

    @property
    def accepting_new(self) -> bool:
        """False when every helper hosting this queue is paused."""
        return not self._hosts or bool(self._hosts - self._paused_hosts)

    @property
    def auto_clear(self) -> timedelta | None:
        return self._auto_clear

    def __len__(self) -> int:
        return len(self._waiting)

    def has_participant(self, participant_id: int) -> bool:
        return any(e.participant_id == participant_id for e in self._waiting)

    def is_authorized(self, helper_id: int) -> bool:
        return helper_id in self._authorized

    def session_started_at(self, helper_id: int) -> datetime | None:
        """When this queue last opened, for helpers authorized at that time."""
        return self._session_starts.get(helper_id)

    # ==================== Authorization & hosting ====================

    def set_authorized_helpers(self, helper_ids: Iterable[int]) -> None:
        self._authorized = set(helper_ids)

    def authorize(self, helper_id: int) -> None:
        self._authorized.add(helper_id)

    def revoke(self, helper_id: int) -> None:
        self._authorized.discard(helper_id)

    def add_host(self, helper_id: int) -> None:
        self._hosts.add(helper_id)
        self._paused_hosts.discard(helper_id)

    def remove_host(self, helper_id: int) -> bool:
        """Drop a hosting helper. Returns True if nobody hosts the queue anymore."""
        self._hosts.discard(helper_id)
        self._paused_hosts.discard(helper_id)
        return not self._hosts

    def set_host_paused(self, helper_id: int, paused: bool) -> None:
        if helper_id not in self._hosts:
            return
        if paused:
            self._paused_hosts.add(helper_id)
        else:
            self._paused_hosts.discard(helper_id)

    # ==================== State machine ====================

    async def open(self, helper_id: int, notify: bool = False) -> None:
        """Open the queue.

        Raises:
            AlreadyOpenError: the queue is open already.
        """
        if self._is_open:
            raise AlreadyOpenError(self.name)

        now = self._clock()
        self._is_open = True
        self._hosts.add(helper_id)
        self._session_starts = dict.fromkeys(self._authorized | {helper_id}, now)
        self._cancel_auto_clear()

        recipients = self._subscribers - self._authorized if notify else set()
        self._subscribers -= recipients
        logger.info(f"Queue {self.name} opened by {helper_id}")

        await asyncio.gather(
            self._notify(recipients, f"Queue `{self.name}` is open!"),
            self._fanout.broadcast("on_queue_open", self.snapshot()),
        )
        await self.refresh()

    async def close(self, helper_id: int) -> None:
        """Close the queue. Waiting participants stay in line.

        Raises:
            AlreadyClosedError: the queue is not open.
        """
        if not self._is_open:
            raise AlreadyClosedError(self.name)

        self._is_open = False
        self._hosts.clear()
        self._paused_hosts.clear()
        self._session_starts.clear()
        self._start_auto_clear()
        logger.info(f"Queue {self.name} closed by {helper_id}")

        await self._fanout.broadcast("on_queue_close", self.snapshot())
        await self.refresh()

    async def enqueue(self, participant_id: int, display_name: str = "") -> WaitingEntry:
        """Append a participant to the end of the line.

        The first participant entering an empty queue triggers exactly one
        heads-up to the authorized helpers and notification subscribers.

        Raises:
            QueueNotOpenError: the queue is closed.
            QueuePausedError: every hosting helper is paused.
            AlreadyInQueueError: the participant is already waiting here.
        """
        if not self._is_open:
            raise QueueNotOpenError(self.name)
        if not self.accepting_new:
            raise QueuePausedError(self.name)
        if self.has_participant(participant_id):
            raise AlreadyInQueueError(self.name)

        was_empty = not self._waiting
        entry = WaitingEntry(
            participant_id=participant_id,
            wait_start=self._clock(),
            queue_id=self.queue_id,
            queue_name=self.name,
            display_name=display_name,
        )
        self._waiting.append(entry)

        recipients = (self._authorized | self._subscribers) - {participant_id} if was_empty else set()
        await asyncio.gather(
            self._notify(
                recipients,
                f"Heads up! {display_name or f'<@{participant_id}>'} has joined `{self.name}`.",
            ),
            self._fanout.broadcast("on_enqueue", self.snapshot(), entry_snapshot(entry)),
        )
        await self.refresh()
        return entry

    async def dequeue_with_helper(
        self, helper_id: int, target_participant_id: int | None = None
    ) -> WaitingEntry:
        """Remove the head of the line, or a specific participant, and publish it."""
        entry = self.take_next(helper_id, target_participant_id)
        await self.publish_dequeue(entry)
        return entry

    def take_next(self, helper_id: int, target_participant_id: int | None = None) -> WaitingEntry:
        """Synchronous half of :meth:`dequeue_with_helper`.

        Raises:
            NoPermissionError: the helper is not authorized for this queue.
            EmptyQueueError: nobody is waiting, or the target is not here.
        """
        if helper_id not in self._authorized:
            raise NoPermissionError(self.name)
        if not self._waiting:
            raise EmptyQueueError(self.name)

        index = 0
        if target_participant_id is not None:
            found = next(
                (i for i, e in enumerate(self._waiting) if e.participant_id == target_participant_id),
                None,
            )
            if found is None:
                raise EmptyQueueError(
                    self.name, f"<@{target_participant_id}> is not in the queue."
                )
            index = found

        entry = self._waiting.pop(index)
        entry.up_next = True
        return entry

    async def publish_dequeue(self, entry: WaitingEntry) -> None:
        await self._fanout.broadcast("on_dequeue", self.snapshot(), entry_snapshot(entry))
        await self.refresh()

    def take_participant(self, participant_id: int) -> WaitingEntry | None:
        """Pop a participant from the line without announcing it. ``None`` if absent."""
        index = next(
            (i for i, e in enumerate(self._waiting) if e.participant_id == participant_id), None
        )
        if index is None:
            return None
        return self._waiting.pop(index)

    async def publish_remove(self, entry: WaitingEntry) -> None:
        await self._fanout.broadcast("on_student_remove", self.snapshot(), entry_snapshot(entry))
        await self.refresh()

    async def remove_participant(self, participant_id: int) -> WaitingEntry | None:
        """Remove a participant who leaves voluntarily. No-op if absent."""
        entry = self.take_participant(participant_id)
        if entry is None:
            return None
        await self.publish_remove(entry)
        return entry

    async def remove_all(self) -> list[WaitingEntry]:
        """Clear the whole line."""
        removed, self._waiting = self._waiting, []
        await self._fanout.broadcast(
            "on_remove_all_students",
            self.snapshot(),
            tuple(entry_snapshot(e) for e in removed),
        )
        if removed:
            await self.refresh()
        return removed

    # ==================== Notification group ====================

    def add_to_notif_group(self, participant_id: int) -> None:
        if participant_id in self._subscribers:
            raise AlreadySubscribedError(self.name)
        self._subscribers.add(participant_id)

    def remove_from_notif_group(self, participant_id: int) -> None:
        if participant_id not in self._subscribers:
            raise NotSubscribedError(self.name)
        self._subscribers.discard(participant_id)

    # ==================== Rendering ====================

    def view_model(self) -> QueueViewModel:
        return QueueViewModel(
            queue_id=self.queue_id,
            queue_name=self.name,
            is_open=self._is_open,
            participant_names=tuple(
                e.display_name or f"<@{e.participant_id}>" for e in self._waiting
            ),
            helper_ids=tuple(sorted(self._hosts)),
            paused_helper_ids=tuple(sorted(self._paused_hosts)),
            auto_clear_at=self._auto_clear_at,
        )

    async def trigger_render(self, force_fresh: bool = False) -> None:
        """Draw the queue panel.

        Raises:
            UnsafeRenderError: the channel needs a cleanup first.
        """
        await self.display.render(self.view_model(), 0, force_fresh=force_fresh)

    async def cleanup_channel(self) -> None:
        """Purge the channel and draw every panel from scratch."""
        await self.display.cleanup({0: self.view_model()})
        self._render_error = None

    def take_render_error(self) -> UnsafeRenderError | None:
        """Pop the render failure left behind by the last mutations, if any."""
        error, self._render_error = self._render_error, None
        return error

    async def refresh(self) -> None:
        """Redraw after a committed mutation, keeping a render failure for later."""
        try:
            await self.trigger_render()
        except UnsafeRenderError as e:
            self._render_error = e
        except Exception:
            logger.exception(f"Failed to render queue {self.name}")

    # ==================== Lifecycle ====================

    def snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(
            queue_id=self.queue_id,
            name=self.name,
            channel_id=self.channel.channel_id,
            is_open=self._is_open,
            waiting=tuple(entry_snapshot(e) for e in self._waiting),
            authorized_helper_ids=frozenset(self._authorized),
            notify_subscribers=frozenset(self._subscribers),
        )

    def restore(self, backup: QueueBackup) -> None:
        """Load the waiting line of a backup. Only valid before the first render."""
        self._waiting = [
            WaitingEntry(
                participant_id=entry.participant_id,
                wait_start=entry.wait_start,
                queue_id=self.queue_id,
                queue_name=self.name,
                display_name=entry.display_name,
                up_next=entry.up_next,
            )
            for entry in sorted(backup.waiting, key=lambda e: e.wait_start)
        ]
        self._subscribers = set(backup.notify_subscribers)

    def set_auto_clear(self, timeout: timedelta | None) -> None:
        """Clear the queue ``timeout`` after it closes. ``None`` disables it."""
        self._auto_clear = timeout
        self._cancel_auto_clear()
        if not self._is_open:
            self._start_auto_clear()

    async def graceful_delete(self) -> None:
        self._cancel_auto_clear()
        await self._fanout.broadcast("on_queue_delete", self.snapshot())
        self._waiting.clear()

    def cancel_timers(self) -> None:
        self._cancel_auto_clear()

    # ==================== Helpers ====================

    async def _notify(self, participant_ids: set[int], content: str) -> None:
        if not participant_ids:
            return
        recipients = sorted(participant_ids)
        results = await asyncio.gather(
            *(self._notifier.send_direct(pid, content) for pid in recipients),
            return_exceptions=True,
        )
        for pid, result in zip(recipients, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to notify {pid} for queue {self.name}: {result}")

    def _start_auto_clear(self) -> None:
        if self._auto_clear is None or self._auto_clear_task is not None:
            return
        self._auto_clear_at = self._clock() + self._auto_clear
        self._auto_clear_task = asyncio.create_task(
            self._auto_clear_after(self._auto_clear.total_seconds())
        )
        self._auto_clear_task.add_done_callback(self._on_auto_clear_done)

    def _on_auto_clear_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Auto clear of {self.name} failed: {type(error).__name__}: {error}",
                exc_info=error,
            )

    def _cancel_auto_clear(self) -> None:
        if self._auto_clear_task is not None:
            self._auto_clear_task.cancel()
            self._auto_clear_task = None
        self._auto_clear_at = None

    async def _auto_clear_after(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self._auto_clear_task = None
        self._auto_clear_at = None
        if self._is_open:
            return
        removed = await self.remove_all()
        logger.info(f"Auto cleared {len(removed)} participant(s) from {self.name}")
