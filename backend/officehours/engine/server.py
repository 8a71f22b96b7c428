"""Workspace aggregate: every queue and helper of one Discord guild."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ..extensions.base import BaseExtension, ExtensionFanout
from ..models import (
    AttendanceEntry,
    Helper,
    HelperSnapshot,
    HelperState,
    QueueChannel,
    ServerSnapshot,
    WaitingEntry,
    WorkspaceSettings,
)
from .display import QueueDisplay
from .errors import (
    AlreadyActiveError,
    AlreadyClosedError,
    AlreadyHostingError,
    AlreadyOpenError,
    AlreadyPausedError,
    EnqueueHelperError,
    HelperInQueueError,
    NoAuthorizedQueuesError,
    NoOneToHelpError,
    NoPermissionError,
    NoStudentToAnnounceError,
    NotHostingError,
    QueueAlreadyExistsError,
    QueueDoesNotExistError,
    StudentNotFoundError,
    UnsafeRenderError,
)
from .protocols import BackupSource, RenderTransport, SessionNotifier
from .queue import Clock, HelpQueue, entry_snapshot
from .stats import StatsCollector

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkspaceLogger(logging.LoggerAdapter):
    """Prefixes every record with the workspace name."""

    def process(self, msg, kwargs):
        return f"[{self.extra['workspace']}] {msg}", kwargs


@dataclass(frozen=True)
class ServeResult:
    """Outcome of a successful serve-next."""

    entry: WaitingEntry
    queue: QueueChannel
    invited: bool


@dataclass(frozen=True)
class FinishedSession:
    """A helper that stopped hosting, with their exported attendance."""

    helper: Helper
    attendance: AttendanceEntry | None


class AttendingServer:
    """Owns the queues, helpers and statistics of one workspace.

    Build instances with :meth:`create`. All mutations go through the methods
    of this class; each one validates and mutates before its first ``await``.
    Render-safety failures never undo a mutation, they are kept on the queue
    and handed out by :meth:`pop_render_errors`.
    """

    def __init__(
        self,
        workspace_id: int,
        workspace_name: str,
        transport: RenderTransport,
        notifier: SessionNotifier,
        extensions: Sequence[BaseExtension] = (),
        settings: WorkspaceSettings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.workspace_id = workspace_id
        self.workspace_name = workspace_name
        self.transport = transport
        self.notifier = notifier
        self.fanout = ExtensionFanout(extensions)
        self.settings = settings or WorkspaceSettings(workspace_id=workspace_id)
        self.clock = clock
        self.stats = StatsCollector(clock)
        self.logger = WorkspaceLogger(logger, {"workspace": workspace_name})

        # insertion order is creation order, used as serve-next tie-break
        self._queues: dict[int, HelpQueue] = {}
        self._helpers: dict[int, Helper] = {}
        self._queue_channels: tuple[QueueChannel, ...] = ()
        # session channel id -> member ids currently inside
        self._presence: dict[int, set[int]] = {}
        self._member_channel: dict[int, int] = {}

    @classmethod
    async def create(
        cls,
        workspace_id: int,
        workspace_name: str,
        queue_channels: Iterable[QueueChannel],
        transport: RenderTransport,
        notifier: SessionNotifier,
        authorizations: Mapping[int, Iterable[int]] | None = None,
        backup_source: BackupSource | None = None,
        extensions: Sequence[BaseExtension] = (),
        settings: WorkspaceSettings | None = None,
        clock: Clock = utcnow,
    ) -> AttendingServer:
        """Build the aggregate, restore the last backup and draw every queue.

        Args:
            authorizations: queue id -> helper ids allowed to help that queue.
        """
        server = cls(
            workspace_id,
            workspace_name,
            transport,
            notifier,
            extensions=extensions,
            settings=settings,
            clock=clock,
        )
        authorizations = authorizations or {}

        backup = None
        if backup_source is not None:
            try:
                backup = await backup_source.load_backup(workspace_id)
            except Exception as e:
                server.logger.error(f"Failed to load backup: {type(e).__name__}: {e}")

        for channel in queue_channels:
            queue = server._build_queue(channel, authorizations.get(channel.queue_id, ()))
            if backup is not None:
                queue_backup = backup.queue_backup(channel.queue_id)
                if queue_backup is not None:
                    queue.restore(queue_backup)

        if backup is not None:
            server.logger.info(f"Restored backup from {backup.timestamp.isoformat()}")

        await asyncio.gather(*(queue.cleanup_channel() for queue in server._queues.values()))
        await server.fanout.broadcast("on_server_init_success", server.snapshot())
        server.logger.info(f"Initialized with {len(server._queues)} queue(s)")
        return server

    # ==================== Queries ====================

    @property
    def queues(self) -> tuple[HelpQueue, ...]:
        return tuple(self._queues.values())

    @property
    def queue_channels(self) -> tuple[QueueChannel, ...]:
        return self._queue_channels

    @property
    def helpers(self) -> Mapping[int, Helper]:
        return dict(self._helpers)

    @property
    def auto_clear(self) -> timedelta | None:
        minutes = self.settings.auto_clear_minutes
        return timedelta(minutes=minutes) if minutes else None

    def get_queue(self, queue_id: int) -> HelpQueue:
        queue = self._queues.get(queue_id)
        if queue is None:
            raise QueueDoesNotExistError()
        return queue

    def queue_by_name(self, name: str) -> HelpQueue | None:
        return next((q for q in self._queues.values() if q.name == name), None)

    def authorized_queues(self, helper_id: int) -> list[HelpQueue]:
        return [q for q in self._queues.values() if q.is_authorized(helper_id)]

    def is_hosting(self, helper_id: int) -> bool:
        return helper_id in self._helpers

    def snapshot(self) -> ServerSnapshot:
        return ServerSnapshot(
            workspace_id=self.workspace_id,
            workspace_name=self.workspace_name,
            queues=tuple(q.snapshot() for q in self._queues.values()),
            helpers=tuple(self._helper_snapshot(h) for h in self._helpers.values()),
            tracking_enabled=self.settings.tracking_enabled,
            logging_channel_id=self.settings.logging_channel_id,
        )

    def pop_render_errors(self) -> list[UnsafeRenderError]:
        """Hand out the render failures left behind by previous mutations."""
        errors = [q.take_render_error() for q in self._queues.values()]
        return [e for e in errors if e is not None]

    # ==================== Helpers ====================

    async def open_all_openable_queues(
        self, helper_id: int, notify: bool = False, display_name: str = ""
    ) -> Helper:
        """Start hosting: open every queue the helper is authorized for.

        Queues that are already open are joined as an additional host.

        Raises:
            NoAuthorizedQueuesError: the helper has no queue to open.
            AlreadyHostingError: the helper is hosting already.
            HelperInQueueError: the helper is waiting in a queue.
        """
        openable = self.authorized_queues(helper_id)
        if not openable:
            raise NoAuthorizedQueuesError()
        if helper_id in self._helpers:
            raise AlreadyHostingError()
        if any(q.has_participant(helper_id) for q in self._queues.values()):
            raise HelperInQueueError()

        helper = Helper(helper_id=helper_id, help_start=self.clock(), display_name=display_name)
        self._helpers[helper_id] = helper
        self.stats.on_helper_start(helper)
        for queue in openable:
            if queue.is_open:
                queue.add_host(helper_id)

        await asyncio.gather(
            *(self._open_or_join(q, helper_id, notify) for q in openable if not q.is_open)
        )
        self.logger.info(f"Helper {helper_id} started hosting {len(openable)} queue(s)")
        await self.fanout.broadcast(
            "on_helper_start", self.snapshot(), self._helper_snapshot(helper)
        )
        return helper

    async def close_all_closable_queues(self, helper_id: int) -> FinishedSession:
        """Stop hosting and close the queues nobody else is hosting.

        Raises:
            NotHostingError: the helper is not hosting.
        """
        helper = self._helpers.pop(helper_id, None)
        if helper is None:
            raise NotHostingError()

        helper.help_end = self.clock()
        hosted = [q for q in self._queues.values() if helper_id in q.host_ids]
        closable = [q for q in hosted if q.remove_host(helper_id) and q.is_open]
        attendance = self.stats.finalize(helper)

        await asyncio.gather(*(self._close_quietly(q, helper_id) for q in closable))
        await self._render_queues(q for q in hosted if q not in closable)
        self.logger.info(
            f"Helper {helper_id} stopped hosting, closed {len(closable)} queue(s), "
            f"helped {len(helper.helped_list)}"
        )
        await self.fanout.broadcast(
            "on_helper_stop", self.snapshot(), self._helper_snapshot(helper), attendance
        )
        return FinishedSession(helper=helper, attendance=attendance)

    async def pause_helping(self, helper_id: int) -> bool:
        """Stop accepting new participants into the helper's queues.

        Returns True if another active helper still hosts one of those queues.

        Raises:
            NotHostingError: the helper is not hosting.
            AlreadyPausedError: the helper is paused already.
        """
        helper = self._helpers.get(helper_id)
        if helper is None:
            raise NotHostingError()
        if helper.is_paused:
            raise AlreadyPausedError()

        helper.active_state = HelperState.PAUSED
        hosted = [q for q in self._queues.values() if helper_id in q.host_ids]
        for queue in hosted:
            queue.set_host_paused(helper_id, True)

        await self._render_queues(hosted)
        self.logger.info(f"Helper {helper_id} paused")
        return any(q.accepting_new for q in hosted)

    async def resume_helping(self, helper_id: int) -> None:
        """
        Raises:
            NotHostingError: the helper is not hosting.
            AlreadyActiveError: the helper is not paused.
        """
        helper = self._helpers.get(helper_id)
        if helper is None:
            raise NotHostingError()
        if not helper.is_paused:
            raise AlreadyActiveError()

        helper.active_state = HelperState.ACTIVE
        hosted = [q for q in self._queues.values() if helper_id in q.host_ids]
        for queue in hosted:
            queue.set_host_paused(helper_id, False)

        await self._render_queues(hosted)
        self.logger.info(f"Helper {helper_id} resumed")

    def update_helper_authorizations(self, helper_id: int, queue_ids: Iterable[int]) -> None:
        """Replace the set of queues a helper may help, e.g. after a role change."""
        allowed = set(queue_ids)
        for queue in self._queues.values():
            if queue.queue_id in allowed:
                queue.authorize(helper_id)
            else:
                queue.revoke(helper_id)

    # ==================== Serving ====================

    async def serve_next(
        self,
        helper_id: int,
        target_queue_id: int | None = None,
        target_participant_id: int | None = None,
    ) -> ServeResult:
        """Pick the next participant for a helper and invite them.

        Without targets, the open authorized queue whose head has waited the
        longest wins. Ties go to the queue created first.

        Raises:
            QueueDoesNotExistError: the target queue is unknown.
            NoPermissionError: the helper may not help the target queue.
            StudentNotFoundError: the target participant is in none of the
                helper's queues.
            NotHostingError: untargeted call by a helper who is not hosting.
            NoOneToHelpError: every candidate queue is empty.
            EmptyQueueError: the target queue is empty or lacks the target.
        """
        if target_queue_id is not None:
            queue = self.get_queue(target_queue_id)
            if not queue.is_authorized(helper_id):
                raise NoPermissionError(queue.name)
        elif target_participant_id is not None:
            queue = next(
                (
                    q for q in self.authorized_queues(helper_id)
                    if q.has_participant(target_participant_id)
                ),
                None,
            )
            if queue is None:
                raise StudentNotFoundError(target_participant_id)
        else:
            if helper_id not in self._helpers:
                raise NotHostingError()
            candidates = [
                q for q in self.authorized_queues(helper_id) if q.is_open and q.first is not None
            ]
            if not candidates:
                raise NoOneToHelpError()
            # min() keeps the first of equal keys
            queue = min(candidates, key=lambda q: q.first.wait_start)

        entry = queue.take_next(helper_id, target_participant_id)
        # A served participant leaves every other line too
        also_removed = []
        for other in self._queues.values():
            if other is queue:
                continue
            removed = other.take_participant(entry.participant_id)
            if removed is not None:
                also_removed.append((other, removed))
        helper = self._helpers.get(helper_id)
        if helper is not None:
            helper.helped_list.append(entry)
        await queue.publish_dequeue(entry)
        for other, removed in also_removed:
            await other.publish_remove(removed)

        invited = True
        try:
            await self.notifier.invite_to_session(entry.participant_id, helper_id, queue.channel)
        except Exception as e:
            invited = False
            self.logger.warning(
                f"Failed to invite {entry.participant_id} for {helper_id}: "
                f"{type(e).__name__}: {e}"
            )

        self.logger.info(f"Helper {helper_id} serves {entry.participant_id} from {queue.name}")
        return ServeResult(entry=entry, queue=queue.channel, invited=invited)

    # ==================== Participants ====================

    async def enqueue(self, queue_id: int, participant_id: int, display_name: str = "") -> WaitingEntry:
        """
        Raises:
            QueueDoesNotExistError: the queue is unknown.
            EnqueueHelperError: the participant is hosting.
            QueueError: any rejection of :meth:`HelpQueue.enqueue`.
        """
        queue = self.get_queue(queue_id)
        if participant_id in self._helpers:
            raise EnqueueHelperError(queue.name)
        return await queue.enqueue(participant_id, display_name)

    async def leave_queue(self, queue_id: int, participant_id: int) -> WaitingEntry | None:
        return await self.get_queue(queue_id).remove_participant(participant_id)

    async def leave_all_queues(self, participant_id: int) -> list[WaitingEntry]:
        waiting_in = [q for q in self._queues.values() if q.has_participant(participant_id)]
        removed = await asyncio.gather(*(q.remove_participant(participant_id) for q in waiting_in))
        return [entry for entry in removed if entry is not None]

    def subscribe(self, queue_id: int, participant_id: int) -> None:
        self.get_queue(queue_id).add_to_notif_group(participant_id)

    def unsubscribe(self, queue_id: int, participant_id: int) -> None:
        self.get_queue(queue_id).remove_from_notif_group(participant_id)

    async def clear_queue(self, queue_id: int) -> list[WaitingEntry]:
        return await self.get_queue(queue_id).remove_all()

    async def clear_all_queues(self) -> int:
        removed = await asyncio.gather(*(q.remove_all() for q in self._queues.values()))
        return sum(len(entries) for entries in removed)

    async def announce(self, helper_id: int, message: str, queue_id: int | None = None) -> int:
        """DM everyone waiting in the helper's queues. Returns the number of recipients.

        Raises:
            NoPermissionError: the helper may not help the target queue.
            NoStudentToAnnounceError: nobody is waiting.
        """
        if queue_id is not None:
            queue = self.get_queue(queue_id)
            if not queue.is_authorized(helper_id):
                raise NoPermissionError(queue.name)
            targets = [queue]
        else:
            targets = self.authorized_queues(helper_id)

        recipients = sorted({e.participant_id for q in targets for e in q.waiting})
        if not recipients:
            raise NoStudentToAnnounceError()

        content = f"Announcement from <@{helper_id}>: {message}"
        results = await asyncio.gather(
            *(self.notifier.send_direct(pid, content) for pid in recipients),
            return_exceptions=True,
        )
        delivered = 0
        for pid, result in zip(recipients, results):
            if isinstance(result, Exception):
                self.logger.warning(f"Failed to announce to {pid}: {result}")
            else:
                delivered += 1
        return delivered

    # ==================== Session presence ====================

    async def on_participant_join_session(self, participant_id: int, channel_id: int) -> None:
        """A member entered a session channel.

        When a served participant arrives, one help session is opened per
        hosting helper present in that channel.
        """
        self._move_presence(participant_id, channel_id)

        entry = self._pending_entry(participant_id)
        if entry is None:
            return
        helper_ids = sorted(m for m in self._presence[channel_id] if m in self._helpers)
        if not helper_ids:
            return

        entry.up_next = False
        self.stats.on_participant_join_session(entry, helper_ids)
        await self.fanout.broadcast(
            "on_student_join_session",
            self.snapshot(),
            entry_snapshot(entry),
            frozenset(helper_ids),
        )

    async def on_participant_leave_session(self, participant_id: int) -> None:
        channel_id = self._member_channel.pop(participant_id, None)
        if channel_id is None:
            return
        members = self._presence.get(channel_id, set())
        members.discard(participant_id)
        if not members:
            self._presence.pop(channel_id, None)

        if not self.stats.open_sessions(participant_id):
            return

        sessions = self.stats.on_participant_leave_session(participant_id)

        if self.settings.after_session_message:
            try:
                await self.notifier.send_direct(participant_id, self.settings.after_session_message)
            except Exception as e:
                self.logger.warning(f"Failed to send after session message to {participant_id}: {e}")

        await self.fanout.broadcast(
            "on_student_leave_session", self.snapshot(), participant_id, sessions
        )

    # ==================== Queue provisioning ====================

    async def create_queue(
        self, channel: QueueChannel, authorized_helper_ids: Iterable[int] = ()
    ) -> HelpQueue:
        """
        Raises:
            QueueAlreadyExistsError: the name or channel is taken.
        """
        if channel.queue_id in self._queues or self.queue_by_name(channel.name) is not None:
            raise QueueAlreadyExistsError(channel.name)

        queue = self._build_queue(channel, authorized_helper_ids)
        await queue.cleanup_channel()
        await self.fanout.broadcast("on_queue_create", queue.snapshot())
        self.logger.info(f"Created queue {channel.name}")
        return queue

    async def delete_queue(self, queue_id: int) -> None:
        """Drop a queue. Everyone waiting in it is discarded.

        Raises:
            QueueDoesNotExistError: the queue is unknown.
        """
        queue = self._queues.pop(queue_id, None)
        if queue is None:
            raise QueueDoesNotExistError()

        self._queue_channels = tuple(q.channel for q in self._queues.values())
        await queue.graceful_delete()
        self.logger.info(f"Deleted queue {queue.name}")

    async def cleanup_queue_display(self, queue_id: int) -> None:
        await self.get_queue(queue_id).cleanup_channel()

    # ==================== Settings ====================

    async def set_auto_clear(self, minutes: int | None) -> None:
        self.settings.auto_clear_minutes = minutes or None
        for queue in self._queues.values():
            queue.set_auto_clear(self.auto_clear)
        await self._render_queues(self._queues.values())

    def set_after_session_message(self, message: str) -> None:
        self.settings.after_session_message = message

    # ==================== Lifecycle ====================

    async def request_backup(self) -> None:
        await self.fanout.broadcast("on_server_request_backup", self.snapshot())

    async def periodic_tick(self) -> None:
        await self.fanout.broadcast("on_periodic_tick", self.snapshot())

    async def graceful_delete(self) -> None:
        """Back up and tear down before the bot leaves the workspace."""
        for queue in self._queues.values():
            queue.cancel_timers()
        await self.request_backup()
        await self.fanout.broadcast("on_server_delete", self.snapshot())
        self.logger.info("Deleted")

    # ==================== Internals ====================

    def _build_queue(self, channel: QueueChannel, authorized_helper_ids: Iterable[int]) -> HelpQueue:
        display = QueueDisplay(channel.name, channel.channel_id, self.transport)
        queue = HelpQueue(
            channel,
            display,
            self.notifier,
            self.fanout,
            self.clock,
            authorized_helper_ids=authorized_helper_ids,
            auto_clear=self.auto_clear,
        )
        self._queues[channel.queue_id] = queue
        self._queue_channels = tuple(q.channel for q in self._queues.values())
        return queue

    async def _open_or_join(self, queue: HelpQueue, helper_id: int, notify: bool) -> None:
        try:
            await queue.open(helper_id, notify)
        except AlreadyOpenError:
            queue.add_host(helper_id)

    async def _close_quietly(self, queue: HelpQueue, helper_id: int) -> None:
        try:
            await queue.close(helper_id)
        except AlreadyClosedError:
            pass

    async def _render_queues(self, queues: Iterable[HelpQueue]) -> None:
        await asyncio.gather(*(q.refresh() for q in queues))

    def _move_presence(self, member_id: int, channel_id: int) -> None:
        previous = self._member_channel.get(member_id)
        if previous is not None and previous != channel_id:
            members = self._presence.get(previous, set())
            members.discard(member_id)
            if not members:
                self._presence.pop(previous, None)
        self._member_channel[member_id] = channel_id
        self._presence.setdefault(channel_id, set()).add(member_id)

    def _pending_entry(self, participant_id: int) -> WaitingEntry | None:
        """The served entry of a participant who has not shown up yet."""
        for helper in self._helpers.values():
            for entry in reversed(helper.helped_list):
                if entry.participant_id == participant_id and entry.up_next:
                    return entry
        return None

    @staticmethod
    def _helper_snapshot(helper: Helper) -> HelperSnapshot:
        return HelperSnapshot(
            helper_id=helper.helper_id,
            display_name=helper.display_name,
            help_start=helper.help_start,
            help_end=helper.help_end,
            active_state=helper.active_state,
            helped=tuple(entry_snapshot(e) for e in helper.helped_list),
        )
