"""Render-safety tracking for queue channel messages."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from .errors import UnsafeRenderError
from .protocols import RecentMessage, RenderTransport

logger = logging.getLogger(__name__)


@dataclass
class _PanelSlot:
    ready: bool = False
    message_id: int | None = None
    payload: Any = None


class QueueDisplay:
    """Decides whether a panel update may edit the existing message.

    A queue channel shows one message per panel: index 0 is the queue panel,
    higher indices are auxiliary panels supplied by extensions. A panel is
    ``ready`` once it was freshly sent by this display. Edits are only made
    when the most recent messages of the channel are exactly the ready panel
    messages; anything else means someone posted in between and the caller has
    to run :meth:`cleanup` first.
    """

    def __init__(
        self,
        queue_name: str,
        channel_id: int,
        transport: RenderTransport,
        panel_count: int = 1,
    ) -> None:
        if panel_count < 1:
            raise ValueError("panel_count must be at least 1")
        self.queue_name = queue_name
        self.channel_id = channel_id
        self.transport = transport
        self._panels = [_PanelSlot() for _ in range(panel_count)]
        self._lock = asyncio.Lock()

    @property
    def panel_count(self) -> int:
        return len(self._panels)

    def is_ready(self, panel_index: int = 0) -> bool:
        return self._slot(panel_index).ready

    def message_id(self, panel_index: int = 0) -> int | None:
        return self._slot(panel_index).message_id

    async def render(self, payload: Any, panel_index: int = 0, force_fresh: bool = False) -> None:
        """Show ``payload`` in the given panel.

        Raises:
            UnsafeRenderError: the channel holds messages this display did not
                send after its panels. Nothing is edited and ``ready`` is kept.
        """
        slot = self._slot(panel_index)
        async with self._lock:
            slot.payload = payload
            if force_fresh or not slot.ready or slot.message_id is None:
                slot.message_id = await self.transport.send_message(self.channel_id, payload)
                slot.ready = True
                return

            live_ids = {s.message_id for s in self._panels if s.ready}
            recent = await self.transport.fetch_recent_messages(self.channel_id, len(live_ids))
            if not self._owns_channel_tail(recent, live_ids):
                logger.warning(
                    f"Queue {self.queue_name} has messages not sent by the bot, "
                    f"refusing to edit panel {panel_index}"
                )
                raise UnsafeRenderError(self.queue_name, panel_index)

            await self.transport.edit_message(self.channel_id, slot.message_id, payload)

    async def cleanup(self, payloads: dict[int, Any] | None = None) -> None:
        """Purge the channel and send every panel that has content again.

        ``payloads`` replaces the content of the given panels before sending.
        """
        async with self._lock:
            for index, payload in (payloads or {}).items():
                self._slot(index).payload = payload
            await self.transport.delete_all_messages(self.channel_id)
            for slot in self._panels:
                slot.ready = False
                slot.message_id = None
            for slot in self._panels:
                if slot.payload is None:
                    continue
                slot.message_id = await self.transport.send_message(self.channel_id, slot.payload)
                slot.ready = True
        logger.info(f"Cleaned up queue channel of {self.queue_name}")

    def _slot(self, panel_index: int) -> _PanelSlot:
        if not 0 <= panel_index < len(self._panels):
            raise IndexError(f"panel {panel_index} does not exist in {self.queue_name}")
        return self._panels[panel_index]

    def _owns_channel_tail(self, recent: list[RecentMessage], live_ids: set[int | None]) -> bool:
        if len(recent) != len(live_ids):
            return False
        if any(message.author_id != self.transport.self_id for message in recent):
            return False
        return {message.message_id for message in recent} == live_ids
