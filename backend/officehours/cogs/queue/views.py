"""Queue panel UI components."""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord
from discord import ui

from ...engine import QueueViewModel
from .constants import (
    CLOSED_COLOR,
    JOIN_ID,
    LEAVE_ID,
    MAX_LISTED_PARTICIPANTS,
    NOTIFY_ID,
    OPEN_COLOR,
    PAUSED_COLOR,
    UNNOTIFY_ID,
)

if TYPE_CHECKING:
    from .cog import QueueCog


def build_queue_embed(view_model: QueueViewModel) -> discord.Embed:
    """Render the queue panel."""
    paused = bool(view_model.helper_ids) and set(view_model.helper_ids) <= set(
        view_model.paused_helper_ids
    )
    if not view_model.is_open:
        color, status = CLOSED_COLOR, "Closed"
    elif paused:
        color, status = PAUSED_COLOR, "Paused"
    else:
        color, status = OPEN_COLOR, "Open"

    embed = discord.Embed(title=f"Queue for {view_model.queue_name}", color=color)
    embed.add_field(name="Status", value=status, inline=True)
    embed.add_field(name="Waiting", value=str(len(view_model.participant_names)), inline=True)

    if view_model.helper_ids:
        helpers = []
        for helper_id in view_model.helper_ids:
            suffix = " (paused)" if helper_id in view_model.paused_helper_ids else ""
            helpers.append(f"<@{helper_id}>{suffix}")
        embed.add_field(name="Helpers", value="\n".join(helpers), inline=False)

    names = view_model.participant_names[:MAX_LISTED_PARTICIPANTS]
    if names:
        lines = [f"`{i:>2}` {name}" for i, name in enumerate(names, start=1)]
        hidden = len(view_model.participant_names) - len(names)
        if hidden > 0:
            lines.append(f"... and {hidden} more")
        embed.add_field(name="Line", value="\n".join(lines), inline=False)
    else:
        embed.add_field(name="Line", value="Nobody is waiting.", inline=False)

    if view_model.auto_clear_at is not None:
        embed.set_footer(text="This queue will be cleared automatically")
        embed.timestamp = view_model.auto_clear_at
    return embed


class QueueActionButton(ui.Button):
    """One of the panel buttons, bound to a queue by id."""

    def __init__(
        self,
        cog: QueueCog,
        queue_id: int,
        action: str,
        label: str,
        style: discord.ButtonStyle,
        custom_id: str,
        disabled: bool = False,
    ):
        super().__init__(
            label=label,
            style=style,
            custom_id=custom_id.format(queue_id=queue_id),
            disabled=disabled,
        )
        self.cog = cog
        self.queue_id = queue_id
        self.action = action

    async def callback(self, interaction: discord.Interaction) -> None:
        await self.cog.handle_panel_action(interaction, self.queue_id, self.action)


class QueuePanelView(ui.View):
    """Join, leave and notification buttons below a queue panel."""

    def __init__(self, cog: QueueCog, queue_id: int, is_open: bool):
        super().__init__(timeout=None)
        self.add_item(
            QueueActionButton(
                cog, queue_id, "join", "Join", discord.ButtonStyle.success, JOIN_ID,
                disabled=not is_open,
            )
        )
        self.add_item(
            QueueActionButton(cog, queue_id, "leave", "Leave", discord.ButtonStyle.danger, LEAVE_ID)
        )
        self.add_item(
            QueueActionButton(
                cog, queue_id, "notify", "Notify When Open", discord.ButtonStyle.primary, NOTIFY_ID
            )
        )
        self.add_item(
            QueueActionButton(
                cog, queue_id, "unnotify", "Stop Notifying", discord.ButtonStyle.secondary,
                UNNOTIFY_ID,
            )
        )
