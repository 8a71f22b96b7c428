"""Discord implementations of the engine's collaborator protocols."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import discord
from discord.ext import commands

from ...engine import QueueViewModel, RecentMessage
from ...extensions.base import BaseExtension
from ...models import AttendanceEntry, HelperSnapshot, QueueChannel, ServerSnapshot
from .constants import INVITE_MAX_AGE_SECONDS
from .views import build_queue_embed

logger = logging.getLogger(__name__)


async def _text_channel(bot: commands.Bot, channel_id: int) -> discord.TextChannel:
    channel = bot.get_channel(channel_id)
    if channel is None:
        channel = await bot.fetch_channel(channel_id)
    if not isinstance(channel, discord.TextChannel):
        raise TypeError(f"Channel {channel_id} is not a text channel")
    return channel


async def _user(bot: commands.Bot, user_id: int) -> discord.User:
    user = bot.get_user(user_id)
    if user is None:
        user = await bot.fetch_user(user_id)
    return user


class DiscordRenderTransport:
    """Draws queue panels as an embed with buttons."""

    def __init__(
        self,
        bot: commands.Bot,
        view_factory: Callable[[QueueViewModel], discord.ui.View | None],
    ) -> None:
        self.bot = bot
        self.view_factory = view_factory

    @property
    def self_id(self) -> int:
        if self.bot.user is None:
            raise RuntimeError("Bot is not logged in")
        return self.bot.user.id

    def _render(self, payload: Any) -> dict[str, Any]:
        if isinstance(payload, QueueViewModel):
            return {"embed": build_queue_embed(payload), "view": self.view_factory(payload)}
        if isinstance(payload, discord.Embed):
            return {"embed": payload}
        return {"content": str(payload)}

    async def send_message(self, channel_id: int, payload: Any) -> int:
        channel = await _text_channel(self.bot, channel_id)
        message = await channel.send(**self._render(payload))
        return message.id

    async def edit_message(self, channel_id: int, message_id: int, payload: Any) -> None:
        channel = await _text_channel(self.bot, channel_id)
        await channel.get_partial_message(message_id).edit(**self._render(payload))

    async def fetch_recent_messages(self, channel_id: int, limit: int) -> list[RecentMessage]:
        channel = await _text_channel(self.bot, channel_id)
        newest_first = [
            RecentMessage(message_id=m.id, author_id=m.author.id)
            async for m in channel.history(limit=limit)
        ]
        return list(reversed(newest_first))

    async def delete_all_messages(self, channel_id: int) -> None:
        channel = await _text_channel(self.bot, channel_id)
        deleted = await channel.purge(limit=None)
        logger.debug(f"Purged {len(deleted)} message(s) from {channel.name}")


class DiscordSessionNotifier:
    """DMs members and invites served participants to the helper's voice channel."""

    def __init__(self, bot: commands.Bot, guild_id: int) -> None:
        self.bot = bot
        self.guild_id = guild_id

    async def send_direct(self, participant_id: int, content: str) -> None:
        user = await _user(self.bot, participant_id)
        await user.send(content)

    async def invite_to_session(
        self, participant_id: int, helper_id: int, queue: QueueChannel
    ) -> None:
        guild = self.bot.get_guild(self.guild_id)
        helper = guild.get_member(helper_id) if guild else None
        voice = helper.voice.channel if helper and helper.voice else None

        if voice is None:
            await self.send_direct(
                participant_id,
                f"It's your turn in `{queue.name}`! <@{helper_id}> will reach out to you shortly.",
            )
            return

        participant = guild.get_member(participant_id) if guild else None
        if participant is not None:
            await voice.set_permissions(
                participant, view_channel=True, connect=True, reason="Office hours session"
            )
        invite = await voice.create_invite(
            max_age=INVITE_MAX_AGE_SECONDS, max_uses=1, reason="Office hours session"
        )
        await self.send_direct(
            participant_id,
            f"It's your turn in `{queue.name}`! Join <@{helper_id}> here: {invite.url}",
        )


class LoggingChannelExtension(BaseExtension):
    """Posts helper start and stop events to the workspace's logging channel."""

    name = "logging_channel"

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def _post(self, server: ServerSnapshot, content: str) -> None:
        if server.logging_channel_id is None:
            return
        channel = await _text_channel(self.bot, server.logging_channel_id)
        await channel.send(content, allowed_mentions=discord.AllowedMentions.none())

    async def on_helper_start(self, server: ServerSnapshot, helper: HelperSnapshot) -> None:
        await self._post(server, f"<@{helper.helper_id}> started helping.")

    async def on_helper_stop(
        self,
        server: ServerSnapshot,
        helper: HelperSnapshot,
        attendance: AttendanceEntry | None,
    ) -> None:
        helped = len(helper.helped)
        minutes = attendance.active_time_ms // 60000 if attendance else 0
        await self._post(
            server,
            f"<@{helper.helper_id}> stopped helping. "
            f"Helped {helped} participant(s), {minutes} minute(s) in sessions.",
        )
