"""Maps guild structure to queue identities and helper authorizations.

A queue is a category holding a ``#queue`` text channel. Members holding the
role named like the category may help that queue.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import discord

from ...models import QueueChannel
from .constants import QUEUE_ROLE_REASON, QUEUE_TEXT_CHANNEL

logger = logging.getLogger(__name__)


def discover_queue_channels(guild: discord.Guild) -> list[QueueChannel]:
    """Queue identities of a guild, oldest category first."""
    channels = []
    for category in sorted(guild.categories, key=lambda c: c.id):
        text = discord.utils.get(category.text_channels, name=QUEUE_TEXT_CHANNEL)
        if text is None:
            continue
        channels.append(QueueChannel(queue_id=category.id, name=category.name, channel_id=text.id))
    return channels


def resolve_authorizations(
    guild: discord.Guild, channels: Iterable[QueueChannel]
) -> dict[int, set[int]]:
    authorizations: dict[int, set[int]] = {}
    for channel in channels:
        role = discord.utils.get(guild.roles, name=channel.name)
        authorizations[channel.queue_id] = {m.id for m in role.members} if role else set()
    return authorizations


def member_queue_ids(member: discord.Member, channels: Iterable[QueueChannel]) -> set[int]:
    role_names = {role.name for role in member.roles}
    return {channel.queue_id for channel in channels if channel.name in role_names}


async def provision_queue(guild: discord.Guild, name: str) -> QueueChannel:
    """Create the category, its queue channel and the helper role."""
    category = await guild.create_category(name, reason=QUEUE_ROLE_REASON)
    text = await category.create_text_channel(QUEUE_TEXT_CHANNEL, reason=QUEUE_ROLE_REASON)
    if discord.utils.get(guild.roles, name=name) is None:
        await guild.create_role(name=name, mentionable=True, reason=QUEUE_ROLE_REASON)
    logger.info(f"Provisioned queue {name} in {guild.name}")
    return QueueChannel(queue_id=category.id, name=name, channel_id=text.id)


async def deprovision_queue(guild: discord.Guild, queue: QueueChannel) -> None:
    """Delete the category with its channels. The helper role is kept."""
    category = guild.get_channel(queue.queue_id)
    if not isinstance(category, discord.CategoryChannel):
        return
    for channel in category.channels:
        await channel.delete(reason=QUEUE_ROLE_REASON)
    await category.delete(reason=QUEUE_ROLE_REASON)
    logger.info(f"Deprovisioned queue {queue.name} in {guild.name}")
