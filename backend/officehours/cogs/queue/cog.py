"""Office hours queue cog."""

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands, tasks

from ...core import BotConfig
from ...engine import AttendingServer, HelpQueue, OfficeHoursError, QueueViewModel
from ...engine.errors import QueueDoesNotExistError, ServerNotInitializedError
from .transport import DiscordRenderTransport, DiscordSessionNotifier
from .views import QueuePanelView
from .workspace import (
    deprovision_queue,
    discover_queue_channels,
    member_queue_ids,
    provision_queue,
    resolve_authorizations,
)

if TYPE_CHECKING:
    from ...bot import OfficeHoursBot

logger = logging.getLogger(__name__)


def _format_minutes(ms: int) -> str:
    minutes = ms // 60000
    return f"{minutes // 60}h {minutes % 60}m" if minutes >= 60 else f"{minutes}m"


class QueueCog(commands.Cog):
    """Office hours queues: slash commands, panel buttons and voice presence."""

    def __init__(self, bot: "OfficeHoursBot"):
        self.bot = bot
        self.registry = bot.registry

    async def cog_load(self) -> None:
        minutes = BotConfig.backup_interval().total_seconds() / 60
        self.backup_task.change_interval(minutes=minutes)
        self.backup_task.start()

    async def cog_unload(self) -> None:
        self.backup_task.cancel()

    # ==================== Workspace lifecycle ====================

    async def init_workspace(self, guild: discord.Guild) -> AttendingServer:
        return await self.registry.get_or_create(guild.id, lambda: self._build_server(guild))

    async def _build_server(self, guild: discord.Guild) -> AttendingServer:
        channels = discover_queue_channels(guild)
        return await AttendingServer.create(
            guild.id,
            guild.name,
            channels,
            DiscordRenderTransport(self.bot, self._panel_view),
            DiscordSessionNotifier(self.bot, guild.id),
            authorizations=resolve_authorizations(guild, channels),
            backup_source=self.bot.backup_source,
            extensions=self.bot.extensions_for_workspace(),
            settings=await self.bot.load_settings(guild.id),
        )

    def _panel_view(self, view_model: QueueViewModel) -> QueuePanelView:
        return QueuePanelView(self, view_model.queue_id, view_model.is_open)

    async def _safe_init(self, guild: discord.Guild) -> None:
        try:
            await self.init_workspace(guild)
        except Exception as e:
            logger.exception(f"Failed to initialize workspace {guild.name} ({guild.id}): {e}")

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        await asyncio.gather(*(self._safe_init(guild) for guild in self.bot.guilds))
        logger.info(f"Serving {len(self.registry)} workspace(s)")

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self._safe_init(guild)

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        await self.registry.remove(guild.id)

    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if before.roles == after.roles:
            return
        server = self.registry.safe_get(after.guild.id)
        if server is None:
            return
        server.update_helper_authorizations(
            after.id, member_queue_ids(after, server.queue_channels)
        )

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if before.channel == after.channel:
            return
        server = self.registry.safe_get(member.guild.id)
        if server is None:
            return
        if before.channel is not None:
            await server.on_participant_leave_session(member.id)
        if after.channel is not None:
            await server.on_participant_join_session(member.id, after.channel.id)

    # ==================== Background Tasks ====================

    @tasks.loop(minutes=30)
    async def backup_task(self) -> None:
        for server in self.registry:
            await server.request_backup()
            await server.periodic_tick()

    @backup_task.before_loop
    async def _wait_ready(self) -> None:
        await self.bot.wait_until_ready()

    # ==================== Helpers ====================

    def _server(self, interaction: discord.Interaction) -> AttendingServer:
        if interaction.guild_id is None:
            raise ServerNotInitializedError("This command only works inside a server.")
        return self.registry.get(interaction.guild_id)

    @staticmethod
    def _guild(interaction: discord.Interaction) -> discord.Guild:
        if interaction.guild is None:
            raise ServerNotInitializedError("This command only works inside a server.")
        return interaction.guild

    @staticmethod
    def _queue(server: AttendingServer, name: str) -> HelpQueue:
        queue = server.queue_by_name(name)
        if queue is None:
            raise QueueDoesNotExistError(f"Queue {name} does not exist.")
        return queue

    @staticmethod
    async def _send(interaction: discord.Interaction, content: str) -> None:
        if interaction.response.is_done():
            await interaction.followup.send(content, ephemeral=True)
        else:
            await interaction.response.send_message(content, ephemeral=True)

    async def _reply(
        self, interaction: discord.Interaction, server: AttendingServer, content: str
    ) -> None:
        """Reply and append a cleanup hint for every queue that could not re-render."""
        errors = server.pop_render_errors()
        if errors:
            content = "\n".join([content, *(str(e) for e in errors)])
        await self._send(interaction, content)

    async def queue_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        server = self.registry.safe_get(interaction.guild_id or 0)
        if server is None:
            return []
        return [
            app_commands.Choice(name=q.name, value=q.name)
            for q in server.queues
            if current.lower() in q.name.lower()
        ][:25]

    async def handle_panel_action(
        self, interaction: discord.Interaction, queue_id: int, action: str
    ) -> None:
        """Button presses on a queue panel."""
        try:
            server = self._server(interaction)
            queue = server.get_queue(queue_id)
            user = interaction.user
            if action == "join":
                await interaction.response.defer(ephemeral=True)
                await server.enqueue(queue_id, user.id, user.display_name)
                message = f"You joined `{queue.name}`."
            elif action == "leave":
                await interaction.response.defer(ephemeral=True)
                entry = await server.leave_queue(queue_id, user.id)
                message = f"You left `{queue.name}`." if entry else f"You are not in `{queue.name}`."
            elif action == "notify":
                server.subscribe(queue_id, user.id)
                message = f"You will be notified when `{queue.name}` opens."
            elif action == "unnotify":
                server.unsubscribe(queue_id, user.id)
                message = f"You will no longer be notified about `{queue.name}`."
            else:
                raise ValueError(f"Unknown panel action {action}")
            await self._reply(interaction, server, message)
        except OfficeHoursError as e:
            await self._send(interaction, e.brief())
        except Exception as e:
            logger.exception(f"Panel action {action} on {queue_id} failed: {e}")
            await self._send(interaction, "Something went wrong. Please try again later.")

    # ==================== Helper Commands ====================

    @app_commands.command(name="start", description="Start helping and open your queues")
    @app_commands.describe(notify="Notify everyone waiting for your queues to open")
    async def start(self, interaction: discord.Interaction, notify: bool = False) -> None:
        server = self._server(interaction)
        await interaction.response.defer(ephemeral=True)
        await server.open_all_openable_queues(
            interaction.user.id, notify=notify, display_name=interaction.user.display_name
        )
        queues = ", ".join(f"`{q.name}`" for q in server.authorized_queues(interaction.user.id))
        await self._reply(interaction, server, f"You started helping! Open queues: {queues}")

    @app_commands.command(name="stop", description="Stop helping and close your queues")
    async def stop(self, interaction: discord.Interaction) -> None:
        server = self._server(interaction)
        await interaction.response.defer(ephemeral=True)
        finished = await server.close_all_closable_queues(interaction.user.id)
        helper = finished.helper
        elapsed = int((helper.help_end - helper.help_start).total_seconds() * 1000)
        await self._reply(
            interaction,
            server,
            f"You helped {len(helper.helped_list)} participant(s) in {_format_minutes(elapsed)}. "
            "See you later!",
        )

    @app_commands.command(name="next", description="Help the next participant")
    @app_commands.describe(queue="Only take from this queue", member="Take this participant")
    @app_commands.autocomplete(queue=queue_autocomplete)
    async def next_participant(
        self,
        interaction: discord.Interaction,
        queue: str | None = None,
        member: discord.Member | None = None,
    ) -> None:
        server = self._server(interaction)
        target_queue_id = self._queue(server, queue).queue_id if queue else None
        await interaction.response.defer(ephemeral=True)
        result = await server.serve_next(
            interaction.user.id,
            target_queue_id=target_queue_id,
            target_participant_id=member.id if member else None,
        )
        waited = interaction.created_at - result.entry.wait_start
        message = (
            f"Now helping <@{result.entry.participant_id}> from `{result.queue.name}` "
            f"(waited {_format_minutes(int(waited.total_seconds() * 1000))})."
        )
        if not result.invited:
            message += " They could not be messaged, please reach out to them directly."
        await self._reply(interaction, server, message)

    @app_commands.command(name="pause", description="Stop accepting new participants")
    async def pause(self, interaction: discord.Interaction) -> None:
        server = self._server(interaction)
        await interaction.response.defer(ephemeral=True)
        others_active = await server.pause_helping(interaction.user.id)
        message = "You paused helping. You can still use `/next` for those already waiting."
        if not others_active:
            message += " Nobody else is helping, so your queues no longer accept new participants."
        await self._reply(interaction, server, message)

    @app_commands.command(name="resume", description="Accept new participants again")
    async def resume(self, interaction: discord.Interaction) -> None:
        server = self._server(interaction)
        await interaction.response.defer(ephemeral=True)
        await server.resume_helping(interaction.user.id)
        await self._reply(interaction, server, "You resumed helping.")

    @app_commands.command(name="announce", description="Message everyone waiting in your queues")
    @app_commands.describe(message="What to announce", queue="Only announce to this queue")
    @app_commands.autocomplete(queue=queue_autocomplete)
    async def announce(
        self, interaction: discord.Interaction, message: str, queue: str | None = None
    ) -> None:
        server = self._server(interaction)
        queue_id = self._queue(server, queue).queue_id if queue else None
        await interaction.response.defer(ephemeral=True)
        delivered = await server.announce(interaction.user.id, message, queue_id)
        await self._reply(interaction, server, f"Announced to {delivered} participant(s).")

    # ==================== Participant Commands ====================

    @app_commands.command(name="enqueue", description="Join a queue")
    @app_commands.autocomplete(queue=queue_autocomplete)
    async def enqueue(self, interaction: discord.Interaction, queue: str) -> None:
        server = self._server(interaction)
        target = self._queue(server, queue)
        await interaction.response.defer(ephemeral=True)
        await server.enqueue(target.queue_id, interaction.user.id, interaction.user.display_name)
        await self._reply(interaction, server, f"You joined `{target.name}`.")

    @app_commands.command(name="leave", description="Leave one queue or all of them")
    @app_commands.autocomplete(queue=queue_autocomplete)
    async def leave(self, interaction: discord.Interaction, queue: str | None = None) -> None:
        server = self._server(interaction)
        await interaction.response.defer(ephemeral=True)
        if queue:
            target = self._queue(server, queue)
            entry = await server.leave_queue(target.queue_id, interaction.user.id)
            message = f"You left `{target.name}`." if entry else f"You are not in `{target.name}`."
        else:
            removed = await server.leave_all_queues(interaction.user.id)
            message = f"You left {len(removed)} queue(s)."
        await self._reply(interaction, server, message)

    # ==================== Admin Commands ====================

    @app_commands.command(name="clear", description="Remove everyone from a queue, or all queues")
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.autocomplete(queue=queue_autocomplete)
    async def clear(self, interaction: discord.Interaction, queue: str | None = None) -> None:
        server = self._server(interaction)
        await interaction.response.defer(ephemeral=True)
        if queue:
            target = self._queue(server, queue)
            removed = len(await server.clear_queue(target.queue_id))
        else:
            removed = await server.clear_all_queues()
        await self._reply(interaction, server, f"Removed {removed} participant(s).")

    @app_commands.command(name="cleanup", description="Purge a queue channel and redraw it")
    @app_commands.default_permissions(manage_guild=True)
    @app_commands.autocomplete(queue=queue_autocomplete)
    async def cleanup(self, interaction: discord.Interaction, queue: str) -> None:
        server = self._server(interaction)
        target = self._queue(server, queue)
        await interaction.response.defer(ephemeral=True)
        await server.cleanup_queue_display(target.queue_id)
        await self._reply(interaction, server, f"Cleaned up `{target.name}`.")

    queue_group = app_commands.Group(
        name="queue",
        description="Create or delete queues",
        default_permissions=discord.Permissions(manage_guild=True),
    )

    @queue_group.command(name="add", description="Create a queue with its channel and role")
    async def queue_add(self, interaction: discord.Interaction, name: str) -> None:
        server = self._server(interaction)
        guild = self._guild(interaction)
        if server.queue_by_name(name) is not None:
            await self._send(interaction, f"Queue `{name}` already exists.")
            return
        await interaction.response.defer(ephemeral=True)
        channel = await provision_queue(guild, name)
        authorized = resolve_authorizations(guild, [channel])[channel.queue_id]
        await server.create_queue(channel, authorized)
        await self._reply(interaction, server, f"Created queue `{name}`.")

    @queue_group.command(name="remove", description="Delete a queue and its channels")
    @app_commands.autocomplete(name=queue_autocomplete)
    async def queue_remove(self, interaction: discord.Interaction, name: str) -> None:
        server = self._server(interaction)
        guild = self._guild(interaction)
        target = self._queue(server, name)
        await interaction.response.defer(ephemeral=True)
        await server.delete_queue(target.queue_id)
        await deprovision_queue(guild, target.channel)
        await self._reply(interaction, server, f"Deleted queue `{name}`.")

    settings_group = app_commands.Group(
        name="settings",
        description="Office hours settings of this server",
        default_permissions=discord.Permissions(manage_guild=True),
    )

    @settings_group.command(name="after_session", description="Message sent after a session ends")
    @app_commands.describe(message="Leave empty to disable")
    async def settings_after_session(
        self, interaction: discord.Interaction, message: str = ""
    ) -> None:
        server = self._server(interaction)
        server.set_after_session_message(message)
        await self.bot.save_settings(server.workspace_id, after_session_message=message)
        await self._send(
            interaction, "After session message set." if message else "After session message disabled."
        )

    @settings_group.command(name="auto_clear", description="Clear closed queues after a while")
    @app_commands.describe(minutes="0 disables auto clear")
    async def settings_auto_clear(
        self, interaction: discord.Interaction, minutes: app_commands.Range[int, 0, 10080]
    ) -> None:
        server = self._server(interaction)
        await interaction.response.defer(ephemeral=True)
        await server.set_auto_clear(minutes)
        await self.bot.save_settings(server.workspace_id, auto_clear_minutes=minutes or None)
        message = f"Closed queues are cleared after {minutes} minute(s)." if minutes else "Auto clear disabled."
        await self._reply(interaction, server, message)

    @settings_group.command(name="tracking", description="Record attendance and help sessions")
    async def settings_tracking(self, interaction: discord.Interaction, enabled: bool) -> None:
        server = self._server(interaction)
        server.settings.tracking_enabled = enabled
        await self.bot.save_settings(server.workspace_id, tracking_enabled=enabled)
        await self._send(interaction, f"Tracking {'enabled' if enabled else 'disabled'}.")

    @settings_group.command(name="logging_channel", description="Post helper activity to a channel")
    @app_commands.describe(channel="Leave empty to disable")
    async def settings_logging_channel(
        self, interaction: discord.Interaction, channel: discord.TextChannel | None = None
    ) -> None:
        server = self._server(interaction)
        channel_id = channel.id if channel else None
        server.settings.logging_channel_id = channel_id
        await self.bot.save_settings(server.workspace_id, logging_channel_id=channel_id)
        await self._send(
            interaction, f"Logging to {channel.mention}." if channel else "Logging channel disabled."
        )

    # ==================== Error Handling ====================

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, OfficeHoursError):
            await self._send(interaction, original.brief())
            return
        if isinstance(error, app_commands.MissingPermissions):
            await self._send(interaction, "You don't have permission to use this command.")
            return

        command = interaction.command.qualified_name if interaction.command else "unknown"
        logger.error(
            f"Command /{command} failed in {interaction.guild_id}: {original}", exc_info=original
        )
        await self._send(interaction, "Something went wrong. Please try again later.")
