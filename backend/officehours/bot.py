"""
Office hours bot
discord.py 2.x with slash commands
"""

import asyncio
import dataclasses
import logging
from pathlib import Path
from typing import Any

# .env has to be loaded before the config is imported
from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent / ".env", encoding="utf-8")

import discord  # noqa: E402
from discord.ext import commands  # noqa: E402

from .cogs.queue.transport import LoggingChannelExtension  # noqa: E402
from .core import BotConfig, HealthCheckServer, setup_logging  # noqa: E402
from .core.database import DatabasePool  # noqa: E402
from .engine import ServerRegistry  # noqa: E402
from .extensions.attendance import AttendanceExtension  # noqa: E402
from .extensions.backup import BackupExtension  # noqa: E402
from .extensions.base import BaseExtension  # noqa: E402
from .migrations import MigrationRunner  # noqa: E402
from .models import WorkspaceSettings  # noqa: E402
from .repositories import (  # noqa: E402
    AttendanceRepository,
    BackupRepository,
    WorkspaceSettingsRepository,
)

setup_logging(BotConfig.LOG_LEVEL)
logger = logging.getLogger(__name__)


class OfficeHoursBot(commands.Bot):
    """Owns the workspace registry and the shared persistence services."""

    def __init__(self) -> None:
        intents = discord.Intents.default()
        intents.members = True  # helper roles
        intents.voice_states = True  # session presence

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
        )

        self.initial_extensions = ["officehours.cogs.queue"]
        self.registry = ServerRegistry()
        self.backup_source: BackupExtension | None = None
        self.settings_repo: WorkspaceSettingsRepository | None = None
        self._engine_extensions: list[BaseExtension] = []
        self.health_server: HealthCheckServer | None = None

    async def setup_hook(self) -> None:
        if BotConfig.database_enabled():
            await self._setup_database()
        else:
            logger.warning("DATABASE_URL not set, backups and attendance are disabled")

        if self.backup_source is not None:
            self._engine_extensions.append(self.backup_source)
        if not BotConfig.DISABLE_EXTENSIONS:
            self._engine_extensions.append(LoggingChannelExtension(self))

        loaded = []
        failed = []
        for extension in self.initial_extensions:
            try:
                await self.load_extension(extension)
                loaded.append(extension.split(".")[-1])
            except Exception as e:
                failed.append(f"{extension.split('.')[-1]} ({e})")
                logger.exception(f"Failed to load {extension}")

        if loaded:
            logger.info(f"[green]Loaded cogs:[/green] {', '.join(loaded)}")
        if failed:
            logger.error(f"[red]Failed to load:[/red] {', '.join(failed)}")

        guild_id = BotConfig.get_guild_id()
        if guild_id is not None:
            guild = discord.Object(id=guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info(f"[magenta]Synced slash commands to guild {guild_id}[/magenta]")
        else:
            await self.tree.sync()
            logger.info("[magenta]Synced slash commands globally[/magenta]")

        if BotConfig.HEALTH_SERVER_ENABLED:
            self.health_server = HealthCheckServer(self, port=BotConfig.PORT)
            await self.health_server.start()

    async def _setup_database(self) -> None:
        pool = await DatabasePool.connect(BotConfig.DATABASE_URL)
        await MigrationRunner(pool).run_pending()

        self.settings_repo = WorkspaceSettingsRepository(pool)
        self.backup_source = BackupExtension(BackupRepository(pool))
        if not BotConfig.DISABLE_EXTENSIONS:
            self._engine_extensions.append(AttendanceExtension(AttendanceRepository(pool)))

    def extensions_for_workspace(self) -> list[BaseExtension]:
        return list(self._engine_extensions)

    async def load_settings(self, workspace_id: int) -> WorkspaceSettings:
        if self.settings_repo is None:
            return WorkspaceSettings(workspace_id=workspace_id)
        try:
            settings = await self.settings_repo.get(workspace_id)
        except Exception as e:
            logger.error(f"Failed to load settings of {workspace_id}: {e}")
            return WorkspaceSettings(workspace_id=workspace_id)
        # the cached instance stays untouched by later in-memory changes
        return dataclasses.replace(settings)

    async def save_settings(self, workspace_id: int, **fields: Any) -> None:
        if self.settings_repo is None:
            return
        try:
            await self.settings_repo.update(workspace_id, **fields)
        except Exception as e:
            logger.error(f"Failed to save settings of {workspace_id}: {e}")

    async def on_ready(self) -> None:
        logger.info(f"[bold green]Bot ready:[/bold green] {self.user} [dim](ID: {self.user.id})[/dim]")
        logger.info(
            f"[cyan]Connected:[/cyan] {len(self.guilds)} server(s) | discord.py {discord.__version__}"
        )

    async def close(self) -> None:
        for server in self.registry:
            await server.request_backup()
        if self.health_server is not None:
            await self.health_server.stop()
        await super().close()
        await DatabasePool.close()


async def main() -> None:
    token = BotConfig.TOKEN
    if not token:
        logger.error("[bold red]DISCORD_BOT_TOKEN is not set[/bold red]")
        logger.error("Set it in the .env file: DISCORD_BOT_TOKEN=your_token_here")
        return

    async with OfficeHoursBot() as bot:
        try:
            await bot.start(token)
        except (KeyboardInterrupt, asyncio.CancelledError):
            if not bot.is_closed():
                await bot.close()


def run() -> None:
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("[yellow]Bot stopped[/yellow]")
    except Exception as e:
        logger.error(f"[bold red]Bot crashed:[/bold red] {e}", exc_info=e)


if __name__ == "__main__":
    run()
