"""Office hours queue feature module."""

from discord.ext import commands

from .cog import QueueCog

__all__ = ["QueueCog", "setup"]


async def setup(bot: commands.Bot) -> None:
    """Extension entry point."""
    await bot.add_cog(QueueCog(bot))  # type: ignore[arg-type]
