"""Logging setup for the bot process."""

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

DATE_FORMAT = "[%Y-%m-%d %H:%M:%S]"
PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Libraries that log every gateway event or query at INFO
QUIET_LOGGERS = ("discord", "discord.http", "discord.gateway", "aiohttp.access", "asyncpg")


def _rich_handler() -> RichHandler:
    handler = RichHandler(
        console=Console(force_terminal=True, width=120),
        show_path=False,
        markup=True,
        rich_tracebacks=True,
        tracebacks_width=120,
        log_time_format=DATE_FORMAT,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def setup_logging(level_name: str | None = None) -> None:
    """Send every record through rich, or plain stderr if rich can't start.

    ``level_name`` defaults to the ``LOG_LEVEL`` environment variable.
    """
    level_name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    try:
        logging.basicConfig(level=level, handlers=[_rich_handler()], force=True)
    except Exception as e:
        logging.basicConfig(level=level, format=PLAIN_FORMAT, force=True)
        logging.getLogger(__name__).warning(f"Rich handler unavailable ({e}), logging plain text")

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
