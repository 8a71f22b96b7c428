"""Office hours bot configuration"""

import logging
import os
from datetime import timedelta

logger = logging.getLogger(__name__)

BOT_NAME = "officehours"
BOT_VERSION = "1.0.0"


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class BotConfig:
    """Read once from the environment. Load ``.env`` before importing this module."""

    TOKEN: str = os.getenv("DISCORD_BOT_TOKEN", "")
    GUILD_ID: str = os.getenv("DISCORD_GUILD_ID", "")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    BACKUP_INTERVAL_MINUTES: int = int(os.getenv("BACKUP_INTERVAL_MINUTES", "30"))
    DISABLE_EXTENSIONS: bool = _get_bool("DISABLE_EXTENSIONS", "false")

    HEALTH_SERVER_ENABLED: bool = _get_bool("HEALTH_SERVER_ENABLED", "true")
    PORT: int = int(os.getenv("PORT", "8080"))

    @classmethod
    def database_enabled(cls) -> bool:
        return bool(cls.DATABASE_URL)

    @classmethod
    def get_guild_id(cls) -> int | None:
        if not cls.GUILD_ID:
            return None
        try:
            return int(cls.GUILD_ID)
        except ValueError:
            logger.warning(f"Ignoring invalid DISCORD_GUILD_ID: {cls.GUILD_ID}")
            return None

    @classmethod
    def backup_interval(cls) -> timedelta:
        if cls.BACKUP_INTERVAL_MINUTES <= 0:
            logger.warning(
                f"BACKUP_INTERVAL_MINUTES must be positive, got {cls.BACKUP_INTERVAL_MINUTES}. "
                "Falling back to 30 minutes."
            )
            return timedelta(minutes=30)
        return timedelta(minutes=cls.BACKUP_INTERVAL_MINUTES)
