"""Core modules for the office hours bot."""

from .config import BOT_NAME, BOT_VERSION, BotConfig
from .health_server import HealthCheckServer
from .logging import setup_logging

__all__ = [
    # Config
    "BotConfig",
    "BOT_NAME",
    "BOT_VERSION",
    # Services
    "HealthCheckServer",
    # Logging
    "setup_logging",
]
