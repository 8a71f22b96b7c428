"""HTTP health and status endpoints served next to the bot."""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from aiohttp import web

from .config import BOT_NAME, BOT_VERSION

if TYPE_CHECKING:
    from ..bot import OfficeHoursBot

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 300


class HealthCheckServer:
    """Liveness, readiness and queue activity for the container platform.

    ``/health`` always answers 200 so the platform never kills a bot that is
    still reconnecting; ``/ready`` answers 503 until the gateway is ready.
    """

    def __init__(
        self, bot: "OfficeHoursBot | None" = None, host: str = "0.0.0.0", port: int = 8080
    ) -> None:
        self.bot: Any = bot
        self.host = host
        self.port = port
        self.started_at = time.monotonic()
        self.app = web.Application()
        self.app.add_routes(
            [
                web.get("/", self.handle_root),
                web.get("/health", self.handle_health),
                web.get("/ready", self.handle_ready),
                web.get("/status", self.handle_status),
                web.get("/workspaces", self.handle_workspaces),
                web.get("/ping", self.handle_ping),
            ]
        )
        self._runner: web.AppRunner | None = None
        self._heartbeat: asyncio.Task | None = None

    @property
    def ready(self) -> bool:
        return self.bot is not None and self.bot.is_ready()

    @property
    def uptime(self) -> int:
        return int(time.monotonic() - self.started_at)

    def _servers(self) -> list:
        return list(self.bot.registry) if self.bot is not None else []

    def activity(self) -> dict[str, int]:
        servers = self._servers()
        queues = [q for server in servers for q in server.queues]
        return {
            "workspaces": len(servers),
            "queues": len(queues),
            "open_queues": sum(q.is_open for q in queues),
            "waiting": sum(len(q) for q in queues),
            "helpers": sum(len(server.helpers) for server in servers),
        }

    # ==================== Handlers ====================

    async def handle_root(self, request: web.Request) -> web.Response:
        return web.json_response({"service": BOT_NAME, "version": BOT_VERSION})

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy" if self.ready else "starting", "ready": self.ready})

    async def handle_ready(self, request: web.Request) -> web.Response:
        return web.json_response({"ready": self.ready}, status=200 if self.ready else 503)

    async def handle_status(self, request: web.Request) -> web.Response:
        user = self.bot.user if self.ready else None
        return web.json_response(
            {
                "service": BOT_NAME,
                "version": BOT_VERSION,
                "bot_id": str(user.id) if user else None,
                "uptime_seconds": self.uptime,
                **self.activity(),
            }
        )

    async def handle_workspaces(self, request: web.Request) -> web.Response:
        return web.json_response(
            [
                {
                    "id": str(server.workspace_id),
                    "name": server.workspace_name,
                    "queues": [
                        {"name": q.name, "open": q.is_open, "waiting": len(q)}
                        for q in server.queues
                    ],
                    "helpers": len(server.helpers),
                }
                for server in self._servers()
            ]
        )

    async def handle_ping(self, request: web.Request) -> web.Response:
        return web.Response(text="pong")

    # ==================== Lifecycle ====================

    async def _log_heartbeat(self) -> None:
        while True:
            await asyncio.sleep(HEARTBEAT_SECONDS)
            stats = self.activity()
            logger.info(
                f"Heartbeat: uptime={self.uptime}s ready={self.ready} "
                f"workspaces={stats['workspaces']} helpers={stats['helpers']} "
                f"waiting={stats['waiting']}"
            )

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        try:
            await web.TCPSite(self._runner, self.host, self.port).start()
        except OSError:
            logger.exception(f"Health server could not bind {self.host}:{self.port}")
            await self._runner.cleanup()
            self._runner = None
            raise
        self._heartbeat = asyncio.create_task(self._log_heartbeat())
        logger.info(f"[cyan]Health server listening on {self.host}:{self.port}[/cyan]")

    async def stop(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Health server stopped")
