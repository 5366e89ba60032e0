"""
Read-only HTTP status for the player.

    GET /status  → {"cursor": 0, "paused": false, "interrupt_active": false,
                    "track": {...}, "playlist_length": 12, "connected": true}

Only started when `status_port` is set in config.json.
"""

import logging

from aiohttp import web

log = logging.getLogger(__name__)


class StatusServer:

    def __init__(self, player, port: int, host: str = "0.0.0.0"):
        self.player = player
        self.port = port
        self.host = host
        self._runner: web.AppRunner | None = None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/status", self._handle_status)
        app.router.add_options("/status", self._handle_cors)
        return app

    async def start(self):
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("Status API on port %d", self.port)

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    def _cors_headers(self):
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    async def _handle_cors(self, request):
        return web.Response(headers=self._cors_headers())

    async def _handle_status(self, request):
        return web.json_response(self.player.snapshot(), headers=self._cors_headers())
