"""HTTP server for Spotify OAuth redirects and health checks"""

import logging
import time
from typing import TYPE_CHECKING, Any

from aiohttp import web

from moshpit.core.exceptions import AuthorizationDenied
from moshpit.services.authorization import AuthorizationRegistry

if TYPE_CHECKING:
    from discord.ext.commands import Bot

logger = logging.getLogger(__name__)

THANKS_TEXT = "Thanks! You can return to Discord now."


class CallbackServer:
    """Receives the Spotify redirect and settles the matching authorization."""

    def __init__(
        self,
        registry: AuthorizationRegistry,
        callback_path: str,
        bot: "Bot | None" = None,
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> None:
        self.registry = registry
        self.callback_path = callback_path
        self.bot: Any = bot
        self.host = host
        self.port = port
        self.app = web.Application()
        self.runner: web.AppRunner | None = None
        self._start_time: float = time.time()
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Configure HTTP routes"""
        self.app.router.add_get(self.callback_path, self.handle_callback)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/ping", self.handle_ping)

    async def handle_callback(self, request: web.Request) -> web.Response:
        """Spotify authorization-code redirect.

        The user always sees the same page; only a known ``state`` with a
        ``code`` or ``error`` affects a pending authorization.
        """
        query = request.query
        state = query.get("state")

        if state and ("code" in query or "error" in query):
            if "error" in query:
                settled = self.registry.reject(
                    state,
                    AuthorizationDenied(
                        f"Received error callback from Spotify code authorization: {query['error']}"
                    ),
                )
            else:
                settled = self.registry.resolve(state, query["code"])

            if not settled:
                logger.warning(f"Received unexpected Spotify callback for state {state[:8]}...")
        else:
            logger.warning(
                f"Received malformed Spotify authorization callback: {request.path_qs}"
            )

        return web.Response(text=THANKS_TEXT)

    async def handle_health(self, request: web.Request) -> web.Response:
        """Liveness check, always 200"""
        ready = self.bot is not None and self.bot.is_ready()
        return web.json_response(
            {
                "status": "healthy" if ready else "starting",
                "ready": ready,
                "uptime_seconds": int(time.time() - self._start_time),
                "pending_authorizations": self.registry.pending_count,
            }
        )

    async def handle_ping(self, request: web.Request) -> web.Response:
        return web.Response(text="pong")

    async def start(self) -> None:
        """Start the callback server"""
        try:
            self.runner = web.AppRunner(self.app)
            await self.runner.setup()
            site = web.TCPSite(self.runner, self.host, self.port)
            await site.start()
            logger.info(f"Callback server started on {self.host}:{self.port}")
            logger.info(f"  GET {self.callback_path} - Spotify OAuth redirect")
        except Exception as e:
            logger.exception(f"Failed to start callback server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the callback server"""
        if self.runner:
            runner, self.runner = self.runner, None
            try:
                await runner.cleanup()
                logger.info("Callback server stopped")
            except Exception as e:
                logger.exception(f"Error stopping callback server: {e}")
