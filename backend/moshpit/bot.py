"""
Moshpit Discord Bot
discord.py 2.x with slash commands
"""

import asyncio
import logging
from pathlib import Path

import discord
from discord.ext import commands
from dotenv import load_dotenv

from moshpit.config import BOT_VERSION, Settings, get_settings
from moshpit.core.callback_server import CallbackServer
from moshpit.core.logging import setup_logging
from moshpit.services.authorization import AuthorizationRegistry
from moshpit.services.credentials import CredentialManager
from moshpit.services.join_collector import JoinCollector
from moshpit.services.orchestrator import MonitorRegistry, SessionOrchestrator
from moshpit.services.seed_sampler import SeedSampler
from moshpit.services.spotify_api import SpotifyAPIClient
from shared.database import DatabaseManager, PoolConfig
from shared.repositories.moshpit import MoshpitRepository
from shared.repositories.user import UserRepository

env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path, encoding="utf-8")

logger = logging.getLogger("moshpit")


class MoshpitClient(commands.Bot):
    """Moshpit Discord bot client"""

    def __init__(self, settings: Settings):
        intents = discord.Intents.default()
        intents.reactions = True

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
        )

        self.settings = settings
        self.initial_extensions = ["moshpit.cogs.moshpit"]

        self.db = DatabaseManager(settings.database_url, PoolConfig(ssl=settings.database_ssl))
        self.spotify = SpotifyAPIClient(
            settings.spotify_client_id,
            settings.spotify_client_secret,
            settings.spotify_redirect_uri,
        )
        self.authorizations = AuthorizationRegistry()
        self.monitors = MonitorRegistry()
        self.callback_server = CallbackServer(
            self.authorizations,
            settings.spotify_callback_path,
            bot=self,
            port=settings.callback_port,
        )

    async def setup_hook(self):
        """Connect the database, wire services and load cogs"""
        await self.db.connect()
        self.user_repo = UserRepository(self.db.pool)
        self.moshpit_repo = MoshpitRepository(self.db.pool)

        self.credentials = CredentialManager(self.user_repo, self.spotify, self.authorizations)
        self.orchestrator = SessionOrchestrator(
            self.credentials,
            self.spotify,
            self.user_repo,
            self.moshpit_repo,
            JoinCollector(self),
            SeedSampler(self.spotify, self.moshpit_repo),
            self.monitors,
        )

        # Must be listening before anyone is sent an authorization link
        await self.callback_server.start()

        loaded = []
        failed = []
        for extension in self.initial_extensions:
            try:
                await self.load_extension(extension)
                loaded.append(extension.split(".")[-1])
            except Exception as e:
                logger.exception(f"Failed to load {extension}: {e}")
                failed.append(f"{extension.split('.')[-1]} ({e})")

        if loaded:
            logger.info(f"[green]Loaded cogs:[/green] {', '.join(loaded)}")
        if failed:
            logger.error(f"[red]Failed to load:[/red] {', '.join(failed)}")

        logger.info("[yellow]Syncing slash commands...[/yellow]")
        guild_id = self.settings.discord_guild_id
        if guild_id:
            # Guild sync is immediate; global sync can take up to an hour
            guild = discord.Object(id=guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info(f"[magenta]Slash commands synced to guild {guild_id}[/magenta]")
        else:
            await self.tree.sync()
            logger.info("[magenta]Slash commands synced globally[/magenta]")

    async def on_ready(self):
        """Bot connected and ready"""
        await self.change_presence(activity=self.settings.get_activity())
        logger.info(
            f"[bold green]Bot ready:[/bold green] {self.user} [dim](ID: {self.user.id})[/dim]"
        )
        logger.info(
            f"[cyan]Connected:[/cyan] {len(self.guilds)} servers | "
            f"discord.py {discord.__version__} | moshpit {BOT_VERSION}"
        )

    async def close(self):
        """Stop monitors and release every connection before disconnecting"""
        await self.monitors.shutdown()
        self.authorizations.clear()
        await self.callback_server.stop()
        await self.spotify.close()
        await self.db.disconnect()
        await super().close()


async def main():
    """Bot entry point"""
    settings = get_settings()
    setup_logging(settings.log_level)

    async with MoshpitClient(settings) as bot:
        try:
            await bot.start(settings.discord_bot_token)
        except (KeyboardInterrupt, asyncio.CancelledError):
            if not bot.is_closed():
                await bot.close()


def run() -> None:
    """Console script entry point"""
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("[yellow]Bot stopped manually[/yellow]")


if __name__ == "__main__":
    run()
