"""Moshpit slash commands."""

import logging

import discord
from discord import app_commands
from discord.ext import commands

from moshpit.core.exceptions import AuthFailure, PlaybackStartFailure
from moshpit.services.orchestrator import StartResult

from .constants import (
    MOSHPIT_COLOR,
    MSG_IS_USER,
    MSG_LINKED,
    MSG_NO_MOSHPIT,
    MSG_NOT_LINKED,
    MSG_NOT_USER,
    MSG_OWNER_PLAYBACK_FAILED,
    MSG_QUIT,
    MSG_SIGN_IN_REQUIRED,
    MSG_SOMETHING_WRONG,
)

logger = logging.getLogger(__name__)


class MoshpitCog(commands.Cog):
    """Start, join and end shared Spotify sessions.

    Every command answers exactly once, with a followup after the deferred
    response, whatever the outcome.
    """

    moshpit = app_commands.Group(
        name="moshpit",
        description="Shared Spotify listening sessions",
        guild_only=True,
    )

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @property
    def orchestrator(self):
        return self.bot.orchestrator  # type: ignore[attr-defined]

    @property
    def credentials(self):
        return self.bot.credentials  # type: ignore[attr-defined]

    @property
    def users(self):
        return self.bot.user_repo  # type: ignore[attr-defined]

    # ==================== Helpers ====================

    @staticmethod
    def _build_start_embed(owner: discord.abc.User, result: StartResult) -> discord.Embed:
        title = "Moshpit resumed" if result.resumed else "Moshpit started"
        embed = discord.Embed(
            title=title,
            description=f"{owner.mention} is leading. Stop playback on Spotify to end it.",
            color=MOSHPIT_COLOR,
        )
        listeners = " ".join(user.mention for user in result.listeners) or "Just the owner"
        embed.add_field(name="Listening", value=listeners, inline=False)
        if result.skipped:
            embed.add_field(
                name="Couldn't join",
                value=" ".join(user.mention for user in result.skipped),
                inline=False,
            )
        if result.added_tracks:
            embed.add_field(
                name="Fresh tracks", value=f"{len(result.added_tracks)} added", inline=True
            )
        return embed

    # ==================== Commands ====================

    @moshpit.command(name="start", description="Start a moshpit in this channel")
    async def start(self, interaction: discord.Interaction):
        await interaction.response.defer(thinking=True)
        owner = interaction.user
        guild_name = interaction.guild.name if interaction.guild else "?"

        try:
            result = await self.orchestrator.start(
                owner, interaction.channel, interaction.guild_id
            )
        except AuthFailure as e:
            logger.info(f"Moshpit start by {owner.id} refused: {e}")
            await interaction.followup.send(MSG_SIGN_IN_REQUIRED)
            return
        except PlaybackStartFailure as e:
            logger.info(f"Moshpit start by {owner.id} failed: {e}")
            await interaction.followup.send(MSG_OWNER_PLAYBACK_FAILED)
            return
        except Exception as e:
            logger.exception(f"Moshpit start failed | server: {guild_name} | owner: {owner.id}: {e}")
            await interaction.followup.send(MSG_SOMETHING_WRONG)
            return

        logger.info(
            f"Moshpit {result.moshpit.moshpit_id} started | server: {guild_name} | "
            f"owner: {owner.name} | listeners: {len(result.listeners)}"
        )
        await interaction.followup.send(embed=self._build_start_embed(owner, result))

    @moshpit.command(name="quit", description="End your moshpit in this server")
    async def quit(self, interaction: discord.Interaction):
        await interaction.response.defer(thinking=True)
        try:
            ended = await self.orchestrator.quit(interaction.user, interaction.guild_id)
        except Exception as e:
            logger.exception(f"Moshpit quit failed for {interaction.user.id}: {e}")
            await interaction.followup.send(MSG_SOMETHING_WRONG)
            return

        await interaction.followup.send(MSG_QUIT if ended else MSG_NO_MOSHPIT)

    @moshpit.command(name="link", description="Connect your Spotify account")
    async def link(self, interaction: discord.Interaction):
        await interaction.response.defer(thinking=True, ephemeral=True)
        try:
            await self.credentials.get_access_token(interaction.user)
        except AuthFailure as e:
            logger.info(f"Link for {interaction.user.id} failed: {e.reason.value}")
            await interaction.followup.send(MSG_NOT_LINKED, ephemeral=True)
            return
        except Exception as e:
            logger.exception(f"Link failed for {interaction.user.id}: {e}")
            await interaction.followup.send(MSG_SOMETHING_WRONG, ephemeral=True)
            return

        await interaction.followup.send(MSG_LINKED, ephemeral=True)

    @moshpit.command(name="whoami", description="Check whether you are a moshpit user")
    async def whoami(self, interaction: discord.Interaction):
        try:
            user = await self.users.get_user(interaction.user.id)
        except Exception as e:
            logger.exception(f"whoami lookup failed for {interaction.user.id}: {e}")
            await interaction.response.send_message(MSG_SOMETHING_WRONG, ephemeral=True)
            return

        await interaction.response.send_message(
            MSG_IS_USER if user is not None else MSG_NOT_USER, ephemeral=True
        )

    @moshpit.command(name="ping", description="Check the bot's latency")
    async def ping(self, interaction: discord.Interaction):
        latency = round(self.bot.latency * 1000)
        await interaction.response.send_message(f"Pong! {latency}ms")
