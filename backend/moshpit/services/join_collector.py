"""Reaction-based RSVP for a moshpit.

A prompt is posted with the join emoji already attached. Every other
member who reacts with that emoji joins, once, in arrival order. The
leader reacting closes the roster; otherwise it closes when the timeout
runs out, with whoever joined so far.
"""

import asyncio
import logging

import discord
from discord.ext import commands

logger = logging.getLogger(__name__)

JOIN_TIMEOUT = 60.0


class JoinCollector:
    """Collects joins through a temporary ``on_reaction_add`` listener."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def collect_joins(
        self,
        channel: discord.abc.Messageable,
        leader: discord.abc.User,
        prompt: str,
        emoji: str,
        timeout: float = JOIN_TIMEOUT,
    ) -> list[discord.abc.User]:
        """Run one join window and return the roster, leader excluded."""
        message = await channel.send(prompt)
        events: asyncio.Queue[discord.abc.User] = asyncio.Queue()

        async def on_reaction_add(reaction: discord.Reaction, user: discord.abc.User) -> None:
            if (
                reaction.message.id == message.id
                and str(reaction.emoji) == str(emoji)
                and not user.bot
            ):
                events.put_nowait(user)

        self.bot.add_listener(on_reaction_add, "on_reaction_add")
        try:
            await message.add_reaction(emoji)
            return await self._drain(events, leader, timeout)
        finally:
            self.bot.remove_listener(on_reaction_add, "on_reaction_add")
            try:
                await message.delete()
            except discord.HTTPException as e:
                logger.warning(f"Could not delete join prompt {message.id}: {e}")

    async def _drain(
        self,
        events: "asyncio.Queue[discord.abc.User]",
        leader: discord.abc.User,
        timeout: float,
    ) -> list[discord.abc.User]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        roster: list[discord.abc.User] = []
        seen: set[int] = set()

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                user = await asyncio.wait_for(events.get(), timeout=remaining)
            except asyncio.TimeoutError:
                break

            if user.id == leader.id:
                logger.debug(f"Leader {leader.id} closed the roster with {len(roster)} joins")
                return roster
            if user.id not in seen:
                seen.add(user.id)
                roster.append(user)

        logger.info(
            f"Join window for leader {leader.id} timed out with {len(roster)} joins"
        )
        return roster
