"""Moshpit feature module."""

from discord.ext import commands

from .cog import MoshpitCog

__all__ = ["MoshpitCog", "setup"]


async def setup(bot: commands.Bot) -> None:
    """Extension entry point."""
    await bot.add_cog(MoshpitCog(bot))
