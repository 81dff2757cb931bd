"""Moshpit cog constants."""

import discord

MOSHPIT_COLOR = discord.Color.from_str("#1DB954")

MSG_SIGN_IN_REQUIRED = "You must be signed in to Spotify to start a moshpit. Check your DMs!"
MSG_OWNER_PLAYBACK_FAILED = (
    "I couldn't start playback on your Spotify. Open Spotify on one of your devices and try again."
)
MSG_SOMETHING_WRONG = "Whoops! Something went very wrong."
MSG_NO_MOSHPIT = "You don't have a moshpit running in this server."
MSG_QUIT = "Your moshpit has ended. Thanks for moshing!"
MSG_LINKED = "Your Spotify account is connected to moshpit."
MSG_NOT_LINKED = "Your Spotify account isn't connected. Check your DMs and try again."
MSG_IS_USER = "You are listed as a moshpit user!"
MSG_NOT_USER = "You are not listed as a moshpit user."
