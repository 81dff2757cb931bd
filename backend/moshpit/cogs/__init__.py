"""Discord cogs for the moshpit bot."""
