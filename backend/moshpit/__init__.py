"""Moshpit: shared, synchronized Spotify listening sessions for Discord."""
