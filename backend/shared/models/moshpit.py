"""Data models for the moshpits and recommendations tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass
class Moshpit:
    """A shared listening session, scoped to one owner in one guild."""

    moshpit_id: UUID
    discord_guild_id: int
    owner_discord_id: int
    spotify_playlist_id: str
    join_secret: str | None = None
    created_at: datetime | None = None


@dataclass
class Recommendation:
    """A recommended track added to a moshpit playlist, with its audio features."""

    spotify_uri: str
    moshpit_id: UUID
    energy: float
    danceability: float
    instrumentalness: float
    valence: float
