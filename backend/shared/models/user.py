"""Data models for the moshpit_users table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass
class UserCredential:
    """A Discord user's Spotify link.

    ``spotify_access_token`` is only ever set together with the refresh
    token and the expiry.
    """

    discord_user_id: int
    spotify_user_id: str | None = None
    spotify_access_token: str | None = None
    spotify_refresh_token: str | None = None
    spotify_token_expiration: datetime | None = None
    moshpit_id: UUID | None = None

    @property
    def is_linked(self) -> bool:
        return (
            self.spotify_access_token is not None
            and self.spotify_refresh_token is not None
            and self.spotify_token_expiration is not None
        )
