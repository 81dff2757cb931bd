"""Repository for the moshpit_users table."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

import asyncpg

from shared.cache import AsyncTTLCache, cached
from shared.models.user import UserCredential

logger = logging.getLogger(__name__)

_USER_COLUMNS = (
    "discord_user_id, spotify_user_id, spotify_access_token, "
    "spotify_refresh_token, spotify_token_expiration, moshpit_id"
)

# Short TTL: rows change on every token refresh and writes invalidate anyway.
_credential_cache = AsyncTTLCache(maxsize=256, ttl=300)


class UserRepository:
    """Pure SQL operations for moshpit_users, one row per Discord user."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get_user(self, discord_user_id: int) -> UserCredential | None:
        """Return the user's row whether or not Spotify is linked."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM moshpit_users WHERE discord_user_id = $1",
                discord_user_id,
            )
            if not row:
                return None
            return UserCredential(**dict(row))

    @cached(
        cache=_credential_cache,
        key_func=lambda self, discord_user_id: f"credential:{discord_user_id}",
    )
    async def get_credential(self, discord_user_id: int) -> UserCredential | None:
        """Return the user's row only if it holds a complete token set."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_USER_COLUMNS} FROM moshpit_users
                WHERE discord_user_id = $1
                  AND spotify_access_token IS NOT NULL
                  AND spotify_refresh_token IS NOT NULL
                  AND spotify_token_expiration IS NOT NULL
                """,
                discord_user_id,
            )
            if not row:
                return None
            return UserCredential(**dict(row))

    async def upsert_credential(
        self,
        discord_user_id: int,
        spotify_user_id: str | None,
        access_token: str,
        refresh_token: str,
        expiration: datetime,
    ) -> None:
        """Insert or replace a user's full token set after authorization."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO moshpit_users (
                    discord_user_id, spotify_user_id, spotify_access_token,
                    spotify_refresh_token, spotify_token_expiration
                )
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (discord_user_id) DO UPDATE SET
                    spotify_user_id          = COALESCE(EXCLUDED.spotify_user_id,
                                                        moshpit_users.spotify_user_id),
                    spotify_access_token     = EXCLUDED.spotify_access_token,
                    spotify_refresh_token    = EXCLUDED.spotify_refresh_token,
                    spotify_token_expiration = EXCLUDED.spotify_token_expiration
                """,
                discord_user_id,
                spotify_user_id,
                access_token,
                refresh_token,
                expiration,
            )
        _credential_cache.invalidate(f"credential:{discord_user_id}")

    async def update_access_token(
        self,
        discord_user_id: int,
        access_token: str,
        refresh_token: str,
        expiration: datetime,
    ) -> None:
        """Store a refreshed token set in place."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE moshpit_users SET
                    spotify_access_token     = $2,
                    spotify_refresh_token    = $3,
                    spotify_token_expiration = $4
                WHERE discord_user_id = $1
                """,
                discord_user_id,
                access_token,
                refresh_token,
                expiration,
            )
        _credential_cache.invalidate(f"credential:{discord_user_id}")

    async def set_current_moshpit(self, discord_user_id: int, moshpit_id: UUID | None) -> None:
        """Point a user at the moshpit they are currently in."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO moshpit_users (discord_user_id, moshpit_id)
                VALUES ($1, $2)
                ON CONFLICT (discord_user_id) DO UPDATE SET
                    moshpit_id = EXCLUDED.moshpit_id
                """,
                discord_user_id,
                moshpit_id,
            )
        _credential_cache.invalidate(f"credential:{discord_user_id}")
