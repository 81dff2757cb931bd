"""Repository for the moshpits and recommendations tables."""

from __future__ import annotations

import logging
from uuid import UUID

import asyncpg

from shared.models.moshpit import Moshpit, Recommendation

logger = logging.getLogger(__name__)

_MOSHPIT_COLUMNS = (
    "moshpit_id, discord_guild_id, owner_discord_id, spotify_playlist_id, join_secret, created_at"
)


class MoshpitRepository:
    """Pure SQL operations for moshpit sessions and their recommendations."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # ==================== Moshpit Operations ====================

    async def get_for_owner(self, owner_discord_id: int, discord_guild_id: int) -> Moshpit | None:
        """Get the owner's moshpit in a guild, if one exists."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_MOSHPIT_COLUMNS} FROM moshpits
                WHERE owner_discord_id = $1 AND discord_guild_id = $2
                ORDER BY created_at DESC
                LIMIT 1
                """,
                owner_discord_id,
                discord_guild_id,
            )
            if not row:
                return None
            return Moshpit(**dict(row))

    async def create(
        self,
        owner_discord_id: int,
        discord_guild_id: int,
        spotify_playlist_id: str,
        join_secret: str | None = None,
    ) -> Moshpit:
        """Create a moshpit; the database generates its id."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO moshpits (
                    discord_guild_id, owner_discord_id, spotify_playlist_id, join_secret
                )
                VALUES ($1, $2, $3, $4)
                RETURNING {_MOSHPIT_COLUMNS}
                """,
                discord_guild_id,
                owner_discord_id,
                spotify_playlist_id,
                join_secret,
            )
            return Moshpit(**dict(row))

    async def delete(self, moshpit_id: UUID) -> bool:
        """Delete a moshpit. Returns True if deleted."""
        async with self.pool.acquire() as conn:
            result: str = await conn.execute(
                "DELETE FROM moshpits WHERE moshpit_id = $1",
                moshpit_id,
            )
            return result == "DELETE 1"

    # ==================== Recommendation Operations ====================

    async def add_recommendations(self, recommendations: list[Recommendation]) -> None:
        """Insert recommendation rows. Rows are never updated afterwards."""
        if not recommendations:
            return
        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO recommendations (
                    spotify_uri, moshpit_id, energy, danceability, instrumentalness, valence
                )
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                [
                    (
                        rec.spotify_uri,
                        rec.moshpit_id,
                        rec.energy,
                        rec.danceability,
                        rec.instrumentalness,
                        rec.valence,
                    )
                    for rec in recommendations
                ],
            )
        logger.debug(f"Stored {len(recommendations)} recommendations")
