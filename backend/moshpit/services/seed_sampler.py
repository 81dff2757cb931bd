"""Playlist top-up from the participants' listening history."""

import asyncio
import logging
import random
from uuid import UUID

from moshpit.core.exceptions import PlaylistSeedFailure, SpotifyAPIError
from moshpit.services.spotify_api import SpotifyAPIClient
from shared.models.moshpit import Recommendation
from shared.repositories.moshpit import MoshpitRepository

logger = logging.getLogger(__name__)

TOP_TRACKS_LIMIT = 10
SEEDS_PER_RECOMMENDATION = 5


class SeedSampler:
    """Turns participants' top tracks into recommended playlist additions.

    Every participant's top tracks go into one candidate pool without
    de-duplication, so a track several people listen to is more likely to
    be drawn. Each new track comes from its own recommendation request
    seeded with five candidates drawn with replacement.
    """

    def __init__(
        self,
        spotify: SpotifyAPIClient,
        repo: MoshpitRepository,
        *,
        top_tracks_limit: int = TOP_TRACKS_LIMIT,
        rng: random.Random | None = None,
    ) -> None:
        self.spotify = spotify
        self.repo = repo
        self.top_tracks_limit = top_tracks_limit
        self.rng = rng or random.Random()

    async def add_tracks(
        self,
        owner_token: str,
        participant_tokens: list[str],
        count: int,
        playlist_id: str,
        moshpit_id: UUID,
    ) -> list[str]:
        """Append *count* recommended tracks to the playlist and return their URIs.

        The owner's history is always part of the pool; *participant_tokens*
        holds everyone else's. Any Spotify failure aborts the whole top-up
        before the playlist is touched.
        """
        if count <= 0:
            return []

        try:
            pool = await self._candidate_pool([owner_token, *participant_tokens])
            if not pool:
                raise PlaylistSeedFailure("No participant has any top tracks to seed from")

            tracks = await asyncio.gather(
                *(self._recommend(owner_token, pool) for _ in range(count))
            )
            uris = [track["uri"] for track in tracks]

            features = await self.spotify.get_audio_features(
                owner_token, [track["id"] for track in tracks]
            )
            features_by_id = {f["id"]: f for f in features if f}
            await self.repo.add_recommendations(
                [
                    _to_recommendation(track, features_by_id.get(track["id"]), moshpit_id)
                    for track in tracks
                ]
            )

            await self.spotify.add_tracks_to_playlist(owner_token, playlist_id, uris)
        except SpotifyAPIError as e:
            raise PlaylistSeedFailure(f"Could not seed playlist {playlist_id}: {e}") from e

        logger.info(f"Added {len(uris)} recommended tracks to playlist {playlist_id}")
        return uris

    async def _candidate_pool(self, tokens: list[str]) -> list[str]:
        top_tracks = await asyncio.gather(
            *(self.spotify.get_top_track_ids(token, self.top_tracks_limit) for token in tokens)
        )
        return [track_id for ids in top_tracks for track_id in ids]

    async def _recommend(self, token: str, pool: list[str]) -> dict:
        seeds = self.rng.choices(pool, k=SEEDS_PER_RECOMMENDATION)
        track = await self.spotify.get_recommendation(token, seeds)
        if not track or not track.get("uri"):
            raise PlaylistSeedFailure(f"No recommendation returned for seeds {seeds}")
        return track


def _to_recommendation(track: dict, features: dict | None, moshpit_id: UUID) -> Recommendation:
    if features is None:
        logger.warning(f"No audio features for {track['uri']}, storing zeros")
        features = {}
    return Recommendation(
        spotify_uri=track["uri"],
        moshpit_id=moshpit_id,
        energy=float(features.get("energy", 0.0)),
        danceability=float(features.get("danceability", 0.0)),
        instrumentalness=float(features.get("instrumentalness", 0.0)),
        valence=float(features.get("valence", 0.0)),
    )
