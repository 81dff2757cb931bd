"""Tests for the SeedSampler playlist top-up."""

import itertools
import random
from unittest.mock import AsyncMock

import pytest

from moshpit.core.exceptions import PlaylistSeedFailure, SpotifyAPIError
from moshpit.services.seed_sampler import SEEDS_PER_RECOMMENDATION, SeedSampler

from .conftest import MOSHPIT_ID

TOP_TRACKS = {
    "owner-token": ["t1", "t2", "t3"],
    "p1-token": ["t4", "t5"],
    "p2-token": [],
}


@pytest.fixture
def spotify(mock_spotify):
    counter = itertools.count(1)

    async def recommend(token, seeds):
        n = next(counter)
        return {"id": f"rec{n}", "uri": f"spotify:track:rec{n}"}

    async def features(token, ids):
        # Reversed on purpose: records must be paired by id, not position
        return [
            {"id": track_id, "energy": 0.1, "danceability": 0.2, "instrumentalness": 0.3,
             "valence": float(track_id.removeprefix("rec")) / 10}
            for track_id in reversed(ids)
        ]

    mock_spotify.get_top_track_ids = AsyncMock(side_effect=lambda token, limit: TOP_TRACKS[token])
    mock_spotify.get_recommendation = AsyncMock(side_effect=recommend)
    mock_spotify.get_audio_features = AsyncMock(side_effect=features)
    return mock_spotify


@pytest.fixture
def sampler(spotify, mock_moshpit_repo) -> SeedSampler:
    return SeedSampler(spotify, mock_moshpit_repo, rng=random.Random(7))


class TestAddTracks:
    async def test_adds_count_tracks_and_records(self, sampler, spotify, mock_moshpit_repo):
        uris = await sampler.add_tracks("owner-token", ["p1-token"], 3, "playlist123", MOSHPIT_ID)

        assert uris == [f"spotify:track:rec{n}" for n in (1, 2, 3)]
        spotify.add_tracks_to_playlist.assert_awaited_once_with("owner-token", "playlist123", uris)

        records = mock_moshpit_repo.add_recommendations.await_args.args[0]
        assert [r.spotify_uri for r in records] == uris
        assert all(r.moshpit_id == MOSHPIT_ID for r in records)

    async def test_features_are_paired_by_track_id(self, sampler, mock_moshpit_repo):
        await sampler.add_tracks("owner-token", [], 3, "playlist123", MOSHPIT_ID)

        records = mock_moshpit_repo.add_recommendations.await_args.args[0]
        assert [r.valence for r in records] == [0.1, 0.2, 0.3]

    async def test_seeds_come_from_every_participant(self, sampler, spotify):
        await sampler.add_tracks("owner-token", ["p1-token", "p2-token"], 4, "pl", MOSHPIT_ID)

        pool = set(TOP_TRACKS["owner-token"] + TOP_TRACKS["p1-token"])
        assert spotify.get_top_track_ids.await_count == 3
        for call in spotify.get_recommendation.await_args_list:
            token, seeds = call.args
            assert token == "owner-token"
            assert len(seeds) == SEEDS_PER_RECOMMENDATION
            assert set(seeds) <= pool

    async def test_missing_features_store_zeros(self, sampler, spotify, mock_moshpit_repo):
        spotify.get_audio_features = AsyncMock(return_value=[None])

        await sampler.add_tracks("owner-token", [], 1, "playlist123", MOSHPIT_ID)

        (record,) = mock_moshpit_repo.add_recommendations.await_args.args[0]
        assert (record.energy, record.danceability, record.instrumentalness, record.valence) == (
            0.0,
            0.0,
            0.0,
            0.0,
        )

    async def test_nothing_to_add(self, sampler, spotify, mock_moshpit_repo):
        assert await sampler.add_tracks("owner-token", [], 0, "playlist123", MOSHPIT_ID) == []
        spotify.get_top_track_ids.assert_not_awaited()
        mock_moshpit_repo.add_recommendations.assert_not_awaited()


class TestFailures:
    async def test_empty_pool_raises(self, sampler, spotify):
        with pytest.raises(PlaylistSeedFailure):
            await sampler.add_tracks("p2-token", [], 2, "playlist123", MOSHPIT_ID)

        spotify.get_recommendation.assert_not_awaited()
        spotify.add_tracks_to_playlist.assert_not_awaited()

    async def test_no_recommendation_raises(self, sampler, spotify):
        spotify.get_recommendation = AsyncMock(return_value=None)

        with pytest.raises(PlaylistSeedFailure):
            await sampler.add_tracks("owner-token", [], 2, "playlist123", MOSHPIT_ID)

        spotify.add_tracks_to_playlist.assert_not_awaited()

    async def test_api_error_is_wrapped(self, sampler, spotify, mock_moshpit_repo):
        spotify.get_recommendation = AsyncMock(side_effect=SpotifyAPIError(429, "Too many"))

        with pytest.raises(PlaylistSeedFailure) as exc_info:
            await sampler.add_tracks("owner-token", [], 2, "playlist123", MOSHPIT_ID)

        assert isinstance(exc_info.value.__cause__, SpotifyAPIError)
        mock_moshpit_repo.add_recommendations.assert_not_awaited()
        spotify.add_tracks_to_playlist.assert_not_awaited()
