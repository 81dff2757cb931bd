"""Shared test fixtures for moshpit tests."""

import itertools
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import discord
import pytest

from moshpit.services.spotify_api import SpotifyAPIClient
from shared.cache import AsyncTTLCache
from shared.models.moshpit import Moshpit
from shared.models.user import UserCredential
from shared.repositories import user as user_repository

MOSHPIT_ID = UUID("6f1c2a7e-3b1d-4c8e-9a55-0d2f4e7b9c11")
GUILD_ID = 424242


def forbidden(text: str = "Cannot send messages to this user") -> discord.Forbidden:
    """A discord.Forbidden as raised when a user's DMs are closed."""
    response = MagicMock(status=403, reason="Forbidden")
    return discord.Forbidden(response, text)


@pytest.fixture
def make_user() -> Callable[..., MagicMock]:
    """Factory for fake Discord users with their own DM channel."""
    ids = itertools.count(1001)

    def factory(user_id: int | None = None, name: str | None = None, bot: bool = False):
        user = MagicMock()
        user.id = user_id if user_id is not None else next(ids)
        user.name = name or f"user{user.id}"
        user.mention = f"<@{user.id}>"
        user.bot = bot
        user.send = AsyncMock()
        return user

    return factory


@pytest.fixture
def owner(make_user) -> MagicMock:
    return make_user(user_id=1, name="owner")


@pytest.fixture
def channel() -> MagicMock:
    """A text channel whose sent messages are recorded in ``channel.sent``."""
    channel = MagicMock()
    channel.sent = []
    message_ids = itertools.count(9000)

    async def send(content=None, **kwargs):
        message = MagicMock()
        message.id = next(message_ids)
        message.content = content
        message.delete = AsyncMock()
        message.add_reaction = AsyncMock()
        channel.sent.append(message)
        return message

    channel.send = AsyncMock(side_effect=send)
    return channel


@pytest.fixture
def moshpit() -> Moshpit:
    return Moshpit(
        moshpit_id=MOSHPIT_ID,
        discord_guild_id=GUILD_ID,
        owner_discord_id=1,
        spotify_playlist_id="playlist123",
    )


@pytest.fixture
def mock_spotify() -> MagicMock:
    """A SpotifyAPIClient whose coroutine methods are AsyncMocks."""
    mock = MagicMock(spec=SpotifyAPIClient)
    mock.generate_oauth_url = MagicMock(
        side_effect=lambda state: f"https://accounts.spotify.com/authorize?state={state}"
    )
    mock.get_current_user_id = AsyncMock(return_value="spotify-owner")
    mock.create_playlist = AsyncMock(return_value="playlist123")
    mock.get_playlist_length = AsyncMock(return_value=10)
    mock.get_top_track_ids = AsyncMock(return_value=[])
    mock.get_recommendation = AsyncMock(return_value=None)
    mock.get_audio_features = AsyncMock(return_value=[])
    mock.add_tracks_to_playlist = AsyncMock(return_value=None)
    mock.get_playback_state = AsyncMock(return_value=None)
    mock.set_shuffle = AsyncMock(return_value=None)
    mock.play = AsyncMock(return_value=None)
    mock.pause = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def mock_user_repo() -> MagicMock:
    mock = MagicMock()
    mock.get_user = AsyncMock(return_value=None)
    mock.get_credential = AsyncMock(return_value=None)
    mock.upsert_credential = AsyncMock(return_value=None)
    mock.update_access_token = AsyncMock(return_value=None)
    mock.set_current_moshpit = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def mock_moshpit_repo() -> MagicMock:
    mock = MagicMock()
    mock.get_for_owner = AsyncMock(return_value=None)
    mock.create = AsyncMock()
    mock.delete = AsyncMock(return_value=True)
    mock.add_recommendations = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def linked_credential() -> Callable[..., UserCredential]:
    """Factory for a stored credential expiring *expires_in* seconds from now."""

    def factory(user_id: int, expires_in: float = 3600, access_token: str = "stored-access"):
        return UserCredential(
            discord_user_id=user_id,
            spotify_user_id=f"spotify-{user_id}",
            spotify_access_token=access_token,
            spotify_refresh_token="stored-refresh",
            spotify_token_expiration=datetime.now(UTC) + timedelta(seconds=expires_in),
        )

    return factory


@pytest.fixture(autouse=True)
def clear_credential_cache():
    """The credential cache is module level; isolate every test from it."""
    cache: AsyncTTLCache = user_repository._credential_cache
    cache.clear()
    yield
    cache.clear()
