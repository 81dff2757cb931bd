"""Tests for settings parsing."""

import discord

from moshpit.config import Settings

REQUIRED = {
    "discord_bot_token": "token",
    "database_url": "postgresql://localhost/moshpit",
    "spotify_client_id": "cid",
    "spotify_client_secret": "secret",
}


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **{**REQUIRED, **overrides})


def test_redirect_uri_joins_host_and_path() -> None:
    settings = make_settings(callback_host="https://moshpit.example/", spotify_callback_path="cb")
    assert settings.spotify_redirect_uri == "https://moshpit.example/cb"


def test_invalid_log_level_defaults_to_info() -> None:
    assert make_settings(log_level="loud").log_level == "INFO"
    assert make_settings(log_level="debug").log_level == "DEBUG"


def test_activity_is_optional() -> None:
    assert make_settings(discord_activity_name="").get_activity() is None

    activity = make_settings(discord_activity_name="the pit").get_activity()
    assert activity.type is discord.ActivityType.listening
    assert activity.name == "the pit"
