"""Bot configuration using Pydantic Settings"""

import logging
from functools import lru_cache
from pathlib import Path

import discord
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

MOSHPIT_DIR = Path(__file__).parent
BACKEND_DIR = MOSHPIT_DIR.parent

BOT_NAME = "moshpit"
BOT_VERSION = "1.0.0"


class Settings(BaseSettings):
    """Settings read from the environment or backend/moshpit/.env"""

    model_config = SettingsConfigDict(
        env_file=MOSHPIT_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Discord
    discord_bot_token: str = Field(..., description="Discord bot token")
    discord_guild_id: int | None = Field(
        default=None, description="Guild to sync slash commands to (faster than global sync)"
    )
    discord_activity_name: str = Field(
        default="", description="Shown as 'Listening to ...' in the bot's presence"
    )

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")
    database_ssl: str | None = Field(default="require", description="asyncpg ssl mode")

    # Spotify OAuth
    spotify_client_id: str = Field(..., description="Spotify OAuth Client ID")
    spotify_client_secret: str = Field(..., description="Spotify OAuth Client Secret")

    # Callback server
    callback_host: str = Field(
        default="http://localhost:8080", description="Public base URL of the callback server"
    )
    spotify_callback_path: str = Field(default="/spotify/callback")
    callback_port: int = Field(default=8080, description="Port the callback server listens on")

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @field_validator("spotify_callback_path")
    @classmethod
    def validate_callback_path(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    @property
    def spotify_redirect_uri(self) -> str:
        return self.callback_host.rstrip("/") + self.spotify_callback_path

    def get_activity(self) -> discord.Activity | None:
        if not self.discord_activity_name:
            return None
        return discord.Activity(type=discord.ActivityType.listening, name=self.discord_activity_name)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()  # type: ignore[call-arg]
