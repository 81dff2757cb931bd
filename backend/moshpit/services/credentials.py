"""Per-user Spotify access tokens.

A stored token is returned as-is while it stays valid for at least
``TOKEN_SAFETY_MARGIN`` more seconds, is refreshed when it does not, and a
user with no stored token goes through the authorization-code flow by DM.
"""

import hashlib
import logging
import secrets
import time
from datetime import UTC, datetime, timedelta

import discord

from moshpit.core.exceptions import (
    AuthFailure,
    AuthFailureReason,
    AuthorizationDenied,
    SpotifyAPIError,
)
from moshpit.services.authorization import AuthorizationRegistry
from moshpit.services.spotify_api import SpotifyAPIClient
from shared.models.user import UserCredential
from shared.repositories.user import UserRepository

logger = logging.getLogger(__name__)

TOKEN_SAFETY_MARGIN = timedelta(seconds=60)
AUTHORIZATION_TIMEOUT = 60.0

MSG_NOT_CONNECTED = "Looks like you haven't connected Spotify yet!"
MSG_AUTHORIZE = (
    "Please click this link and authorize moshpit to use your Spotify account "
    "within one minute to continue:\n{url}"
)
MSG_CONNECTED = "Your Spotify account is now connected to moshpit."
MSG_CONNECT_FAILED = "Failed to connect your Spotify account. Try again or contact a developer."
MSG_REFRESH_FAILED = (
    "Failed to refresh your Spotify account connection. Try again or contact a developer."
)


def make_state_token(user_id: int) -> str:
    """Single-use OAuth state: user id, clock and a random salt, hashed."""
    seed = f"{user_id}:{time.time_ns()}:{secrets.token_hex(16)}"
    return hashlib.sha256(seed.encode()).hexdigest()


class CredentialManager:
    """Owns the Spotify token lifecycle for every Discord user."""

    def __init__(
        self,
        repo: UserRepository,
        spotify: SpotifyAPIClient,
        registry: AuthorizationRegistry,
        *,
        authorization_timeout: float = AUTHORIZATION_TIMEOUT,
    ) -> None:
        self.repo = repo
        self.spotify = spotify
        self.registry = registry
        self.authorization_timeout = authorization_timeout

    async def get_access_token(self, user: discord.abc.User) -> str:
        """Return an access token valid for at least the safety margin.

        Raises AuthFailure when none can be obtained; the user has already
        been told why by DM.
        """
        credential = await self.repo.get_credential(user.id)
        if credential is None:
            logger.debug(f"Getting new Spotify auth data for user {user.id}")
            return await self._authorize(user)

        if datetime.now(UTC) + TOKEN_SAFETY_MARGIN < credential.spotify_token_expiration:
            logger.debug(f"Reusing Spotify auth data for user {user.id}")
            return str(credential.spotify_access_token)

        logger.debug(f"Refreshing Spotify auth data for user {user.id}")
        return await self._refresh(user, credential)

    async def _refresh(self, user: discord.abc.User, credential: UserCredential) -> str:
        result = await self.spotify.refresh_access_token(str(credential.spotify_refresh_token))
        if not result.success or not result.access_token:
            logger.info(f"Failed to refresh Spotify for Discord user {user.id}: {result.error}")
            await _send_dm(user, MSG_REFRESH_FAILED)
            raise AuthFailure(AuthFailureReason.REFRESH_DENIED, user.id)

        expiration = datetime.now(UTC) + timedelta(seconds=result.expires_in)
        await self.repo.update_access_token(
            user.id,
            result.access_token,
            result.refresh_token or str(credential.spotify_refresh_token),
            expiration,
        )
        logger.info(f"Spotify token refreshed for user {user.id}")
        return result.access_token

    async def _authorize(self, user: discord.abc.User) -> str:
        state = make_state_token(user.id)
        pending = self.registry.register(state, self.authorization_timeout)
        url = self.spotify.generate_oauth_url(state)

        try:
            await user.send(MSG_NOT_CONNECTED)
            await user.send(MSG_AUTHORIZE.format(url=url))
        except discord.HTTPException as e:
            # DMs closed: the link can never reach the user
            self.registry.expire(state)
            logger.info(f"Could not DM authorization link to user {user.id}: {e}")
            raise AuthFailure(AuthFailureReason.NOT_LINKED, user.id) from e

        try:
            code = await self.registry.wait(pending)
        except AuthFailure as e:
            await _send_dm(user, MSG_CONNECT_FAILED)
            raise AuthFailure(e.reason, user.id) from e
        except AuthorizationDenied as e:
            logger.info(f"User {user.id} declined Spotify authorization: {e}")
            await _send_dm(user, MSG_CONNECT_FAILED)
            raise AuthFailure(AuthFailureReason.EXCHANGE_FAILED, user.id) from e

        logger.debug(f"Received Spotify auth code for user {user.id}")
        result = await self.spotify.exchange_code_for_token(code)
        if not result.success or not result.access_token or not result.refresh_token:
            logger.info(f"Failed to authorize Spotify for user {user.id}: {result.error}")
            await _send_dm(user, MSG_CONNECT_FAILED)
            raise AuthFailure(AuthFailureReason.EXCHANGE_FAILED, user.id)

        spotify_user_id: str | None
        try:
            spotify_user_id = await self.spotify.get_current_user_id(result.access_token)
        except SpotifyAPIError as e:
            logger.warning(f"Could not fetch Spotify profile for user {user.id}: {e}")
            spotify_user_id = None

        expiration = datetime.now(UTC) + timedelta(seconds=result.expires_in)
        await self.repo.upsert_credential(
            user.id,
            spotify_user_id,
            result.access_token,
            result.refresh_token,
            expiration,
        )
        logger.info(f"Spotify account {spotify_user_id} linked to user {user.id}")
        await _send_dm(user, MSG_CONNECTED)
        return result.access_token


async def _send_dm(user: discord.abc.User, text: str) -> None:
    """Best-effort DM; a closed inbox must not mask the real outcome."""
    try:
        await user.send(text)
    except discord.HTTPException as e:
        logger.warning(f"Could not DM user {user.id}: {e}")
