"""Spotify Web API client service.

Token endpoints (authorization-code exchange, refresh) report failures
through ``TokenResult`` so the credential layer can decide what the user
is told. Every other call raises ``SpotifyAPIError`` on a non-2xx status.
"""

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from moshpit.core.exceptions import SpotifyAPIError

logger = logging.getLogger(__name__)

ACCOUNTS_BASE = "https://accounts.spotify.com"
API_BASE = "https://api.spotify.com/v1"

# Spotify caps id lists and playlist appends at 100 items per request
_BATCH_SIZE = 100


@dataclass
class TokenResult:
    """Result of a code exchange or token refresh."""

    success: bool
    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int = 0
    error: str | None = None


@dataclass
class PlaybackState:
    """The subset of ``GET /me/player`` the monitor loop needs."""

    is_playing: bool
    context_uri: str | None = None
    track_id: str | None = None
    track_name: str | None = None
    artists: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PlaybackState":
        item = data.get("item") or {}
        context = data.get("context") or {}
        return cls(
            is_playing=bool(data.get("is_playing")),
            context_uri=context.get("uri"),
            track_id=item.get("id"),
            track_name=item.get("name"),
            artists=[a.get("name", "") for a in item.get("artists", [])],
        )

    @property
    def display_name(self) -> str:
        if not self.track_name:
            return "nothing"
        if self.artists:
            return f"{self.track_name} by {', '.join(self.artists)}"
        return self.track_name


def playlist_uri(playlist_id: str) -> str:
    return f"spotify:playlist:{playlist_id}"


class SpotifyAPIClient:
    """Client for the Spotify accounts service and Web API.

    Holds one shared httpx client so connections are reused across the
    many small calls a session makes.
    """

    SCOPES = [
        "user-read-email",
        "user-modify-playback-state",
        "user-read-playback-state",
        "user-read-currently-playing",
        "playlist-modify-public",
        "user-top-read",
    ]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http: httpx.AsyncClient | None = None,
    ):
        if not client_id or not client_secret:
            raise ValueError("Spotify client_id and client_secret are required")

        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._http = http or httpx.AsyncClient(timeout=10.0)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on bot shutdown."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # OAuth flow
    # ------------------------------------------------------------------

    def generate_oauth_url(self, state: str) -> str:
        """Build the authorization-code URL a user opens to link Spotify."""
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.SCOPES),
            "state": state,
        }
        return f"{ACCOUNTS_BASE}/authorize?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str) -> TokenResult:
        """Exchange an authorization code for an access/refresh token pair."""
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            }
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenResult:
        """Exchange a refresh token for a new access token.

        Spotify may rotate the refresh token; when it does not, the old one
        stays valid and is returned unchanged.
        """
        result = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )
        if result.success and not result.refresh_token:
            result.refresh_token = refresh_token
        return result

    async def _token_request(self, data: dict[str, str]) -> TokenResult:
        grant_type = data["grant_type"]
        try:
            response = await self._http.post(
                f"{ACCOUNTS_BASE}/api/token",
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    **data,
                },
            )
        except httpx.TimeoutException:
            logger.error(f"Timeout during Spotify token request ({grant_type})")
            return TokenResult(success=False, error="timeout")
        except httpx.HTTPError as e:
            logger.error(f"Spotify token request ({grant_type}) failed: {e}")
            return TokenResult(success=False, error=str(e))

        if response.status_code != 200:
            error_data = _json_or_empty(response)
            error_msg = error_data.get("error_description") or error_data.get(
                "error", f"HTTP {response.status_code}"
            )
            logger.error(f"Spotify token request ({grant_type}) rejected: {error_msg}")
            return TokenResult(success=False, error=str(error_msg))

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            return TokenResult(success=False, error="No access_token in response")

        return TokenResult(
            success=True,
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=int(payload.get("expires_in", 3600)),
        )

    # ------------------------------------------------------------------
    # Web API
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Make an authenticated Web API request. 204 responses yield None."""
        try:
            response = await self._http.request(
                method,
                f"{API_BASE}{path}",
                headers={"Authorization": f"Bearer {access_token}"},
                params=params,
                json=json,
            )
        except httpx.HTTPError as e:
            raise SpotifyAPIError(0, f"{method} {path} failed: {type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            error = _json_or_empty(response).get("error")
            if isinstance(error, dict):
                message = error.get("message") or response.text
                reason = error.get("reason")
            else:
                message, reason = response.text, None
            logger.debug(f"Spotify {method} {path} -> {response.status_code}: {message}")
            raise SpotifyAPIError(response.status_code, message, reason)

        if response.status_code == 204 or not response.content:
            return None
        result: dict[str, Any] = response.json()
        return result

    async def get_current_user_id(self, access_token: str) -> str:
        """Return the Spotify account id behind an access token."""
        data = await self._request("GET", "/me", access_token)
        return str((data or {})["id"])

    async def get_top_track_ids(self, access_token: str, limit: int = 10) -> list[str]:
        data = await self._request(
            "GET", "/me/top/tracks", access_token, params={"limit": limit}
        )
        return [item["id"] for item in (data or {}).get("items", []) if item.get("id")]

    async def get_recommendation(
        self, access_token: str, seed_track_ids: list[str]
    ) -> dict[str, Any] | None:
        """Return one recommended track for the given seeds, or None."""
        data = await self._request(
            "GET",
            "/recommendations",
            access_token,
            params={"seed_tracks": ",".join(seed_track_ids), "limit": 1},
        )
        tracks = (data or {}).get("tracks") or []
        return tracks[0] if tracks else None

    async def get_audio_features(
        self, access_token: str, track_ids: list[str]
    ) -> list[dict[str, Any] | None]:
        """Audio features in the same order as *track_ids* (None when unknown)."""
        features: list[dict[str, Any] | None] = []
        for start in range(0, len(track_ids), _BATCH_SIZE):
            chunk = track_ids[start : start + _BATCH_SIZE]
            data = await self._request(
                "GET", "/audio-features", access_token, params={"ids": ",".join(chunk)}
            )
            features.extend((data or {}).get("audio_features") or [None] * len(chunk))
        return features

    async def create_playlist(
        self, access_token: str, spotify_user_id: str, name: str, description: str = ""
    ) -> str:
        """Create a public playlist and return its id."""
        data = await self._request(
            "POST",
            f"/users/{spotify_user_id}/playlists",
            access_token,
            json={"name": name, "description": description, "public": True},
        )
        return str((data or {})["id"])

    async def get_playlist_length(self, access_token: str, playlist_id: str) -> int:
        data = await self._request(
            "GET",
            f"/playlists/{playlist_id}",
            access_token,
            params={"fields": "tracks.total"},
        )
        return int(((data or {}).get("tracks") or {}).get("total", 0))

    async def add_tracks_to_playlist(
        self, access_token: str, playlist_id: str, uris: list[str]
    ) -> None:
        """Append tracks to the end of a playlist."""
        for start in range(0, len(uris), _BATCH_SIZE):
            await self._request(
                "POST",
                f"/playlists/{playlist_id}/tracks",
                access_token,
                json={"uris": uris[start : start + _BATCH_SIZE]},
            )

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    async def get_playback_state(self, access_token: str) -> PlaybackState | None:
        """Current playback, or None when the user has no active device."""
        data = await self._request("GET", "/me/player", access_token)
        if not data:
            return None
        return PlaybackState.from_api(data)

    async def set_shuffle(self, access_token: str, state: bool) -> None:
        await self._request(
            "PUT",
            "/me/player/shuffle",
            access_token,
            params={"state": "true" if state else "false"},
        )

    async def play(self, access_token: str, context_uri: str, position: int = 0) -> None:
        await self._request(
            "PUT",
            "/me/player/play",
            access_token,
            json={"context_uri": context_uri, "offset": {"position": position}},
        )

    async def pause(self, access_token: str) -> None:
        await self._request("PUT", "/me/player/pause", access_token)


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
