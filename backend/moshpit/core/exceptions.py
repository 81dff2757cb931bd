"""Exceptions raised by the moshpit services."""

from enum import Enum


class MoshpitError(Exception):
    """Base exception for all moshpit errors."""

    pass


class AuthFailureReason(str, Enum):
    NOT_LINKED = "not_linked"
    REFRESH_DENIED = "refresh_denied"
    EXCHANGE_FAILED = "exchange_failed"
    TIMED_OUT = "timed_out"


class AuthFailure(MoshpitError):
    """No usable Spotify access token could be obtained for a user."""

    def __init__(self, reason: AuthFailureReason, user_id: int | None = None):
        self.reason = reason
        self.user_id = user_id
        super().__init__(f"Spotify authorization failed for user {user_id}: {reason.value}")


class AuthorizationDenied(MoshpitError):
    """Spotify redirected back with an ``error`` instead of a ``code``."""

    pass


class SpotifyAPIError(MoshpitError):
    """A Spotify Web API call returned a non-success status."""

    def __init__(self, status: int, message: str, reason: str | None = None):
        self.status = status
        self.reason = reason
        super().__init__(f"Spotify API error {status}: {message}")


class PlaylistSeedFailure(MoshpitError):
    """The shared playlist could not be topped up."""

    pass


class PlaybackStartFailure(MoshpitError):
    """Playback could not be started for one participant."""

    def __init__(self, user_id: int, message: str):
        self.user_id = user_id
        super().__init__(message)


class PersistenceFailure(MoshpitError):
    """A store read or write failed."""

    pass
