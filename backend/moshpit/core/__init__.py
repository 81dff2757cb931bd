"""Core modules for the moshpit bot.

``callback_server`` depends on the services package and is imported
directly from its module.
"""

from .exceptions import (
    AuthFailure,
    AuthFailureReason,
    AuthorizationDenied,
    MoshpitError,
    PersistenceFailure,
    PlaybackStartFailure,
    PlaylistSeedFailure,
    SpotifyAPIError,
)
from .logging import setup_logging

__all__ = [
    # Errors
    "AuthFailure",
    "AuthFailureReason",
    "AuthorizationDenied",
    "MoshpitError",
    "PersistenceFailure",
    "PlaybackStartFailure",
    "PlaylistSeedFailure",
    "SpotifyAPIError",
    # Logging
    "setup_logging",
]
