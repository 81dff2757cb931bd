"""Moshpit services: Spotify access, joins, playlist seeding and sessions."""

from .authorization import AuthorizationRegistry, PendingAuthorization
from .credentials import CredentialManager
from .join_collector import JoinCollector
from .orchestrator import MonitorRegistry, SessionMonitor, SessionOrchestrator, StartResult
from .seed_sampler import SeedSampler
from .spotify_api import PlaybackState, SpotifyAPIClient, TokenResult

__all__ = [
    "AuthorizationRegistry",
    "CredentialManager",
    "JoinCollector",
    "MonitorRegistry",
    "PendingAuthorization",
    "PlaybackState",
    "SeedSampler",
    "SessionMonitor",
    "SessionOrchestrator",
    "SpotifyAPIClient",
    "StartResult",
    "TokenResult",
]
