"""Shared data models for the moshpit bot."""

from .moshpit import Moshpit, Recommendation
from .user import UserCredential

__all__ = [
    "Moshpit",
    "Recommendation",
    "UserCredential",
]
