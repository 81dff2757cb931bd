"""Repository layer for the moshpit bot."""

from .moshpit import MoshpitRepository
from .user import UserRepository

__all__ = [
    "MoshpitRepository",
    "UserRepository",
]
