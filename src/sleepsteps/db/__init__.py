"""Database layer for sleepsteps."""

from .engine import get_db_path, init_db
from .repositories import ProfileRepository, WeeklyPackageRepository

__all__ = [
    "get_db_path",
    "init_db",
    "ProfileRepository",
    "WeeklyPackageRepository",
]
