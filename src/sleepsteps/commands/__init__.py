"""CLI commands for sleepsteps."""

from .execute import execute
from .history import history
from .init import init
from .plan import plan
from .profile import profile

__all__ = [
    "execute",
    "history",
    "init",
    "plan",
    "profile",
]
