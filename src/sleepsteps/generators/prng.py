"""Seeded pseudo-random source for reproducible generation."""

import hashlib
from datetime import date, datetime
from typing import Sequence, TypeVar

T = TypeVar("T")

MASK64 = (1 << 64) - 1
LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223

_EPOCH = date(1970, 1, 1)


def date_epoch_seconds(day: date | datetime) -> int:
    """Seconds from the Unix epoch to UTC midnight of the given calendar date."""
    if isinstance(day, datetime):
        day = day.date()
    return (day - _EPOCH).days * 86400


def derive_seed(profile_id: str, day: date | datetime, salt: str = "") -> int:
    """Derive a stable 64-bit seed from a profile id and a calendar date.

    Args:
        profile_id: Identifier of the simulated person
        day: Calendar date the seed is for
        salt: Stream name, so independent generators do not share draws

    Returns:
        Unsigned 64-bit seed
    """
    key = f"{profile_id}:{date_epoch_seconds(day)}:{salt}".encode("utf-8")
    digest = hashlib.sha256(key).digest()
    return int.from_bytes(digest[:8], "big")


class SeededRandom:
    """Linear congruential generator with a mixed output.

    The state advances as a 64-bit LCG. Raw LCG low bits cycle with a short
    period, so every draw passes through a splitmix-style finalizer before
    it is reduced into a range.
    """

    def __init__(self, seed: int):
        self.state = seed & MASK64

    def next_u64(self) -> int:
        """Advance the stream and return 64 well-mixed bits."""
        self.state = (self.state * LCG_MULTIPLIER + LCG_INCREMENT) & MASK64
        z = self.state
        z = ((z ^ (z >> 30)) * 0xBF58476D1CE4E5B9) & MASK64
        z = ((z ^ (z >> 27)) * 0x94D049BB133111EB) & MASK64
        return z ^ (z >> 31)

    def next_int(self, lo: int, hi: int) -> int:
        """Uniform integer in the closed range [lo, hi]."""
        if hi < lo:
            raise ValueError(f"Empty range: [{lo}, {hi}]")
        return lo + self.next_u64() % (hi - lo + 1)

    def next_double(self, lo: float = 0.0, hi: float = 1.0) -> float:
        """Uniform float in the closed range [lo, hi]."""
        if hi < lo:
            raise ValueError(f"Empty range: [{lo}, {hi}]")
        return lo + (self.next_u64() / MASK64) * (hi - lo)

    def next_float(self, lo: float = 0.0, hi: float = 1.0) -> float:
        """Uniform float with single precision resolution (24 bits)."""
        if hi < lo:
            raise ValueError(f"Empty range: [{lo}, {hi}]")
        return lo + ((self.next_u64() >> 40) / float((1 << 24) - 1)) * (hi - lo)

    def chance(self, probability: float) -> bool:
        """Return True with the given probability."""
        return self.next_double() < probability

    def choice(self, items: Sequence[T]) -> T:
        """Pick one element uniformly."""
        if not items:
            raise ValueError("Cannot choose from an empty sequence")
        return items[self.next_int(0, len(items) - 1)]

    def weighted_choice(self, items: Sequence[tuple[T, float]]) -> T:
        """Pick one element from (value, weight) pairs."""
        total = sum(weight for _, weight in items)
        roll = self.next_double(0.0, total)
        for value, weight in items:
            roll -= weight
            if roll <= 0:
                return value
        return items[-1][0]

    def shuffle(self, items: list[T]) -> None:
        """Shuffle a list in place (Fisher-Yates)."""
        for i in range(len(items) - 1, 0, -1):
            j = self.next_int(0, i)
            items[i], items[j] = items[j], items[i]

    @classmethod
    def for_day(cls, profile_id: str, day: date | datetime, salt: str = "") -> "SeededRandom":
        """Create the stream for one profile and calendar date."""
        return cls(derive_seed(profile_id, day, salt))
