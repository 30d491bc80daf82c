"""Step count models."""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum


class ActivityKind(str, Enum):
    """What the person was doing when steps were recorded."""

    IDLE = "idle"
    STANDING = "standing"
    WALKING = "walking"
    RUNNING = "running"
    COMMUTING = "commuting"
    EXERCISE = "exercise"


@dataclass(frozen=True)
class StepIncrement:
    """Steps recorded over the interval ending at `timestamp`."""

    timestamp: datetime
    steps: int
    activity_kind: ActivityKind = ActivityKind.WALKING
    duration_seconds: int = 60

    @property
    def start(self) -> datetime:
        return self.timestamp - timedelta(seconds=self.duration_seconds)

    @property
    def end(self) -> datetime:
        return self.timestamp

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "steps": self.steps,
            "activity_kind": self.activity_kind.value,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StepIncrement":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            steps=data["steps"],
            activity_kind=ActivityKind(data.get("activity_kind", "walking")),
            duration_seconds=data.get("duration_seconds", 60),
        )


@dataclass(frozen=True)
class StepsDay:
    """One calendar day of steps.

    `hourly` always has 24 buckets; `total_steps` is their sum once the
    compliance pass has run.
    """

    date: date
    total_steps: int
    hourly: tuple[int, ...] = field(default_factory=lambda: (0,) * 24)
    increments: tuple[StepIncrement, ...] = field(default_factory=tuple)

    @property
    def day_start(self) -> datetime:
        return datetime.combine(self.date, time.min)

    @property
    def day_end(self) -> datetime:
        return self.day_start + timedelta(days=1)

    @property
    def increment_total(self) -> int:
        return sum(i.steps for i in self.increments)

    def steps_between(self, start: datetime, end: datetime) -> int:
        """Sum of increments whose timestamp falls in [start, end)."""
        return sum(i.steps for i in self.increments if start <= i.timestamp < end)

    @classmethod
    def from_increments(cls, day: date, increments: list[StepIncrement]) -> "StepsDay":
        """Build a day from increments, deriving hourly buckets and the total."""
        hourly = [0] * 24
        for inc in increments:
            hourly[inc.timestamp.hour] += inc.steps
        return cls(
            date=day,
            total_steps=sum(hourly),
            hourly=tuple(hourly),
            increments=tuple(sorted(increments, key=lambda i: i.timestamp)),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "date": self.date.isoformat(),
            "total_steps": self.total_steps,
            "hourly": list(self.hourly),
            "increments": [i.to_dict() for i in self.increments],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StepsDay":
        """Create from dictionary."""
        return cls(
            date=date.fromisoformat(data["date"]),
            total_steps=data["total_steps"],
            hourly=tuple(data.get("hourly", [0] * 24)),
            increments=tuple(
                StepIncrement.from_dict(i) for i in data.get("increments", [])
            ),
        )
