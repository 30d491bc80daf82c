"""Weekly plan models: daily plans, delivery batches and packages."""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum

from .sleep import SleepSession
from .steps import ActivityKind

DATA_VERSION = "1.0"


class BatchPriority(str, Enum):
    """Delivery priority of a step batch."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class CacheStatus(str, Enum):
    """State of the current/next package pair."""

    EMPTY = "empty"
    PARTIAL = "partial"
    READY = "ready"
    GENERATING = "generating"
    ERROR = "error"


def week_start_for(day: date | datetime) -> date:
    """Monday of the ISO week containing `day`."""
    if isinstance(day, datetime):
        day = day.date()
    return day - timedelta(days=day.weekday())


@dataclass(frozen=True)
class StepBatch:
    """A slice of a day's steps delivered in one go.

    The batch covers [start, scheduled_time) and is delivered at
    `scheduled_time`, once everything it contains has happened.
    """

    id: str
    scheduled_time: datetime
    steps: int
    duration: timedelta
    activity_kind: ActivityKind
    priority: BatchPriority
    is_during_sleep: bool = False

    @property
    def start(self) -> datetime:
        return self.scheduled_time - self.duration

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scheduled_time": self.scheduled_time.isoformat(),
            "steps": self.steps,
            "duration_seconds": int(self.duration.total_seconds()),
            "activity_kind": self.activity_kind.value,
            "priority": self.priority.value,
            "is_during_sleep": self.is_during_sleep,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StepBatch":
        return cls(
            id=data["id"],
            scheduled_time=datetime.fromisoformat(data["scheduled_time"]),
            steps=data["steps"],
            duration=timedelta(seconds=data["duration_seconds"]),
            activity_kind=ActivityKind(data["activity_kind"]),
            priority=BatchPriority(data["priority"]),
            is_during_sleep=data.get("is_during_sleep", False),
        )


@dataclass(frozen=True)
class ReductionSlot:
    """Steps recorded during one slot of the sleep window."""

    start: datetime
    end: datetime
    steps: int

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "steps": self.steps,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReductionSlot":
        return cls(
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            steps=data["steps"],
        )


@dataclass(frozen=True)
class SleepTimeReduction:
    """Sleep-window view of a day's steps, kept apart from delivery batches."""

    sleep_start: datetime | None = None
    sleep_end: datetime | None = None
    slots: tuple[ReductionSlot, ...] = field(default_factory=tuple)

    @property
    def total_steps(self) -> int:
        return sum(s.steps for s in self.slots)

    def to_dict(self) -> dict:
        return {
            "sleep_start": self.sleep_start.isoformat() if self.sleep_start else None,
            "sleep_end": self.sleep_end.isoformat() if self.sleep_end else None,
            "slots": [s.to_dict() for s in self.slots],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SleepTimeReduction":
        return cls(
            sleep_start=(
                datetime.fromisoformat(data["sleep_start"])
                if data.get("sleep_start")
                else None
            ),
            sleep_end=(
                datetime.fromisoformat(data["sleep_end"])
                if data.get("sleep_end")
                else None
            ),
            slots=tuple(ReductionSlot.from_dict(s) for s in data.get("slots", [])),
        )


@dataclass(frozen=True)
class ImportSchedule:
    """When each part of a day's data is delivered."""

    sleep_import_time: datetime | None
    step_batch_times: tuple[datetime, ...] = field(default_factory=tuple)
    fallback_times: tuple[datetime, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "sleep_import_time": (
                self.sleep_import_time.isoformat() if self.sleep_import_time else None
            ),
            "step_batch_times": [t.isoformat() for t in self.step_batch_times],
            "fallback_times": [t.isoformat() for t in self.fallback_times],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ImportSchedule":
        return cls(
            sleep_import_time=(
                datetime.fromisoformat(data["sleep_import_time"])
                if data.get("sleep_import_time")
                else None
            ),
            step_batch_times=tuple(
                datetime.fromisoformat(t) for t in data.get("step_batch_times", [])
            ),
            fallback_times=tuple(
                datetime.fromisoformat(t) for t in data.get("fallback_times", [])
            ),
        )


@dataclass(frozen=True)
class DailyPlan:
    """Everything needed to deliver one calendar day."""

    date: date
    sleep_session: SleepSession | None
    step_batches: tuple[StepBatch, ...]
    import_schedule: ImportSchedule
    total_steps: int
    hourly_steps: tuple[int, ...] = field(default_factory=lambda: (0,) * 24)
    sleep_reduction: SleepTimeReduction = field(default_factory=SleepTimeReduction)

    @property
    def batch_steps(self) -> int:
        return sum(b.steps for b in self.step_batches)

    def get_batch(self, batch_id: str) -> StepBatch | None:
        for batch in self.step_batches:
            if batch.id == batch_id:
                return batch
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "date": self.date.isoformat(),
            "sleep_session": self.sleep_session.to_dict() if self.sleep_session else None,
            "step_batches": [b.to_dict() for b in self.step_batches],
            "import_schedule": self.import_schedule.to_dict(),
            "total_steps": self.total_steps,
            "hourly_steps": list(self.hourly_steps),
            "sleep_reduction": self.sleep_reduction.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DailyPlan":
        """Create from dictionary."""
        return cls(
            date=date.fromisoformat(data["date"]),
            sleep_session=(
                SleepSession.from_dict(data["sleep_session"])
                if data.get("sleep_session")
                else None
            ),
            step_batches=tuple(StepBatch.from_dict(b) for b in data["step_batches"]),
            import_schedule=ImportSchedule.from_dict(data["import_schedule"]),
            total_steps=data["total_steps"],
            hourly_steps=tuple(data.get("hourly_steps", [0] * 24)),
            sleep_reduction=SleepTimeReduction.from_dict(data.get("sleep_reduction", {})),
        )


@dataclass(frozen=True)
class WeeklyPackage:
    """Seven pre-computed daily plans for one profile and ISO week.

    `sleep_history` and `steps_history` are the seven nights and days the
    week was planned from; regenerating the week reuses them.
    """

    generated_at: datetime
    profile_id: str
    week_start: date
    daily_plans: tuple[DailyPlan, ...]
    total_sleep_hours: float
    total_steps: int
    data_version: str = DATA_VERSION
    sleep_history: tuple[float, ...] = ()
    steps_history: tuple[int, ...] = ()

    @property
    def week_end(self) -> date:
        """First day after the package's week."""
        return self.week_start + timedelta(days=7)

    @property
    def expires_at(self) -> datetime:
        return datetime.combine(self.week_end, time.min)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def covers(self, day: date | datetime) -> bool:
        if isinstance(day, datetime):
            day = day.date()
        return self.week_start <= day < self.week_end

    def get_daily_plan(self, day: date | datetime) -> DailyPlan | None:
        if isinstance(day, datetime):
            day = day.date()
        for plan in self.daily_plans:
            if plan.date == day:
                return plan
        return None

    def elapsed_fraction(self, now: datetime) -> float:
        """Share of the package's week that has passed at `now`."""
        start = datetime.combine(self.week_start, time.min)
        fraction = (now - start) / timedelta(days=7)
        return min(1.0, max(0.0, fraction))

    def validate(self) -> list[str]:
        """Return a list of structural problems (empty when valid)."""
        issues = []
        if len(self.daily_plans) != 7:
            issues.append(f"expected 7 daily plans, found {len(self.daily_plans)}")
        for offset, plan in enumerate(self.daily_plans):
            expected = self.week_start + timedelta(days=offset)
            if plan.date != expected:
                issues.append(f"plan {offset} is for {plan.date}, expected {expected}")
            if plan.batch_steps != plan.total_steps:
                issues.append(
                    f"{plan.date}: batches hold {plan.batch_steps} steps,"
                    f" plan total is {plan.total_steps}"
                )
        if sum(p.total_steps for p in self.daily_plans) != self.total_steps:
            issues.append("package step total does not match daily plans")
        sleep_hours = sum(
            p.sleep_session.duration_hours for p in self.daily_plans if p.sleep_session
        )
        if abs(sleep_hours - self.total_sleep_hours) > 0.01:
            issues.append("package sleep total does not match daily plans")
        return issues

    def get_summary(self) -> str:
        """Get a human-readable summary."""
        days = len(self.daily_plans)
        avg_sleep = self.total_sleep_hours / days if days else 0
        avg_steps = self.total_steps // days if days else 0
        return (
            f"Week of {self.week_start.isoformat()} for {self.profile_id}: "
            f"{self.total_sleep_hours:.1f}h sleep (avg {avg_sleep:.1f}h), "
            f"{self.total_steps} steps (avg {avg_steps})"
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "generated_at": self.generated_at.isoformat(),
            "profile_id": self.profile_id,
            "week_start": self.week_start.isoformat(),
            "daily_plans": [p.to_dict() for p in self.daily_plans],
            "total_sleep_hours": self.total_sleep_hours,
            "total_steps": self.total_steps,
            "data_version": self.data_version,
            "sleep_history": list(self.sleep_history),
            "steps_history": list(self.steps_history),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeeklyPackage":
        """Create from dictionary."""
        return cls(
            generated_at=datetime.fromisoformat(data["generated_at"]),
            profile_id=data["profile_id"],
            week_start=date.fromisoformat(data["week_start"]),
            daily_plans=tuple(DailyPlan.from_dict(p) for p in data["daily_plans"]),
            total_sleep_hours=data["total_sleep_hours"],
            total_steps=data["total_steps"],
            data_version=data.get("data_version", DATA_VERSION),
            sleep_history=tuple(data.get("sleep_history", ())),
            steps_history=tuple(data.get("steps_history", ())),
        )
