"""Sleep session models."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum


class SleepMode(str, Enum):
    """Fidelity of generated sleep data."""

    PLAIN = "plain"  # phone-like record: a main block plus a few fragments
    DETAILED = "detailed"  # watch-like record: cycles with light/deep/rem stages


class StageKind(str, Enum):
    """Sleep stage kind."""

    AWAKE = "awake"
    LIGHT = "light"
    DEEP = "deep"
    REM = "rem"

    @property
    def is_asleep(self) -> bool:
        return self is not StageKind.AWAKE


@dataclass(frozen=True)
class SleepStage:
    """One contiguous stage segment."""

    kind: StageKind
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SleepStage":
        return cls(
            kind=StageKind(data["kind"]),
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
        )


@dataclass(frozen=True)
class SleepSession:
    """The sleep that ends on the morning of `date`.

    Bed time may fall on the previous calendar day.
    """

    date: date
    bed_time: datetime
    wake_time: datetime
    stages: tuple[SleepStage, ...] = field(default_factory=tuple)
    mode: SleepMode = SleepMode.DETAILED

    @property
    def duration(self) -> timedelta:
        return self.wake_time - self.bed_time

    @property
    def duration_hours(self) -> float:
        return self.duration.total_seconds() / 3600

    @property
    def asleep_hours(self) -> float:
        """Hours spent in non-awake stages."""
        seconds = sum(
            s.duration.total_seconds() for s in self.stages if s.kind.is_asleep
        )
        return seconds / 3600

    @property
    def stage_coverage(self) -> float:
        """Fraction of the bed-to-wake span covered by stage segments."""
        span = self.duration.total_seconds()
        if span <= 0:
            return 0.0
        return sum(s.duration.total_seconds() for s in self.stages) / span

    @property
    def segment_count(self) -> int:
        """Number of contiguous asleep blocks, a measure of fragmentation."""
        count = 0
        previous_end: datetime | None = None
        previous_asleep = False
        for stage in self.stages:
            contiguous = previous_end is not None and stage.start == previous_end
            if stage.kind.is_asleep and not (contiguous and previous_asleep):
                count += 1
            previous_asleep = stage.kind.is_asleep
            previous_end = stage.end
        return count

    def stage_minutes(self) -> dict[str, int]:
        """Total minutes per stage kind."""
        minutes = {kind.value: 0 for kind in StageKind}
        for stage in self.stages:
            minutes[stage.kind.value] += int(stage.duration.total_seconds() // 60)
        return minutes

    def overlap(self, start: datetime, end: datetime) -> timedelta:
        """Overlap between [start, end) and the bed-to-wake window."""
        lo = max(start, self.bed_time)
        hi = min(end, self.wake_time)
        return max(hi - lo, timedelta(0))

    def contains(self, moment: datetime) -> bool:
        return self.bed_time <= moment < self.wake_time

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "date": self.date.isoformat(),
            "bed_time": self.bed_time.isoformat(),
            "wake_time": self.wake_time.isoformat(),
            "stages": [s.to_dict() for s in self.stages],
            "mode": self.mode.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SleepSession":
        """Create from dictionary."""
        return cls(
            date=date.fromisoformat(data["date"]),
            bed_time=datetime.fromisoformat(data["bed_time"]),
            wake_time=datetime.fromisoformat(data["wake_time"]),
            stages=tuple(SleepStage.from_dict(s) for s in data.get("stages", [])),
            mode=SleepMode(data.get("mode", SleepMode.DETAILED.value)),
        )
