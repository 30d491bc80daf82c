"""Base protocol for health data stores."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Callable, Iterable, Protocol, runtime_checkable

from ..models.plan import DATA_VERSION
from ..models.profile import DeviceInfo
from ..models.sleep import SleepMode, SleepSession
from ..models.steps import StepIncrement, StepsDay

ORIGIN_KEY = "SyntheticDataSource"
ORIGIN_VALUE = "sleepsteps"
GENERATED_AT_KEY = "GeneratedAt"
VERSION_KEY = "DataVersion"
DEVICE_NAME_KEY = "DeviceName"
DEVICE_SERIAL_KEY = "DeviceSerial"
ACTIVITY_KEY = "ActivityType"
STAGE_KEY = "SleepStage"
USER_ENTERED_KEY = "WasUserEntered"
SESSION_DATE_KEY = "SessionDate"


class SampleType(str, Enum):
    """Kinds of samples the store holds."""

    SLEEP_ANALYSIS = "sleep_analysis"
    STEP_COUNT = "step_count"


@dataclass
class HealthSample:
    """Represents one stored sample."""

    sample_type: SampleType
    start: datetime
    end: datetime
    value: float | str  # step count, or sleep stage name
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_generated(self) -> bool:
        """True when this package wrote the sample."""
        return self.metadata.get(ORIGIN_KEY) == ORIGIN_VALUE

    def to_dict(self) -> dict:
        return {
            "sample_type": self.sample_type.value,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "value": self.value,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HealthSample":
        return cls(
            sample_type=SampleType(data["sample_type"]),
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            value=data["value"],
            metadata=dict(data.get("metadata", {})),
        )


SamplePredicate = Callable[[HealthSample], bool]


def generated_between(start: datetime, end: datetime) -> SamplePredicate:
    """Predicate matching self-generated samples starting in [start, end)."""

    def predicate(sample: HealthSample) -> bool:
        return sample.is_generated and start <= sample.start < end

    return predicate


def generated_sessions(days: Iterable[date]) -> SamplePredicate:
    """Predicate matching self-generated sleep samples of the given wake dates."""
    wanted = {d.isoformat() for d in days}

    def predicate(sample: HealthSample) -> bool:
        return sample.is_generated and sample.metadata.get(SESSION_DATE_KEY) in wanted

    return predicate


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


@runtime_checkable
class HealthDataStore(Protocol):
    """Protocol for the external health data store."""

    @property
    def store_name(self) -> str:
        """Return the name of this store."""
        ...

    async def request_authorization(self) -> bool:
        """Ask for read/write access. Returns True when granted."""
        ...

    async def write_sleep_session(self, session: SleepSession, mode: SleepMode) -> bool:
        """Write a sleep session.

        Args:
            session: Validated session
            mode: plain writes in-bed/asleep samples; detailed adds stages

        Returns:
            True on success
        """
        ...

    async def write_steps_day(self, day: StepsDay) -> bool:
        """Write every increment of a day."""
        ...

    async def write_step_increment(self, increment: StepIncrement) -> bool:
        """Write a single increment."""
        ...

    async def query_samples(
        self, sample_type: SampleType, start: datetime, end: datetime
    ) -> list[HealthSample]:
        """Samples of a type starting in [start, end)."""
        ...

    async def delete_samples(
        self, sample_type: SampleType, predicate: SamplePredicate
    ) -> int:
        """Delete matching samples. Returns the number deleted."""
        ...


class BaseHealthStore(ABC):
    """Base class for health stores.

    Converts domain objects into samples tagged with origin metadata;
    subclasses only persist, query and delete samples.
    """

    def __init__(self, device: DeviceInfo | None = None, clock: Callable[[], datetime] = datetime.now):
        self.device = device or DeviceInfo()
        self._clock = clock

    @property
    @abstractmethod
    def store_name(self) -> str:
        """Return the name of this store."""
        pass

    @abstractmethod
    async def request_authorization(self) -> bool:
        pass

    @abstractmethod
    async def save_samples(self, samples: list[HealthSample]) -> None:
        """Persist samples, raising DeliveryError or AuthorizationError."""
        pass

    @abstractmethod
    async def query_samples(
        self, sample_type: SampleType, start: datetime, end: datetime
    ) -> list[HealthSample]:
        pass

    @abstractmethod
    async def delete_samples(
        self, sample_type: SampleType, predicate: SamplePredicate
    ) -> int:
        pass

    def sample_metadata(self, **extra: str) -> dict[str, str]:
        """Metadata identifying a sample as self-generated."""
        metadata = {
            ORIGIN_KEY: ORIGIN_VALUE,
            GENERATED_AT_KEY: self._clock().isoformat(timespec="seconds"),
            VERSION_KEY: DATA_VERSION,
            DEVICE_NAME_KEY: self.device.model,
            DEVICE_SERIAL_KEY: self.device.serial,
            USER_ENTERED_KEY: "false",
        }
        metadata.update(extra)
        return metadata

    def sleep_samples(self, session: SleepSession, mode: SleepMode) -> list[HealthSample]:
        """In-bed and asleep samples, plus per-stage samples in detailed mode."""
        samples = [
            HealthSample(
                sample_type=SampleType.SLEEP_ANALYSIS,
                start=session.bed_time,
                end=session.wake_time,
                value="in_bed",
                metadata=self.sample_metadata(**{SESSION_DATE_KEY: session.date.isoformat()}),
            )
        ]
        for stage in session.stages:
            if mode is SleepMode.PLAIN and not stage.kind.is_asleep:
                continue
            value = stage.kind.value if mode is SleepMode.DETAILED else "asleep"
            samples.append(
                HealthSample(
                    sample_type=SampleType.SLEEP_ANALYSIS,
                    start=stage.start,
                    end=stage.end,
                    value=value,
                    metadata=self.sample_metadata(
                        **{
                            STAGE_KEY: stage.kind.value,
                            SESSION_DATE_KEY: session.date.isoformat(),
                        }
                    ),
                )
            )
        return samples

    def step_sample(self, increment: StepIncrement) -> HealthSample:
        return HealthSample(
            sample_type=SampleType.STEP_COUNT,
            start=increment.start,
            end=increment.end,
            value=increment.steps,
            metadata=self.sample_metadata(**{ACTIVITY_KEY: increment.activity_kind.value}),
        )

    async def write_sleep_session(self, session: SleepSession, mode: SleepMode) -> bool:
        await self.save_samples(self.sleep_samples(session, SleepMode(mode)))
        return True

    async def write_steps_day(self, day: StepsDay) -> bool:
        samples = [self.step_sample(inc) for inc in day.increments if inc.steps > 0]
        if samples:
            await self.save_samples(samples)
        return True

    async def write_step_increment(self, increment: StepIncrement) -> bool:
        await self.save_samples([self.step_sample(increment)])
        return True

    async def delete_generated(self, sample_type: SampleType, day: date) -> int:
        """Remove this package's samples for one calendar day."""
        start, end = day_bounds(day)
        return await self.delete_samples(sample_type, generated_between(start, end))

    async def total_steps(self, start: datetime, end: datetime) -> int:
        samples = await self.query_samples(SampleType.STEP_COUNT, start, end)
        return int(sum(float(s.value) for s in samples))
