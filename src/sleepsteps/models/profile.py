"""Simulated person profile and archetype definitions."""

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from ..errors import GenerationError


class Sex(str, Enum):
    """Biological sex used for body-metric generation."""

    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class SleepArchetype(str, Enum):
    """Sleep timing cluster."""

    EARLY_BIRD = "early_bird"
    NORMAL = "normal"
    NIGHT_OWL = "night_owl"
    IRREGULAR = "irregular"

    @property
    def window(self) -> tuple[int, int]:
        """Target (bed hour, wake hour). Bed > wake means the window crosses midnight."""
        return {
            SleepArchetype.NIGHT_OWL: (2, 14),
            SleepArchetype.EARLY_BIRD: (22, 6),
            SleepArchetype.IRREGULAR: (23, 8),
            SleepArchetype.NORMAL: (23, 7),
        }[self]

    @property
    def duration_range(self) -> tuple[float, float]:
        """Typical sleep duration in hours."""
        return {
            SleepArchetype.NIGHT_OWL: (6.0, 10.0),
            SleepArchetype.EARLY_BIRD: (7.0, 9.0),
            SleepArchetype.IRREGULAR: (5.0, 11.0),
            SleepArchetype.NORMAL: (7.0, 9.0),
        }[self]

    @property
    def consistency(self) -> float:
        """Regularity coefficient (1.0 = identical every night)."""
        return {
            SleepArchetype.NIGHT_OWL: 0.8,
            SleepArchetype.EARLY_BIRD: 0.9,
            SleepArchetype.IRREGULAR: 0.3,
            SleepArchetype.NORMAL: 0.7,
        }[self]

    @property
    def crosses_midnight(self) -> bool:
        bed, wake = self.window
        return bed > wake

    @property
    def window_midpoint(self) -> float:
        """Midpoint of the window in hours relative to the wake date's midnight.

        Negative values fall on the previous evening.
        """
        bed, wake = self.window
        if self.crosses_midnight:
            bed -= 24
        return (bed + wake) / 2

    def get_display_name(self) -> str:
        return self.value.replace("_", " ").title()


class ActivityArchetype(str, Enum):
    """Daily activity cluster."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def step_range(self) -> tuple[int, int]:
        return {
            ActivityArchetype.LOW: (1500, 4500),
            ActivityArchetype.MEDIUM: (4500, 8500),
            ActivityArchetype.HIGH: (8500, 13000),
            ActivityArchetype.VERY_HIGH: (13000, 18000),
        }[self]

    @property
    def intensity(self) -> float:
        return {
            ActivityArchetype.LOW: 0.7,
            ActivityArchetype.MEDIUM: 1.0,
            ActivityArchetype.HIGH: 1.3,
            ActivityArchetype.VERY_HIGH: 1.6,
        }[self]

    @property
    def weekend_multiplier(self) -> float:
        return {
            ActivityArchetype.LOW: 0.8,
            ActivityArchetype.MEDIUM: 1.2,
            ActivityArchetype.HIGH: 1.4,
            ActivityArchetype.VERY_HIGH: 1.6,
        }[self]

    @property
    def daily_envelope(self) -> tuple[int, int]:
        """Hard bounds on a generated daily total for this archetype."""
        return {
            ActivityArchetype.LOW: (500, 7000),
            ActivityArchetype.MEDIUM: (1500, 13000),
            ActivityArchetype.HIGH: (2800, 20000),
            ActivityArchetype.VERY_HIGH: (4300, 25000),
        }[self]

    def get_display_name(self) -> str:
        return self.value.replace("_", " ").title()


def infer_sleep_archetype(sleep_baseline: float) -> SleepArchetype:
    """Map a nightly sleep baseline (hours) to a sleep archetype."""
    if 5.0 <= sleep_baseline < 6.5:
        return SleepArchetype.IRREGULAR
    if 6.5 <= sleep_baseline < 7.5:
        return SleepArchetype.NORMAL
    if 7.5 <= sleep_baseline <= 9.0:
        return SleepArchetype.EARLY_BIRD
    return SleepArchetype.NIGHT_OWL


def infer_activity_archetype(steps_baseline: int) -> ActivityArchetype:
    """Map a daily steps baseline to an activity archetype."""
    if steps_baseline <= 5000:
        return ActivityArchetype.LOW
    if steps_baseline <= 8000:
        return ActivityArchetype.MEDIUM
    if steps_baseline <= 12000:
        return ActivityArchetype.HIGH
    return ActivityArchetype.VERY_HIGH


@dataclass(frozen=True)
class DeviceInfo:
    """Device the synthetic samples claim to come from."""

    model: str = "iPhone"
    serial: str = ""
    uuid: str = ""

    def to_dict(self) -> dict:
        return {"model": self.model, "serial": self.serial, "uuid": self.uuid}

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceInfo":
        return cls(
            model=data.get("model", "iPhone"),
            serial=data.get("serial", ""),
            uuid=data.get("uuid", ""),
        )


@dataclass(frozen=True)
class Profile:
    """A simulated person.

    The archetype pair parameterizes all generation. Profiles are immutable;
    use Profile.from_baselines to derive archetypes from numeric baselines.
    """

    id: str
    age: int
    sex: Sex
    height: float  # cm
    weight: float  # kg
    sleep_archetype: SleepArchetype
    activity_archetype: ActivityArchetype
    sleep_baseline: float | None = None  # hours
    steps_baseline: int | None = None
    device: DeviceInfo = field(default_factory=DeviceInfo)

    def __post_init__(self):
        if not self.id or not str(self.id).strip():
            raise GenerationError("Profile id must be a non-empty string")
        if not 10 <= self.age <= 100:
            raise GenerationError(f"Profile age {self.age} outside 10-100")
        if not 100 <= self.height <= 250:
            raise GenerationError(f"Profile height {self.height}cm outside 100-250")
        if not 30 <= self.weight <= 250:
            raise GenerationError(f"Profile weight {self.weight}kg outside 30-250")
        if self.sleep_baseline is not None and not 3.0 <= self.sleep_baseline <= 12.0:
            raise GenerationError(
                f"Sleep baseline {self.sleep_baseline}h outside 3-12"
            )
        if self.steps_baseline is not None and not 0 < self.steps_baseline <= 30000:
            raise GenerationError(
                f"Steps baseline {self.steps_baseline} outside 1-30000"
            )
        if not isinstance(self.sleep_archetype, SleepArchetype):
            raise GenerationError(f"Unknown sleep archetype: {self.sleep_archetype!r}")
        if not isinstance(self.activity_archetype, ActivityArchetype):
            raise GenerationError(
                f"Unknown activity archetype: {self.activity_archetype!r}"
            )

    @property
    def bmi(self) -> float:
        return self.weight / (self.height / 100) ** 2

    @property
    def effective_sleep_baseline(self) -> float:
        """Baseline hours, falling back to the archetype's range midpoint."""
        if self.sleep_baseline is not None:
            return self.sleep_baseline
        lo, hi = self.sleep_archetype.duration_range
        return (lo + hi) / 2

    @property
    def effective_steps_baseline(self) -> int:
        """Baseline steps, falling back to the archetype's range midpoint."""
        if self.steps_baseline is not None:
            return self.steps_baseline
        lo, hi = self.activity_archetype.step_range
        return (lo + hi) // 2

    @classmethod
    def from_baselines(
        cls,
        id: str,
        age: int,
        sex: Sex,
        height: float,
        weight: float,
        sleep_baseline: float,
        steps_baseline: int,
        device: DeviceInfo | None = None,
    ) -> "Profile":
        """Create a profile whose archetypes are inferred from baselines."""
        return cls(
            id=id,
            age=age,
            sex=sex,
            height=height,
            weight=weight,
            sleep_archetype=infer_sleep_archetype(sleep_baseline),
            activity_archetype=infer_activity_archetype(steps_baseline),
            sleep_baseline=sleep_baseline,
            steps_baseline=steps_baseline,
            device=device or DeviceInfo(),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "age": self.age,
            "sex": self.sex.value,
            "height": self.height,
            "weight": self.weight,
            "sleep_archetype": self.sleep_archetype.value,
            "activity_archetype": self.activity_archetype.value,
            "sleep_baseline": self.sleep_baseline,
            "steps_baseline": self.steps_baseline,
            "device": self.device.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Profile":
        """Create from dictionary."""
        try:
            sex = Sex(data["sex"])
            sleep_archetype = SleepArchetype(data["sleep_archetype"])
            activity_archetype = ActivityArchetype(data["activity_archetype"])
        except (KeyError, ValueError) as e:
            raise GenerationError(f"Malformed profile data: {e}") from e
        return cls(
            id=data["id"],
            age=data["age"],
            sex=sex,
            height=data["height"],
            weight=data["weight"],
            sleep_archetype=sleep_archetype,
            activity_archetype=activity_archetype,
            sleep_baseline=data.get("sleep_baseline"),
            steps_baseline=data.get("steps_baseline"),
            device=DeviceInfo.from_dict(data.get("device", {})),
        )

    def get_summary(self) -> str:
        """Get a human-readable summary of the profile."""
        lines = [
            f"Profile: {self.id}",
            f"Age: {self.age}, Sex: {self.sex.value}",
            f"Height: {self.height:.0f}cm, Weight: {self.weight:.1f}kg (BMI {self.bmi:.1f})",
            f"Sleep: {self.sleep_archetype.get_display_name()}"
            f" (baseline {self.effective_sleep_baseline:.1f}h)",
            f"Activity: {self.activity_archetype.get_display_name()}"
            f" (baseline {self.effective_steps_baseline} steps)",
        ]
        if self.device.serial:
            lines.append(f"Device: {self.device.model} ({self.device.serial})")
        return "\n".join(lines)


SERIAL_PREFIXES = ["F2L", "F4L", "G0N", "G5N", "DX3", "F17", "F93", "DN6"]
SERIAL_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ0123456789"
DEVICE_MODELS = ["iPhone 13", "iPhone 14", "iPhone 14 Pro", "iPhone 15", "iPhone 15 Pro"]


def generate_profile(rng, profile_id: str | None = None) -> Profile:
    """Generate a random plausible profile.

    Args:
        rng: A SeededRandom stream
        profile_id: Optional fixed id; a deterministic one is drawn otherwise

    Returns:
        A new Profile with archetypes inferred from drawn baselines
    """
    age = rng.next_int(20, 45)
    sex = rng.choice([Sex.MALE, Sex.FEMALE, Sex.OTHER])
    height_range = {
        Sex.MALE: (160.0, 185.0),
        Sex.FEMALE: (150.0, 170.0),
        Sex.OTHER: (155.0, 180.0),
    }[sex]
    height = round(rng.next_double(*height_range), 1)
    bmi = rng.next_double(18.5, 28.0)
    weight = round(min(100.0, max(50.0, bmi * (height / 100) ** 2)), 1)

    sleep_baseline = round(rng.next_double(5.5, 9.5), 1)
    steps_baseline = rng.next_int(2000, 16000)

    uuid = str(UUID(int=(rng.next_u64() << 64) | rng.next_u64(), version=4))
    serial = rng.choice(SERIAL_PREFIXES) + "".join(
        rng.choice(SERIAL_ALPHABET) for _ in range(5)
    )
    device = DeviceInfo(model=rng.choice(DEVICE_MODELS), serial=serial, uuid=uuid)

    return Profile.from_baselines(
        id=profile_id or uuid[:8],
        age=age,
        sex=sex,
        height=height,
        weight=weight,
        sleep_baseline=sleep_baseline,
        steps_baseline=steps_baseline,
        device=device,
    )
