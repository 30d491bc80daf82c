"""Data models for sleepsteps."""

from .plan import (
    BatchPriority,
    CacheStatus,
    DailyPlan,
    ImportSchedule,
    ReductionSlot,
    SleepTimeReduction,
    StepBatch,
    WeeklyPackage,
    week_start_for,
)
from .profile import (
    ActivityArchetype,
    DeviceInfo,
    Profile,
    Sex,
    SleepArchetype,
    generate_profile,
    infer_activity_archetype,
    infer_sleep_archetype,
)
from .sleep import SleepMode, SleepSession, SleepStage, StageKind
from .steps import ActivityKind, StepIncrement, StepsDay

__all__ = [
    "ActivityArchetype",
    "ActivityKind",
    "BatchPriority",
    "CacheStatus",
    "DailyPlan",
    "DeviceInfo",
    "generate_profile",
    "ImportSchedule",
    "infer_activity_archetype",
    "infer_sleep_archetype",
    "Profile",
    "ReductionSlot",
    "Sex",
    "SleepArchetype",
    "SleepMode",
    "SleepSession",
    "SleepStage",
    "SleepTimeReduction",
    "StageKind",
    "StepBatch",
    "StepIncrement",
    "StepsDay",
    "WeeklyPackage",
    "week_start_for",
]
