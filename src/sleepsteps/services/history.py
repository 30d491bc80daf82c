"""Backfilling past days into a health data store."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from ..clients.base import (
    HealthDataStore,
    SampleType,
    day_bounds,
    generated_between,
    generated_sessions,
)
from ..compliance import ComplianceValidator, validate_day
from ..config import get_settings
from ..generators.sleep import SleepSynthesizer, parse_mode
from ..generators.steps import StepSynthesizer
from ..models.profile import Profile
from ..models.sleep import SleepMode, SleepSession
from ..models.steps import StepsDay

logger = logging.getLogger(__name__)


@dataclass
class HistoryDay:
    date: date
    sleep_session: SleepSession | None
    steps: StepsDay


@dataclass
class SyncResult:
    """Outcome of writing a history range to a store."""

    days: list[HistoryDay] = field(default_factory=list)
    deleted_samples: int = 0

    @property
    def total_steps(self) -> int:
        return sum(d.steps.total_steps for d in self.days)

    @property
    def total_sleep_hours(self) -> float:
        return sum(d.sleep_session.duration_hours for d in self.days if d.sleep_session)


class HistoryGenerator:
    """Generates consecutive past days with rolling sleep and step history."""

    def __init__(
        self,
        sleep_synthesizer: SleepSynthesizer | None = None,
        step_synthesizer: StepSynthesizer | None = None,
        validator: ComplianceValidator | None = None,
    ):
        self.sleep_synthesizer = sleep_synthesizer or SleepSynthesizer()
        self.step_synthesizer = step_synthesizer or StepSynthesizer()
        self.validator = validator or ComplianceValidator(get_settings().min_daily_steps)

    def generate(
        self,
        profile: Profile,
        start: date,
        days: int,
        now: datetime,
        mode: SleepMode | str = SleepMode.DETAILED,
    ) -> list[HistoryDay]:
        """Generate `days` days starting at `start`, never past `now`.

        Days after `now` are left out; the day containing `now` only gets
        steps for hours that have already elapsed.
        """
        mode = parse_mode(mode)
        last = min(start + timedelta(days=days - 1), now.date())
        dates = []
        day = start
        while day <= last:
            dates.append(day)
            day += timedelta(days=1)

        sessions: dict[date, SleepSession | None] = {}
        hours: list[float] = []
        for day in [*dates, last + timedelta(days=1)]:
            session = self.sleep_synthesizer.synthesize(profile, day, hours[-7:], mode, now=now)
            if session is not None:
                session = self.validator.validate_sleep(session)
                hours.append(session.duration_hours)
            sessions[day] = session

        result = []
        totals: list[int] = []
        for day in dates:
            session = sessions[day]
            evening = sessions.get(day + timedelta(days=1))
            steps = self.step_synthesizer.synthesize(
                profile, day, [session, evening], totals[-7:], mode, now=now
            )
            if day == now.date():
                steps = self.validator.validate_steps(steps, [session, evening], not_after=now)
            else:
                session, steps = validate_day(self.validator, session, steps, [evening])
            totals.append(steps.total_steps)
            result.append(HistoryDay(date=day, sleep_session=session, steps=steps))
        logger.info(
            "Generated %d days of history for %s starting %s", len(result), profile.id, start
        )
        return result


async def sync_history(
    store: HealthDataStore,
    profile: Profile,
    start: date,
    days: int,
    now: datetime,
    mode: SleepMode | str = SleepMode.DETAILED,
    generator: HistoryGenerator | None = None,
) -> SyncResult:
    """Replace previously generated samples in a date range with fresh ones.

    Only samples carrying this package's origin marker are deleted, so
    real data in the store is left alone.
    """
    mode = parse_mode(mode)
    generator = generator or HistoryGenerator()
    history = generator.generate(profile, start, days, now, mode)
    result = SyncResult(days=history)
    if not history:
        return result

    range_start, _ = day_bounds(history[0].date)
    _, range_end = day_bounds(history[-1].date)
    result.deleted_samples += await store.delete_samples(
        SampleType.STEP_COUNT, generated_between(range_start, range_end)
    )
    result.deleted_samples += await store.delete_samples(
        SampleType.SLEEP_ANALYSIS, generated_sessions(d.date for d in history)
    )
    if result.deleted_samples:
        logger.info("Removed %d stale generated samples", result.deleted_samples)

    for day in history:
        if day.sleep_session is not None:
            await store.write_sleep_session(day.sleep_session, mode)
        await store.write_steps_day(day.steps)
    logger.info(
        "Synced %d days to %s: %d steps, %.1fh sleep",
        len(history),
        store.store_name,
        result.total_steps,
        result.total_sleep_hours,
    )
    return result
