"""Compliance validation and repair.

The validator never rejects data. It repairs sessions and step days so the
structural invariants hold before anything leaves the package, logging each
repair. Running it on already-valid data returns the data unchanged.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Iterable

from .generators.prng import SeededRandom, derive_seed
from .generators.steps import (
    AWAKE_WEIGHTS,
    MOSTLY_ASLEEP_RATIO,
    expand_hours,
    hour_sleep_ratios,
    sleep_windows,
    split_evenly,
)
from .models.sleep import SleepSession, SleepStage, StageKind
from .models.steps import StepIncrement, StepsDay

logger = logging.getLogger(__name__)

MIN_SESSION = timedelta(hours=2)
MAX_SESSION = timedelta(hours=16)
DEFAULT_SESSION = timedelta(hours=8)
MIN_COVERAGE = 0.8
MAX_COVERAGE = 1.2

MAX_HOURLY_STEPS = 65535
MAX_INCREMENT_STEPS = 10000
MAX_INCREMENT_DURATION = 24 * 3600
SLEEP_BUDGET_SHARE = 0.008
FALLBACK_HOURS = range(7, 23)


def round_to_second(moment: datetime) -> datetime:
    """Round a timestamp to the nearest whole second."""
    rounded = moment.replace(microsecond=0)
    if moment.microsecond >= 500_000:
        rounded += timedelta(seconds=1)
    return rounded


@dataclass
class QualityReport:
    """Plausibility assessment of a generated day."""

    score: int = 100
    findings: list[str] = field(default_factory=list)

    def penalize(self, points: int, finding: str) -> None:
        self.score = max(0, self.score - points)
        self.findings.append(finding)

    @property
    def is_acceptable(self) -> bool:
        return self.score >= 60


class ComplianceValidator:
    """Pure, idempotent repair pass for sleep sessions and step days."""

    def __init__(self, min_daily_steps: int = 800):
        self.min_daily_steps = min_daily_steps

    # ------------------------------------------------------------------
    # Sleep
    # ------------------------------------------------------------------

    def validate_sleep(self, session: SleepSession) -> SleepSession:
        """Return a session satisfying all sleep invariants."""
        bed = round_to_second(session.bed_time)
        wake = round_to_second(session.wake_time)

        if wake <= bed:
            logger.info("Sleep %s: wake %s not after bed %s, using 8h", session.date, wake, bed)
            wake = bed + DEFAULT_SESSION
        if wake - bed < MIN_SESSION:
            logger.info("Sleep %s: session shorter than 2h, extending", session.date)
            wake = bed + MIN_SESSION
        elif wake - bed > MAX_SESSION:
            logger.info("Sleep %s: session longer than 16h, truncating", session.date)
            wake = bed + MAX_SESSION

        stages = []
        cursor = bed
        for stage in sorted(session.stages, key=lambda s: (s.start, s.end)):
            start = max(round_to_second(stage.start), bed, cursor)
            end = min(round_to_second(stage.end), wake)
            if end <= start:
                logger.info(
                    "Sleep %s: dropping degenerate %s stage at %s",
                    session.date,
                    stage.kind.value,
                    stage.start,
                )
                continue
            stages.append(SleepStage(kind=stage.kind, start=start, end=end))
            cursor = end

        repaired = SleepSession(
            date=session.date,
            bed_time=bed,
            wake_time=wake,
            stages=tuple(stages),
            mode=session.mode,
        )
        coverage = repaired.stage_coverage
        if coverage < MIN_COVERAGE:
            logger.info(
                "Sleep %s: stage coverage %.2f below %.1f, filling gaps",
                session.date,
                coverage,
                MIN_COVERAGE,
            )
            repaired = replace(repaired, stages=self._fill_gaps(repaired))
        return repaired

    def _fill_gaps(self, session: SleepSession) -> tuple[SleepStage, ...]:
        if not session.stages:
            return (
                SleepStage(
                    kind=StageKind.LIGHT,
                    start=session.bed_time,
                    end=session.wake_time,
                ),
            )
        filled = []
        cursor = session.bed_time
        for stage in session.stages:
            if stage.start > cursor:
                filled.append(SleepStage(kind=StageKind.AWAKE, start=cursor, end=stage.start))
            filled.append(stage)
            cursor = stage.end
        if cursor < session.wake_time:
            filled.append(SleepStage(kind=StageKind.AWAKE, start=cursor, end=session.wake_time))
        return tuple(filled)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def validate_steps(
        self,
        day: StepsDay,
        sleep_sessions: Iterable[SleepSession | None] = (),
        not_after: datetime | None = None,
    ) -> StepsDay:
        """Return a step day satisfying all step invariants.

        Args:
            day: The day to repair
            sleep_sessions: Sessions overlapping the day, used when steps
                must be redistributed
            not_after: Do not place redistributed steps after this moment

        Returns:
            A repaired copy (or the same data when already valid)
        """
        sessions = [s for s in sleep_sessions if s is not None]
        day_start = datetime.combine(day.date, time.min)
        day_end = day_start + timedelta(days=1)

        hourly = [min(MAX_HOURLY_STEPS, max(0, int(h))) for h in day.hourly]
        if len(hourly) != 24:
            logger.info("Steps %s: %d hourly buckets, padding to 24", day.date, len(hourly))
            hourly = (hourly + [0] * 24)[:24]
        if tuple(hourly) != tuple(day.hourly):
            logger.info("Steps %s: clamped hourly buckets to [0, %d]", day.date, MAX_HOURLY_STEPS)

        increments = []
        for inc in day.increments:
            timestamp = round_to_second(inc.timestamp)
            duration = min(MAX_INCREMENT_DURATION, int(inc.duration_seconds))
            steps = min(MAX_INCREMENT_STEPS, max(0, int(inc.steps)))
            if duration <= 0:
                logger.info("Steps %s: dropping zero-length increment at %s", day.date, timestamp)
                continue
            if timestamp - timedelta(seconds=duration) < day_start or timestamp >= day_end:
                logger.info("Steps %s: dropping increment outside the day at %s", day.date, timestamp)
                continue
            if (timestamp, duration, steps) != (inc.timestamp, inc.duration_seconds, inc.steps):
                inc = replace(inc, timestamp=timestamp, duration_seconds=duration, steps=steps)
            increments.append(inc)

        total = sum(hourly)
        rebuild = False
        if total != day.total_steps:
            logger.info(
                "Steps %s: total %d disagrees with hourly sum %d, using hourly sum",
                day.date,
                day.total_steps,
                total,
            )
        if not self._increments_match(increments, hourly):
            logger.info("Steps %s: increments do not match hourly buckets, rebuilding", day.date)
            rebuild = True

        windows = sleep_windows(day.date, sessions)
        if total < self.min_daily_steps:
            logger.info(
                "Steps %s: total %d below floor %d, redistributing",
                day.date,
                total,
                self.min_daily_steps,
            )
            hourly = self._redistribute(day.date, hourly, windows, not_after)
            total = sum(hourly)
            rebuild = True

        if rebuild:
            rng = SeededRandom(derive_seed("compliance", day.date, "steps"))
            increments = expand_hours(day.date, hourly, windows, rng)
        else:
            increments.sort(key=lambda inc: inc.timestamp)

        return StepsDay(
            date=day.date,
            total_steps=total,
            hourly=tuple(hourly),
            increments=tuple(increments),
        )

    def _increments_match(self, increments: list[StepIncrement], hourly: list[int]) -> bool:
        per_hour = [0] * 24
        for inc in increments:
            per_hour[inc.timestamp.hour] += inc.steps
        return per_hour == hourly

    def _redistribute(
        self,
        day: date,
        hourly: list[int],
        windows: list[tuple[datetime, datetime]],
        not_after: datetime | None,
    ) -> list[int]:
        target = self.min_daily_steps
        day_start = datetime.combine(day, time.min)
        hours_available = 24
        if not_after is not None and not_after < day_start + timedelta(days=1):
            hours_available = max(1, int((not_after - day_start) // timedelta(hours=1)))

        if windows:
            ratios = hour_sleep_ratios(day, windows)
            sleep_hours = [
                h for h in range(hours_available) if ratios[h] >= MOSTLY_ASLEEP_RATIO
            ]
            wake_hours = [
                h for h in range(hours_available) if ratios[h] < MOSTLY_ASLEEP_RATIO
            ]
            if wake_hours:
                result = [0] * 24
                budget = max(1, int(target * SLEEP_BUDGET_SHARE)) if sleep_hours else 0
                if sleep_hours:
                    sleep_hours.sort(key=lambda h: (-ratios[h], h))
                    for h, share in zip(sleep_hours, split_evenly(budget, len(sleep_hours))):
                        result[h] = share
                for h, share in zip(wake_hours, split_evenly(target - budget, len(wake_hours))):
                    result[h] = share
                busiest = max(wake_hours, key=lambda h: (AWAKE_WEIGHTS[h], -h))
                result[busiest] += target - sum(result)
                return result

        current = sum(hourly[:hours_available])
        if current > 0:
            result = [0] * 24
            for h in range(hours_available):
                result[h] = hourly[h] * target // current
            last = max(h for h in range(hours_available) if hourly[h] > 0)
            result[last] += target - sum(result)
            return result

        hours = [h for h in FALLBACK_HOURS if h < hours_available] or list(range(hours_available))
        result = [0] * 24
        for h, share in zip(hours, split_evenly(target, len(hours))):
            result[h] = share
        return result

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def quality_report(
        self, session: SleepSession | None, day: StepsDay | None
    ) -> QualityReport:
        """Score how plausible a generated day looks."""
        report = QualityReport()
        if session is not None:
            hours = session.duration_hours
            if hours < 4:
                report.penalize(20, f"very short sleep ({hours:.1f}h)")
            elif hours > 11:
                report.penalize(15, f"very long sleep ({hours:.1f}h)")
            coverage = session.stage_coverage
            if not MIN_COVERAGE <= coverage <= MAX_COVERAGE:
                report.penalize(25, f"stage coverage {coverage:.2f} out of range")
            if session.segment_count > 8:
                report.penalize(10, f"fragmented sleep ({session.segment_count} segments)")
        if day is not None:
            if day.total_steps < self.min_daily_steps:
                report.penalize(30, f"daily total {day.total_steps} below floor")
            if day.increment_total != day.total_steps:
                report.penalize(30, "increments do not sum to the daily total")
            if day.total_steps and max(day.hourly) > day.total_steps * 0.4:
                report.penalize(10, "a single hour holds over 40% of the day")
            if session is not None:
                in_bed = sum(
                    i.steps for i in day.increments if session.contains(i.timestamp)
                )
                if in_bed > 400:
                    report.penalize(15, f"{in_bed} steps recorded while in bed")
        return report


def validate_day(
    validator: ComplianceValidator,
    session: SleepSession | None,
    day: StepsDay,
    extra_sessions: Iterable[SleepSession | None] = (),
) -> tuple[SleepSession | None, StepsDay]:
    """Validate a session and its step day together."""
    if session is not None:
        session = validator.validate_sleep(session)
    day = validator.validate_steps(day, [session, *extra_sessions])
    return session, day
