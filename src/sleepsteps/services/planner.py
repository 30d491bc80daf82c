"""Weekly planning: pre-computing a week of data and its delivery schedule."""

import logging
from datetime import date, datetime, time, timedelta
from typing import Protocol, Sequence, runtime_checkable

from ..compliance import ComplianceValidator
from ..config import get_settings
from ..generators.sleep import SleepSynthesizer, parse_mode
from ..generators.steps import StepSynthesizer, awake_segments, sleep_windows
from ..models.plan import (
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
from ..models.profile import Profile
from ..models.sleep import SleepMode, SleepSession
from ..models.steps import ActivityKind, StepsDay

logger = logging.getLogger(__name__)


def determine_activity(hour: int, steps: int) -> ActivityKind:
    """Infer what a batch's steps were from time of day and volume."""
    if hour <= 6:
        return ActivityKind.IDLE
    if 7 <= hour <= 9 and steps >= 50:
        return ActivityKind.COMMUTING
    if 10 <= hour <= 11 and steps >= 20:
        return ActivityKind.WALKING
    if 12 <= hour <= 13 and steps >= 10:
        return ActivityKind.STANDING
    if 14 <= hour <= 17 and steps >= 30:
        return ActivityKind.WALKING
    if 18 <= hour <= 19 and steps >= 50:
        return ActivityKind.COMMUTING
    if 20 <= hour <= 22 and steps >= 40:
        return ActivityKind.EXERCISE
    if hour == 23:
        return ActivityKind.IDLE
    if steps <= 10:
        return ActivityKind.IDLE
    if steps <= 30:
        return ActivityKind.STANDING
    if steps <= 80:
        return ActivityKind.WALKING
    return ActivityKind.RUNNING


def determine_priority(hour: int) -> BatchPriority:
    """Commute windows go first; late night and early morning go last."""
    if 7 <= hour <= 9 or 18 <= hour <= 19:
        return BatchPriority.HIGH
    if hour <= 6 or hour >= 22:
        return BatchPriority.LOW
    return BatchPriority.NORMAL


def time_slices(
    start: datetime, end: datetime, minutes: int
) -> list[tuple[datetime, datetime]]:
    """Split [start, end) at clock-aligned boundaries every `minutes`."""
    slices = []
    step = timedelta(minutes=minutes)
    midnight = datetime.combine(start.date(), time.min)
    cursor = start
    while cursor < end:
        boundary = midnight + ((cursor - midnight) // step + 1) * step
        slice_end = min(boundary, end)
        slices.append((cursor, slice_end))
        cursor = slice_end
    return slices


def merge_windows(
    windows: Sequence[tuple[datetime, datetime]]
) -> list[tuple[datetime, datetime]]:
    merged: list[tuple[datetime, datetime]] = []
    for start, end in sorted(windows):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


class WeeklyPlanner:
    """Builds WeeklyPackages by running the synthesizers for each day."""

    def __init__(
        self,
        sleep_synthesizer: SleepSynthesizer | None = None,
        step_synthesizer: StepSynthesizer | None = None,
        validator: ComplianceValidator | None = None,
        batch_minutes: int | None = None,
        reduction_minutes: int | None = None,
        fallback_delay: timedelta | None = None,
    ):
        settings = get_settings()
        self.sleep_synthesizer = sleep_synthesizer or SleepSynthesizer()
        self.step_synthesizer = step_synthesizer or StepSynthesizer()
        self.validator = validator or ComplianceValidator(settings.min_daily_steps)
        self.batch_minutes = batch_minutes or settings.batch_minutes
        self.reduction_minutes = reduction_minutes or settings.sleep_reduction_minutes
        self.fallback_delay = fallback_delay or timedelta(
            minutes=settings.fallback_delay_minutes
        )

    def plan_week(
        self,
        profile: Profile,
        week_start: date,
        generated_at: datetime,
        sleep_history: Sequence[float] = (),
        steps_history: Sequence[int] = (),
        mode: SleepMode | str = SleepMode.DETAILED,
    ) -> WeeklyPackage:
        """Generate the package for the ISO week containing `week_start`.

        Args:
            profile: Profile to plan for
            week_start: Any date in the target week (normalized to Monday)
            generated_at: Timestamp recorded on the package
            sleep_history: Sleep durations of the nights before the week
            steps_history: Daily totals of the days before the week
            mode: Sleep fidelity mode

        Returns:
            A validated WeeklyPackage with seven daily plans
        """
        mode = parse_mode(mode)
        week_start = week_start_for(week_start)
        days = [week_start + timedelta(days=i) for i in range(7)]

        sessions: list[SleepSession] = []
        hours = list(sleep_history)
        for day in days:
            session = self.sleep_synthesizer.synthesize(profile, day, hours[-7:], mode)
            session = self.validator.validate_sleep(session)
            sessions.append(session)
            hours.append(session.duration_hours)
        # Sunday evening's bed time belongs to the following week's Monday session
        following = self.sleep_synthesizer.synthesize(
            profile, days[-1] + timedelta(days=1), hours[-7:], mode
        )
        sessions.append(self.validator.validate_sleep(following))

        plans = []
        totals = list(steps_history)
        for i, day in enumerate(days):
            overlapping = sessions[i : i + 2]
            steps = self.step_synthesizer.synthesize(
                profile, day, overlapping, totals[-7:], mode
            )
            steps = self.validator.validate_steps(steps, overlapping)
            totals.append(steps.total_steps)
            plans.append(self.build_daily_plan(sessions[i], steps, overlapping))

        package = WeeklyPackage(
            generated_at=generated_at,
            profile_id=profile.id,
            week_start=week_start,
            daily_plans=tuple(plans),
            total_sleep_hours=sum(s.duration_hours for s in sessions[:7]),
            total_steps=sum(p.total_steps for p in plans),
            sleep_history=tuple(sleep_history)[-7:],
            steps_history=tuple(steps_history)[-7:],
        )
        logger.info("Planned %s", package.get_summary())
        return package

    def build_daily_plan(
        self,
        session: SleepSession | None,
        steps: StepsDay,
        sessions: Sequence[SleepSession] = (),
    ) -> DailyPlan:
        """Slice a day's steps into delivery batches and schedule them."""
        day = steps.date
        day_start = datetime.combine(day, time.min)
        day_end = day_start + timedelta(days=1)
        windows = merge_windows(sleep_windows(day, sessions or ([session] if session else [])))

        batches = []
        for is_sleep, intervals in (
            (False, awake_segments(day_start, day_end, windows)),
            (True, windows),
        ):
            for start, end in intervals:
                for slice_start, slice_end in time_slices(start, end, self.batch_minutes):
                    count = steps.steps_between(slice_start, slice_end)
                    if count <= 0:
                        continue
                    hour = slice_start.hour
                    batches.append(
                        (
                            slice_end,
                            count,
                            slice_end - slice_start,
                            ActivityKind.IDLE
                            if is_sleep and count <= 10
                            else determine_activity(hour, count),
                            BatchPriority.LOW if is_sleep else determine_priority(hour),
                            is_sleep,
                        )
                    )
        batches.sort(key=lambda b: b[0])
        step_batches = tuple(
            StepBatch(
                id=f"{day:%Y%m%d}-{n:03d}",
                scheduled_time=when,
                steps=count,
                duration=duration,
                activity_kind=kind,
                priority=priority,
                is_during_sleep=is_sleep,
            )
            for n, (when, count, duration, kind, priority, is_sleep) in enumerate(batches)
        )

        schedule = ImportSchedule(
            sleep_import_time=session.wake_time if session else None,
            step_batch_times=tuple(b.scheduled_time for b in step_batches),
            fallback_times=tuple(b.scheduled_time + self.fallback_delay for b in step_batches),
        )
        return DailyPlan(
            date=day,
            sleep_session=session,
            step_batches=step_batches,
            import_schedule=schedule,
            total_steps=steps.total_steps,
            hourly_steps=steps.hourly,
            sleep_reduction=self._sleep_reduction(session, steps),
        )

    def _sleep_reduction(
        self, session: SleepSession | None, steps: StepsDay
    ) -> SleepTimeReduction:
        if session is None:
            return SleepTimeReduction()
        start = max(session.bed_time, steps.day_start)
        end = min(session.wake_time, steps.day_end)
        slots = tuple(
            ReductionSlot(start=s, end=e, steps=steps.steps_between(s, e))
            for s, e in time_slices(start, end, self.reduction_minutes)
        )
        return SleepTimeReduction(sleep_start=start, sleep_end=end, slots=slots)


@runtime_checkable
class PlanStorage(Protocol):
    """Offline storage for weekly packages."""

    async def save_weekly_package(self, package: WeeklyPackage) -> None:
        ...

    async def load_weekly_package(
        self, profile_id: str, week_containing: date | datetime
    ) -> WeeklyPackage | None:
        ...

    async def delete_expired_packages(self, now: datetime, keep_weeks: int = 0) -> int:
        ...


class PlanCache:
    """Keeps the current and next weekly packages for one profile.

    The current package covers the week containing `now`. The next one is
    generated once the current week is more than half over (which includes
    the Sunday 23:00 cadence). When no current package exists, generation
    happens immediately.
    """

    def __init__(
        self,
        profile: Profile,
        storage: PlanStorage,
        planner: WeeklyPlanner | None = None,
        mode: SleepMode | str = SleepMode.DETAILED,
        keep_weeks: int | None = None,
    ):
        self.profile = profile
        self.storage = storage
        self.planner = planner or WeeklyPlanner()
        self.mode = parse_mode(mode)
        self.keep_weeks = (
            keep_weeks if keep_weeks is not None else get_settings().package_retention_weeks
        )
        self.current: WeeklyPackage | None = None
        self.next: WeeklyPackage | None = None
        self.last_error: str | None = None
        self._generating = False

    async def ensure(self, now: datetime) -> list[WeeklyPackage]:
        """Make sure the current (and, when due, next) package exist.

        Returns:
            Packages generated by this call
        """
        generated = []
        if self.current is None or not self.current.covers(now):
            await self._load(now)

        if self.current is None:
            logger.info("No package for week of %s, generating now", week_start_for(now))
            self.current = await self._generate(week_start_for(now), now)
            generated.append(self.current)

        if self.next is None and self._next_due(now):
            self.next = await self._generate(self.current.week_end, now)
            generated.append(self.next)

        await self.storage.delete_expired_packages(now, self.keep_weeks)
        return generated

    async def rollover(self, now: datetime) -> bool:
        """Promote the next package when `now` has left the current week.

        Returns:
            True when the current package changed
        """
        if self.current is not None and self.current.covers(now):
            await self.ensure(now)
            return False
        previous = self.current
        if self.next is not None and self.next.covers(now):
            logger.info("Promoting package for week of %s", self.next.week_start)
            self.current, self.next = self.next, None
        else:
            self.current, self.next = None, None
        await self.ensure(now)
        return self.current is not previous

    async def force_regenerate(self, now: datetime) -> WeeklyPackage:
        """Regenerate the current week's package, replacing the stored one."""
        self.current = await self._generate(week_start_for(now), now)
        if self.next is not None:
            self.next = await self._generate(self.current.week_end, now)
        return self.current

    def today_plan(self, now: datetime) -> DailyPlan | None:
        return self._plan_for(now.date())

    def tomorrow_plan(self, now: datetime) -> DailyPlan | None:
        return self._plan_for(now.date() + timedelta(days=1))

    def status(self, now: datetime) -> CacheStatus:
        if self._generating:
            return CacheStatus.GENERATING
        if self.last_error:
            return CacheStatus.ERROR
        if self.current is None and self.next is None:
            return CacheStatus.EMPTY
        if self.current is not None and self.current.covers(now) and self.next is not None:
            return CacheStatus.READY
        return CacheStatus.PARTIAL

    def _plan_for(self, day: date) -> DailyPlan | None:
        for package in (self.current, self.next):
            if package is not None and package.covers(day):
                return package.get_daily_plan(day)
        return None

    def _next_due(self, now: datetime) -> bool:
        if self.current is None:
            return False
        sunday_cadence = now.weekday() == 6 and now.hour >= 23
        return self.current.elapsed_fraction(now) > 0.5 or sunday_cadence

    async def _load(self, now: datetime) -> None:
        self.current = await self.storage.load_weekly_package(self.profile.id, now)
        self.next = await self.storage.load_weekly_package(
            self.profile.id, week_start_for(now) + timedelta(days=7)
        )

    async def _history_for(self, week_start: date) -> tuple[list[float], list[int]]:
        """Sleep durations and step totals a week is planned from.

        A week planned before keeps its recorded history, so regenerating it
        does not depend on the previous week still being stored.
        """
        for package in (self.current, self.next):
            if package is not None and package.week_start == week_start:
                return list(package.sleep_history), list(package.steps_history)

        if self.current is not None and self.current.week_end == week_start:
            previous = self.current
        else:
            previous = await self.storage.load_weekly_package(
                self.profile.id, week_start - timedelta(days=7)
            )
        sleep_history: list[float] = []
        steps_history: list[int] = []
        if previous is not None:
            for plan in previous.daily_plans:
                if plan.sleep_session is not None:
                    sleep_history.append(plan.sleep_session.duration_hours)
                steps_history.append(plan.total_steps)
        return sleep_history, steps_history

    async def _generate(self, week_start: date, now: datetime) -> WeeklyPackage:
        self._generating = True
        try:
            sleep_history, steps_history = await self._history_for(week_start)
            package = self.planner.plan_week(
                self.profile,
                week_start,
                generated_at=now,
                sleep_history=sleep_history,
                steps_history=steps_history,
                mode=self.mode,
            )
            await self.storage.save_weekly_package(package)
        except Exception as e:
            self.last_error = str(e)
            logger.exception("Package generation failed for week of %s", week_start)
            raise
        finally:
            self._generating = False
        self.last_error = None
        return package
