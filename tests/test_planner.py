"""Tests for weekly planning and the package cache."""

from datetime import date, datetime, timedelta

import pytest

from sleepsteps.errors import GenerationError
from sleepsteps.models.plan import BatchPriority, CacheStatus, WeeklyPackage, week_start_for
from sleepsteps.models.steps import ActivityKind, StepIncrement, StepsDay
from sleepsteps.services.planner import (
    PlanCache,
    PlanStorage,
    WeeklyPlanner,
    determine_activity,
    determine_priority,
    merge_windows,
    time_slices,
)


class DictStorage:
    """Plan storage kept in a dict."""

    def __init__(self):
        self.packages: dict[tuple[str, date], WeeklyPackage] = {}
        self.saved = 0

    async def save_weekly_package(self, package):
        self.packages[(package.profile_id, package.week_start)] = package
        self.saved += 1

    async def load_weekly_package(self, profile_id, week_containing):
        return self.packages.get((profile_id, week_start_for(week_containing)))

    async def delete_expired_packages(self, now, keep_weeks=0):
        cutoff = week_start_for(now) - timedelta(weeks=keep_weeks)
        doomed = [key for key in self.packages if key[1] < cutoff]
        for key in doomed:
            del self.packages[key]
        return len(doomed)


class BrokenPlanner:
    def plan_week(self, *args, **kwargs):
        raise GenerationError("planner exploded")


@pytest.fixture
def planner():
    return WeeklyPlanner(batch_minutes=15, reduction_minutes=30, fallback_delay=timedelta(minutes=5))


@pytest.fixture
def package(planner, sample_profile, week_start):
    return planner.plan_week(sample_profile, week_start, generated_at=datetime(2024, 3, 3, 23))


class TestRules:
    """Tests for batch classification rules."""

    @pytest.mark.parametrize(
        "hour,steps,expected",
        [
            (3, 500, ActivityKind.IDLE),
            (8, 120, ActivityKind.COMMUTING),
            (8, 20, ActivityKind.STANDING),
            (10, 25, ActivityKind.WALKING),
            (12, 15, ActivityKind.STANDING),
            (15, 40, ActivityKind.WALKING),
            (18, 60, ActivityKind.COMMUTING),
            (21, 90, ActivityKind.EXERCISE),
            (23, 200, ActivityKind.IDLE),
            (16, 5, ActivityKind.IDLE),
            (21, 100, ActivityKind.EXERCISE),
            (14, 200, ActivityKind.WALKING),
            (11, 200, ActivityKind.WALKING),
            (22, 30, ActivityKind.STANDING),
            (10, 500, ActivityKind.WALKING),
        ],
    )
    def test_determine_activity(self, hour, steps, expected):
        """Test hour and volume map to an activity."""
        assert determine_activity(hour, steps) == expected

    def test_fallback_volume_rules(self):
        """Test volume decides outside the named windows."""
        assert determine_activity(9, 45) == ActivityKind.WALKING
        assert determine_activity(19, 100) == ActivityKind.COMMUTING
        assert determine_activity(13, 5) == ActivityKind.IDLE
        assert determine_activity(17, 25) == ActivityKind.STANDING

    @pytest.mark.parametrize(
        "hour,expected",
        [
            (7, BatchPriority.HIGH),
            (9, BatchPriority.HIGH),
            (18, BatchPriority.HIGH),
            (19, BatchPriority.HIGH),
            (6, BatchPriority.LOW),
            (22, BatchPriority.LOW),
            (0, BatchPriority.LOW),
            (12, BatchPriority.NORMAL),
            (20, BatchPriority.NORMAL),
        ],
    )
    def test_determine_priority(self, hour, expected):
        """Test commute hours go first and night hours last."""
        assert determine_priority(hour) == expected


class TestSlicing:
    """Tests for time slicing helpers."""

    def test_time_slices_align_to_clock(self):
        """Test slices break at quarter-hour boundaries."""
        start = datetime(2024, 3, 5, 7, 10)
        end = datetime(2024, 3, 5, 7, 50)
        assert time_slices(start, end, 15) == [
            (start, datetime(2024, 3, 5, 7, 15)),
            (datetime(2024, 3, 5, 7, 15), datetime(2024, 3, 5, 7, 30)),
            (datetime(2024, 3, 5, 7, 30), datetime(2024, 3, 5, 7, 45)),
            (datetime(2024, 3, 5, 7, 45), end),
        ]

    def test_time_slices_empty(self):
        """Test an empty range has no slices."""
        moment = datetime(2024, 3, 5, 7)
        assert time_slices(moment, moment, 15) == []

    def test_merge_windows(self):
        """Test overlapping and touching windows merge."""
        t = datetime(2024, 3, 5)
        h = timedelta(hours=1)
        assert merge_windows([(t + 5 * h, t + 6 * h), (t, t + 2 * h), (t + h, t + 3 * h)]) == [
            (t, t + 3 * h),
            (t + 5 * h, t + 6 * h),
        ]
        assert merge_windows([(t, t + h), (t + h, t + 2 * h)]) == [(t, t + 2 * h)]


class TestWeeklyPlanner:
    """Tests for WeeklyPlanner."""

    def test_package_structure(self, package, week_start):
        """Test a package holds seven consecutive, consistent days."""
        assert package.validate() == []
        assert package.week_start == week_start
        assert [p.date for p in package.daily_plans] == [
            week_start + timedelta(days=i) for i in range(7)
        ]
        assert all(p.sleep_session is not None for p in package.daily_plans)

    def test_week_start_normalized(self, planner, sample_profile, week_start):
        """Test any date in the week plans the whole ISO week."""
        wednesday = week_start + timedelta(days=2)
        package = planner.plan_week(sample_profile, wednesday, generated_at=datetime(2024, 3, 3))
        assert package.week_start == week_start

    def test_deterministic(self, planner, package, sample_profile, week_start):
        """Test replanning the same week gives the same package."""
        again = planner.plan_week(sample_profile, week_start, generated_at=datetime(2024, 3, 3, 23))
        assert again == package

    def test_batches_sum_to_total(self, package):
        """Test every step of a day is in exactly one batch."""
        for plan in package.daily_plans:
            assert plan.batch_steps == plan.total_steps
            assert sum(plan.hourly_steps) == plan.total_steps

    def test_batches_ordered_and_inside_day(self, package):
        """Test batches are time ordered and cover the day only."""
        for plan in package.daily_plans:
            day_start = datetime.combine(plan.date, datetime.min.time())
            times = [b.scheduled_time for b in plan.step_batches]
            assert times == sorted(times)
            for batch in plan.step_batches:
                assert batch.steps > 0
                assert day_start <= batch.start < batch.scheduled_time
                assert batch.scheduled_time <= day_start + timedelta(days=1)
                assert batch.duration <= timedelta(minutes=15)

    def test_batch_ids(self, package):
        """Test batch ids are unique and carry the date."""
        for plan in package.daily_plans:
            ids = [b.id for b in plan.step_batches]
            assert len(ids) == len(set(ids))
            assert all(i.startswith(f"{plan.date:%Y%m%d}-") for i in ids)

    def test_sleep_batches_are_low_priority(self, package):
        """Test batches inside a sleep window are marked and deprioritized."""
        for plan in package.daily_plans:
            for batch in plan.step_batches:
                if batch.is_during_sleep:
                    assert batch.priority is BatchPriority.LOW
                    assert plan.sleep_session is not None

    def test_import_schedule(self, package):
        """Test sleep imports at wake time and fallbacks trail each batch."""
        for plan in package.daily_plans:
            schedule = plan.import_schedule
            assert schedule.sleep_import_time == plan.sleep_session.wake_time
            assert list(schedule.step_batch_times) == [b.scheduled_time for b in plan.step_batches]
            assert [f - t for f, t in zip(schedule.fallback_times, schedule.step_batch_times)] == [
                timedelta(minutes=5)
            ] * len(plan.step_batches)

    def test_sleep_reduction_view(self, package):
        """Test the sleep reduction covers the night's part of the day in slots."""
        for plan in package.daily_plans:
            reduction = plan.sleep_reduction
            session = plan.sleep_session
            day_start = datetime.combine(plan.date, datetime.min.time())
            assert reduction.sleep_start == max(session.bed_time, day_start)
            assert reduction.sleep_end == session.wake_time
            for slot in reduction.slots:
                assert slot.end - slot.start <= timedelta(minutes=30)

    def test_build_daily_plan(self, planner, eight_hour_session):
        """Test batches are cut at quarter hours and sleep steps are reported."""
        day = eight_hour_session.date
        steps = StepsDay.from_increments(
            day,
            [
                StepIncrement(datetime(2024, 3, 5, 3, 20), 12),
                StepIncrement(datetime(2024, 3, 5, 8, 5), 60),
                StepIncrement(datetime(2024, 3, 5, 8, 10), 70),
                StepIncrement(datetime(2024, 3, 5, 12, 40), 15),
            ],
        )
        plan = planner.build_daily_plan(eight_hour_session, steps, [eight_hour_session])

        assert [b.id for b in plan.step_batches] == ["20240305-000", "20240305-001", "20240305-002"]
        night, commute, lunch = plan.step_batches
        assert night.scheduled_time == datetime(2024, 3, 5, 3, 30)
        assert night.is_during_sleep
        assert night.activity_kind is ActivityKind.IDLE
        assert night.priority is BatchPriority.LOW
        assert commute.steps == 130
        assert commute.scheduled_time == datetime(2024, 3, 5, 8, 15)
        assert commute.activity_kind is ActivityKind.COMMUTING
        assert commute.priority is BatchPriority.HIGH
        assert lunch.activity_kind is ActivityKind.STANDING
        assert plan.sleep_reduction.total_steps == 12
        assert len(plan.sleep_reduction.slots) == 14
        assert plan.import_schedule.sleep_import_time == eight_hour_session.wake_time

    def test_quiet_sleep_batch_is_idle(self, planner, eight_hour_session):
        """Test a handful of night steps is delivered as idle."""
        steps = StepsDay.from_increments(
            eight_hour_session.date, [StepIncrement(datetime(2024, 3, 5, 2, 5), 4)]
        )
        plan = planner.build_daily_plan(eight_hour_session, steps)
        assert plan.step_batches[0].activity_kind is ActivityKind.IDLE

    def test_plain_mode(self, planner, sample_profile, week_start):
        """Test plain packages are valid too."""
        package = planner.plan_week(
            sample_profile, week_start, generated_at=datetime(2024, 3, 3), mode="plain"
        )
        assert package.validate() == []
        assert all(p.sleep_session.mode.value == "plain" for p in package.daily_plans)


class TestPlanCache:
    """Tests for PlanCache."""

    def test_storage_protocol(self):
        """Test the dict storage satisfies the storage protocol."""
        assert isinstance(DictStorage(), PlanStorage)

    @pytest.mark.asyncio
    async def test_generates_current_week(self, sample_profile, planner):
        """Test the current week is generated immediately when missing."""
        storage = DictStorage()
        cache = PlanCache(sample_profile, storage, planner, keep_weeks=1)
        now = datetime(2024, 3, 4, 10)

        assert cache.status(now) is CacheStatus.EMPTY
        generated = await cache.ensure(now)

        assert [p.week_start for p in generated] == [date(2024, 3, 4)]
        assert cache.next is None
        assert cache.status(now) is CacheStatus.PARTIAL
        assert storage.saved == 1

    @pytest.mark.asyncio
    async def test_next_week_after_midweek(self, sample_profile, planner):
        """Test the next week is generated once the current one is half over."""
        storage = DictStorage()
        cache = PlanCache(sample_profile, storage, planner, keep_weeks=1)
        now = datetime(2024, 3, 7, 13)

        generated = await cache.ensure(now)

        assert [p.week_start for p in generated] == [date(2024, 3, 4), date(2024, 3, 11)]
        assert cache.status(now) is CacheStatus.READY
        assert await cache.ensure(now) == []
        assert storage.saved == 2

    @pytest.mark.asyncio
    async def test_loads_stored_packages(self, sample_profile, planner):
        """Test a fresh cache reuses stored packages instead of regenerating."""
        storage = DictStorage()
        now = datetime(2024, 3, 8, 9)
        await PlanCache(sample_profile, storage, planner, keep_weeks=1).ensure(now)

        cache = PlanCache(sample_profile, storage, planner, keep_weeks=1)
        assert await cache.ensure(now) == []
        assert cache.current.week_start == date(2024, 3, 4)
        assert cache.next.week_start == date(2024, 3, 11)

    @pytest.mark.asyncio
    async def test_today_and_tomorrow(self, sample_profile, planner):
        """Test plans are served across the week boundary."""
        cache = PlanCache(sample_profile, DictStorage(), planner, keep_weeks=1)
        now = datetime(2024, 3, 10, 20)
        await cache.ensure(now)

        assert cache.today_plan(now).date == date(2024, 3, 10)
        assert cache.tomorrow_plan(now).date == date(2024, 3, 11)

    @pytest.mark.asyncio
    async def test_rollover_promotes_next(self, sample_profile, planner):
        """Test crossing into the next week promotes the prepared package."""
        storage = DictStorage()
        cache = PlanCache(sample_profile, storage, planner, keep_weeks=0)
        await cache.ensure(datetime(2024, 3, 10, 20))
        prepared = cache.next

        changed = await cache.rollover(datetime(2024, 3, 11, 0, 30))

        assert changed
        assert cache.current is prepared
        assert cache.next is None
        assert storage.saved == 2
        assert (sample_profile.id, date(2024, 3, 4)) not in storage.packages

    @pytest.mark.asyncio
    async def test_rollover_within_week_is_noop(self, sample_profile, planner):
        """Test rollover inside the current week changes nothing."""
        cache = PlanCache(sample_profile, DictStorage(), planner, keep_weeks=1)
        await cache.ensure(datetime(2024, 3, 5, 8))
        current = cache.current

        assert not await cache.rollover(datetime(2024, 3, 6, 0, 5))
        assert cache.current is current

    @pytest.mark.asyncio
    async def test_next_week_continues_history(self, sample_profile, planner):
        """Test the next package is planned from the stored week's history."""
        storage = DictStorage()
        cache = PlanCache(sample_profile, storage, planner, keep_weeks=1)
        await cache.ensure(datetime(2024, 3, 10, 23, 30))

        first = cache.current
        expected = planner.plan_week(
            sample_profile,
            date(2024, 3, 11),
            generated_at=datetime(2024, 3, 10, 23, 30),
            sleep_history=[p.sleep_session.duration_hours for p in first.daily_plans],
            steps_history=[p.total_steps for p in first.daily_plans],
        )
        assert cache.next == expected

    @pytest.mark.asyncio
    async def test_force_regenerate(self, sample_profile, planner):
        """Test forcing regeneration replaces the current package."""
        storage = DictStorage()
        cache = PlanCache(sample_profile, storage, planner, keep_weeks=1)
        await cache.ensure(datetime(2024, 3, 5, 8))

        regenerated = await cache.force_regenerate(datetime(2024, 3, 5, 9))

        assert regenerated.generated_at == datetime(2024, 3, 5, 9)
        assert storage.packages[(sample_profile.id, date(2024, 3, 4))] is regenerated

    @pytest.mark.asyncio
    async def test_regenerate_after_previous_week_deleted(self, sample_profile, planner):
        """Test regeneration reuses the recorded history once the week before is gone."""
        storage = DictStorage()
        cache = PlanCache(sample_profile, storage, planner, keep_weeks=0)
        await cache.ensure(datetime(2024, 3, 10, 23, 30))
        original = cache.next
        assert len(original.sleep_history) == 7
        assert len(original.steps_history) == 7

        await cache.rollover(datetime(2024, 3, 12, 9))
        assert (sample_profile.id, date(2024, 3, 4)) not in storage.packages

        regenerated = await cache.force_regenerate(datetime(2024, 3, 12, 10))

        assert regenerated.week_start == original.week_start
        assert regenerated.daily_plans == original.daily_plans
        assert regenerated.sleep_history == original.sleep_history
        assert regenerated.steps_history == original.steps_history

    @pytest.mark.asyncio
    async def test_generation_error(self, sample_profile):
        """Test a failed generation is surfaced and recorded."""
        cache = PlanCache(sample_profile, DictStorage(), BrokenPlanner(), keep_weeks=1)
        now = datetime(2024, 3, 5, 8)

        with pytest.raises(GenerationError):
            await cache.ensure(now)

        assert cache.last_error == "planner exploded"
        assert cache.status(now) is CacheStatus.ERROR
