"""Tests for data models."""

from datetime import date, datetime, timedelta

import pytest

from sleepsteps.errors import GenerationError
from sleepsteps.generators.prng import SeededRandom
from sleepsteps.models.plan import (
    BatchPriority,
    DailyPlan,
    ImportSchedule,
    StepBatch,
    WeeklyPackage,
    week_start_for,
)
from sleepsteps.models.profile import (
    ActivityArchetype,
    Profile,
    Sex,
    SleepArchetype,
    generate_profile,
    infer_activity_archetype,
    infer_sleep_archetype,
)
from sleepsteps.models.sleep import SleepSession, SleepStage, StageKind
from sleepsteps.models.steps import ActivityKind, StepIncrement, StepsDay


class TestArchetypes:
    """Tests for archetype definitions and inference."""

    def test_normal_window_crosses_midnight(self):
        """Test the normal window starts the evening before."""
        assert SleepArchetype.NORMAL.crosses_midnight
        assert SleepArchetype.NORMAL.window_midpoint == 3.0

    def test_night_owl_window_same_day(self):
        """Test night owls sleep within the wake date."""
        assert not SleepArchetype.NIGHT_OWL.crosses_midnight
        assert SleepArchetype.NIGHT_OWL.window_midpoint == 8.0

    def test_early_bird_midpoint(self):
        """Test the early bird midpoint is 02:00."""
        assert SleepArchetype.EARLY_BIRD.window_midpoint == 2.0

    @pytest.mark.parametrize(
        "hours,expected",
        [
            (5.0, SleepArchetype.IRREGULAR),
            (6.4, SleepArchetype.IRREGULAR),
            (6.5, SleepArchetype.NORMAL),
            (7.4, SleepArchetype.NORMAL),
            (7.5, SleepArchetype.EARLY_BIRD),
            (9.0, SleepArchetype.EARLY_BIRD),
            (9.5, SleepArchetype.NIGHT_OWL),
            (4.0, SleepArchetype.NIGHT_OWL),
        ],
    )
    def test_infer_sleep_archetype(self, hours, expected):
        """Test sleep baselines map to archetypes."""
        assert infer_sleep_archetype(hours) == expected

    @pytest.mark.parametrize(
        "steps,expected",
        [
            (3000, ActivityArchetype.LOW),
            (5000, ActivityArchetype.LOW),
            (5001, ActivityArchetype.MEDIUM),
            (8000, ActivityArchetype.MEDIUM),
            (12000, ActivityArchetype.HIGH),
            (12001, ActivityArchetype.VERY_HIGH),
        ],
    )
    def test_infer_activity_archetype(self, steps, expected):
        """Test step baselines map to archetypes."""
        assert infer_activity_archetype(steps) == expected

    def test_display_names(self):
        """Test display names are readable."""
        assert SleepArchetype.NIGHT_OWL.get_display_name() == "Night Owl"
        assert ActivityArchetype.VERY_HIGH.get_display_name() == "Very High"


class TestProfile:
    """Tests for Profile model."""

    def test_profile_round_trip(self, sample_profile):
        """Test profile serialization."""
        data = sample_profile.to_dict()
        assert data["sleep_archetype"] == "normal"
        assert data["activity_archetype"] == "medium"
        assert data["device"]["serial"] == "F2LTEST01"
        assert Profile.from_dict(data) == sample_profile

    def test_from_baselines_infers_archetypes(self):
        """Test archetypes are derived from baselines."""
        profile = Profile.from_baselines(
            id="p1", age=40, sex=Sex.MALE, height=180, weight=80,
            sleep_baseline=6.0, steps_baseline=11000,
        )
        assert profile.sleep_archetype == SleepArchetype.IRREGULAR
        assert profile.activity_archetype == ActivityArchetype.HIGH

    def test_from_baselines_is_deterministic(self):
        """Test the same baselines always produce the same profile."""
        kwargs = dict(
            id="p1", age=40, sex=Sex.MALE, height=180, weight=80,
            sleep_baseline=8.0, steps_baseline=4000,
        )
        assert Profile.from_baselines(**kwargs) == Profile.from_baselines(**kwargs)

    @pytest.mark.parametrize(
        "field,value",
        [("age", 5), ("height", 50), ("weight", 400), ("sleep_baseline", 15.0), ("steps_baseline", 0)],
    )
    def test_out_of_range_fails_fast(self, sample_profile, field, value):
        """Test malformed profiles raise GenerationError."""
        data = sample_profile.to_dict()
        data[field] = value
        with pytest.raises(GenerationError):
            Profile.from_dict(data)

    def test_unknown_archetype_fails(self, sample_profile):
        """Test unknown archetype names are rejected."""
        data = sample_profile.to_dict()
        data["sleep_archetype"] = "vampire"
        with pytest.raises(GenerationError):
            Profile.from_dict(data)

    def test_empty_id_fails(self, sample_profile):
        """Test an empty id is rejected."""
        data = sample_profile.to_dict()
        data["id"] = "  "
        with pytest.raises(GenerationError):
            Profile.from_dict(data)

    def test_effective_baselines_fall_back_to_archetype(self):
        """Test missing baselines use the archetype range midpoint."""
        profile = Profile(
            id="p2", age=30, sex=Sex.OTHER, height=170, weight=70,
            sleep_archetype=SleepArchetype.NORMAL,
            activity_archetype=ActivityArchetype.LOW,
        )
        assert profile.effective_sleep_baseline == 8.0
        assert profile.effective_steps_baseline == 3000

    def test_generate_profile_reproducible(self):
        """Test random profiles are reproducible from a seed."""
        a = generate_profile(SeededRandom(42))
        b = generate_profile(SeededRandom(42))
        assert a == b
        assert a.device.serial[:3].isalnum()
        assert len(a.device.serial) == 8

    def test_summary_mentions_archetypes(self, sample_profile):
        """Test the summary is human readable."""
        summary = sample_profile.get_summary()
        assert "Normal" in summary
        assert "Medium" in summary


class TestSleepSession:
    """Tests for SleepSession model."""

    def test_duration_and_coverage(self, eight_hour_session):
        """Test duration and stage coverage."""
        assert eight_hour_session.duration_hours == 8.0
        assert eight_hour_session.stage_coverage == pytest.approx(1.0)
        assert eight_hour_session.asleep_hours == pytest.approx(7.75)

    def test_segment_count(self, eight_hour_session):
        """Test contiguous asleep stages count as one segment."""
        assert eight_hour_session.segment_count == 1

    def test_segment_count_with_interruption(self):
        """Test an awake stage splits asleep blocks."""
        t = datetime(2024, 3, 5, 0, 0)
        session = SleepSession(
            date=date(2024, 3, 5),
            bed_time=t,
            wake_time=t + timedelta(hours=3),
            stages=(
                SleepStage(StageKind.LIGHT, t, t + timedelta(hours=1)),
                SleepStage(StageKind.AWAKE, t + timedelta(hours=1), t + timedelta(hours=1, minutes=10)),
                SleepStage(StageKind.DEEP, t + timedelta(hours=1, minutes=10), t + timedelta(hours=3)),
            ),
        )
        assert session.segment_count == 2

    def test_contains_is_half_open(self, eight_hour_session):
        """Test wake time itself is outside the session."""
        assert eight_hour_session.contains(eight_hour_session.bed_time)
        assert not eight_hour_session.contains(eight_hour_session.wake_time)

    def test_overlap(self, eight_hour_session):
        """Test overlap with an hour straddling wake time."""
        overlap = eight_hour_session.overlap(
            datetime(2024, 3, 5, 6, 30), datetime(2024, 3, 5, 7, 30)
        )
        assert overlap == timedelta(minutes=30)

    def test_round_trip(self, eight_hour_session):
        """Test session serialization."""
        assert SleepSession.from_dict(eight_hour_session.to_dict()) == eight_hour_session


class TestStepsDay:
    """Tests for StepsDay model."""

    def test_from_increments(self):
        """Test hourly buckets and total are derived from increments."""
        day = date(2024, 3, 5)
        increments = [
            StepIncrement(datetime(2024, 3, 5, 8, 30), 40),
            StepIncrement(datetime(2024, 3, 5, 8, 5), 10),
            StepIncrement(datetime(2024, 3, 5, 17, 0), 25, ActivityKind.RUNNING),
        ]
        steps = StepsDay.from_increments(day, increments)
        assert steps.total_steps == 75
        assert steps.hourly[8] == 50
        assert steps.hourly[17] == 25
        assert steps.increments[0].timestamp.minute == 5

    def test_steps_between_half_open(self):
        """Test range queries include the start and exclude the end."""
        steps = StepsDay.from_increments(
            date(2024, 3, 5),
            [
                StepIncrement(datetime(2024, 3, 5, 9, 0), 5),
                StepIncrement(datetime(2024, 3, 5, 9, 15), 7),
            ],
        )
        assert steps.steps_between(datetime(2024, 3, 5, 9, 0), datetime(2024, 3, 5, 9, 15)) == 5

    def test_increment_interval(self):
        """Test an increment covers the minute before its timestamp."""
        inc = StepIncrement(datetime(2024, 3, 5, 9, 0), 5)
        assert inc.start == datetime(2024, 3, 5, 8, 59)
        assert inc.end == inc.timestamp


def _plan(day: date, steps: int) -> DailyPlan:
    batch = StepBatch(
        id=f"{day:%Y%m%d}-000",
        scheduled_time=datetime.combine(day, datetime.min.time()) + timedelta(hours=12),
        steps=steps,
        duration=timedelta(minutes=15),
        activity_kind=ActivityKind.WALKING,
        priority=BatchPriority.NORMAL,
    )
    return DailyPlan(
        date=day,
        sleep_session=None,
        step_batches=(batch,),
        import_schedule=ImportSchedule(None, (batch.scheduled_time,), ()),
        total_steps=steps,
    )


class TestWeeklyPackage:
    """Tests for WeeklyPackage model."""

    def test_week_start_for(self):
        """Test any day maps to its Monday."""
        assert week_start_for(date(2024, 3, 4)) == date(2024, 3, 4)
        assert week_start_for(date(2024, 3, 10)) == date(2024, 3, 4)
        assert week_start_for(datetime(2024, 3, 11, 0, 0)) == date(2024, 3, 11)

    def test_valid_package(self, week_start):
        """Test a consistent package validates cleanly."""
        plans = tuple(_plan(week_start + timedelta(days=i), 1000) for i in range(7))
        package = WeeklyPackage(datetime(2024, 3, 3, 23), "p", week_start, plans, 0.0, 7000)
        assert package.validate() == []
        assert package.covers(date(2024, 3, 10))
        assert not package.covers(date(2024, 3, 11))
        assert package.expires_at == datetime(2024, 3, 11)

    def test_invalid_package_reports_issues(self, week_start):
        """Test mismatched totals and missing days are reported."""
        plans = tuple(_plan(week_start + timedelta(days=i), 1000) for i in range(6))
        package = WeeklyPackage(datetime(2024, 3, 3, 23), "p", week_start, plans, 0.0, 9999)
        issues = package.validate()
        assert any("expected 7" in issue for issue in issues)
        assert any("step total" in issue for issue in issues)

    def test_elapsed_fraction(self, week_start):
        """Test the elapsed share of a package's week."""
        plans = tuple(_plan(week_start + timedelta(days=i), 1000) for i in range(7))
        package = WeeklyPackage(datetime(2024, 3, 3), "p", week_start, plans, 0.0, 7000)
        assert package.elapsed_fraction(datetime(2024, 3, 1)) == 0.0
        assert package.elapsed_fraction(datetime(2024, 3, 7, 12)) == pytest.approx(0.5)
        assert package.elapsed_fraction(datetime(2024, 3, 20)) == 1.0

    def test_round_trip(self, week_start):
        """Test package serialization."""
        plans = tuple(_plan(week_start + timedelta(days=i), 1000 + i) for i in range(7))
        package = WeeklyPackage(datetime(2024, 3, 3), "p", week_start, plans, 0.0, 7021)
        assert WeeklyPackage.from_dict(package.to_dict()) == package
