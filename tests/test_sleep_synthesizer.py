"""Tests for sleep session synthesis."""

from dataclasses import replace
from datetime import date, datetime, timedelta

import pytest

from sleepsteps.errors import GenerationError
from sleepsteps.generators.sleep import (
    MAX_SLEEP_HOURS,
    MIN_SLEEP_HOURS,
    SleepSynthesizer,
    parse_mode,
    sleep_debt,
    sleep_pressure,
)
from sleepsteps.models.profile import SleepArchetype
from sleepsteps.models.sleep import SleepMode, StageKind


def _week(start: date) -> list[date]:
    return [start + timedelta(days=i) for i in range(7)]


class TestHelpers:
    """Tests for debt, pressure and mode parsing."""

    def test_no_debt_when_rested(self):
        """Test nights above baseline add no debt."""
        assert sleep_debt([8.0, 9.0, 8.5], 7.5) == 0.0

    def test_recent_nights_weigh_more(self):
        """Test the most recent shortfall counts fully."""
        assert sleep_debt([7.5, 6.5], 7.5) == pytest.approx(1.0)
        assert sleep_debt([6.5, 7.5], 7.5) == pytest.approx(0.9)

    def test_pressure_uses_recent_average(self):
        """Test pressure is the shortfall of the last five nights' mean."""
        assert sleep_pressure([], 8.0) == 0.0
        assert sleep_pressure([6.0, 6.0, 6.0, 6.0, 6.0], 8.0) == pytest.approx(2.0)

    def test_parse_mode(self):
        """Test mode names are accepted and unknown names fail fast."""
        assert parse_mode("plain") is SleepMode.PLAIN
        assert parse_mode(SleepMode.DETAILED) is SleepMode.DETAILED
        with pytest.raises(GenerationError):
            parse_mode("verbose")


class TestSleepSynthesizer:
    """Tests for SleepSynthesizer."""

    def test_deterministic(self, sample_profile, week_start):
        """Test the same inputs give the same session."""
        synth = SleepSynthesizer()
        a = synth.synthesize(sample_profile, week_start, [7.0, 8.0])
        b = synth.synthesize(sample_profile, week_start, [7.0, 8.0])
        assert a == b

    def test_different_days_differ(self, sample_profile, week_start):
        """Test consecutive days get different sessions."""
        synth = SleepSynthesizer()
        a = synth.synthesize(sample_profile, week_start)
        b = synth.synthesize(sample_profile, week_start + timedelta(days=1))
        assert a.bed_time.time() != b.bed_time.time() or a.duration != b.duration

    @pytest.mark.parametrize("mode", [SleepMode.PLAIN, SleepMode.DETAILED])
    def test_duration_bounds(self, sample_profile, week_start, mode):
        """Test requested sleep stays within the clamp range."""
        synth = SleepSynthesizer()
        history: list[float] = []
        for offset in range(28):
            day = week_start + timedelta(days=offset)
            session = synth.synthesize(sample_profile, day, history[-7:], mode)
            asleep = sum(s.duration.total_seconds() for s in session.stages) / 3600
            assert MIN_SLEEP_HOURS - 0.01 <= asleep <= MAX_SLEEP_HOURS + 0.01
            history.append(session.duration_hours)

    def test_detailed_stages_are_contiguous(self, sample_profile, week_start):
        """Test detailed stages tile bed to wake without gaps."""
        session = SleepSynthesizer().synthesize(sample_profile, week_start, mode="detailed")
        assert session.stages[0].start == session.bed_time
        assert session.stages[-1].end == session.wake_time
        for prev, cur in zip(session.stages, session.stages[1:]):
            assert prev.end == cur.start
        assert session.stage_coverage == pytest.approx(1.0)

    def test_detailed_starts_with_latency(self, sample_profile, week_start):
        """Test a detailed night starts awake and includes every stage kind."""
        session = SleepSynthesizer().synthesize(sample_profile, week_start, mode="detailed")
        kinds = {s.kind for s in session.stages}
        assert session.stages[0].kind is StageKind.AWAKE
        assert {StageKind.LIGHT, StageKind.DEEP, StageKind.REM} <= kinds

    def test_plain_mode_is_light_fragments(self, sample_profile, week_start):
        """Test plain nights are a main block plus a few fragments."""
        session = SleepSynthesizer().synthesize(sample_profile, week_start, mode="plain")
        assert session.mode is SleepMode.PLAIN
        assert all(s.kind is StageKind.LIGHT for s in session.stages)
        assert 3 <= len(session.stages) <= 6
        longest = max(s.duration for s in session.stages)
        asleep = sum((s.duration for s in session.stages), timedelta(0))
        assert longest / asleep >= 0.74
        assert session.stage_coverage >= 0.85

    def test_normal_timing_near_window(self, sample_profile, week_start):
        """Test a normal sleeper's midpoint stays within jitter of 03:00."""
        synth = SleepSynthesizer()
        for day in _week(week_start):
            session = synth.synthesize(sample_profile, day)
            midpoint = session.bed_time + session.duration / 2
            anchor = datetime.combine(day, datetime.min.time()) + timedelta(hours=3)
            assert abs(midpoint - anchor) <= timedelta(hours=0.6, minutes=1)

    def test_night_owl_wakes_late(self, sample_profile, week_start):
        """Test night owls wake late in the morning."""
        owl = replace(sample_profile, sleep_archetype=SleepArchetype.NIGHT_OWL)
        for day in _week(week_start):
            session = SleepSynthesizer().synthesize(owl, day)
            assert session.wake_time.date() == day
            assert session.wake_time.hour >= 9

    def test_session_in_future_is_withheld(self, sample_profile, week_start):
        """Test nothing is produced for a night that has not ended."""
        synth = SleepSynthesizer()
        session = synth.synthesize(sample_profile, week_start)
        before = session.wake_time - timedelta(minutes=1)
        assert synth.synthesize(sample_profile, week_start, now=before) is None
        assert synth.synthesize(sample_profile, week_start, now=session.wake_time) == session

    def test_average_tracks_baseline(self, sample_profile, week_start):
        """Test a month of nights averages near the baseline."""
        synth = SleepSynthesizer()
        history: list[float] = []
        for offset in range(28):
            session = synth.synthesize(
                sample_profile, week_start + timedelta(days=offset), history[-7:]
            )
            history.append(session.duration_hours)
        average = sum(history) / len(history)
        assert 6.5 <= average <= 9.5

    def test_modes_use_independent_streams(self, sample_profile, week_start):
        """Test plain and detailed nights are generated from separate seeds."""
        synth = SleepSynthesizer()
        plain = synth.synthesize(sample_profile, week_start, mode="plain")
        detailed = synth.synthesize(sample_profile, week_start, mode="detailed")
        assert plain.stages != detailed.stages
