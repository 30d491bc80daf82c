"""Sleep session synthesis.

A session is generated per wake date. Its duration follows the profile's
baseline, adjusted for accumulated sleep debt, the weekly rhythm, sleep
pressure, jitter and rare disruptive events. Timing is anchored on the
midpoint of the archetype's bed/wake window.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Sequence

from ..errors import GenerationError
from ..models.profile import Profile
from ..models.sleep import SleepMode, SleepSession, SleepStage, StageKind
from .prng import SeededRandom

logger = logging.getLogger(__name__)

MIN_SLEEP_HOURS = 5.0
MAX_SLEEP_HOURS = 10.0
MAX_TIMING_JITTER_HOURS = 2.0

# Fraction of each cycle spent in deep / rem, early vs late in the night
EARLY_CYCLE_SHARES = (0.25, 0.15)
LATE_CYCLE_SHARES = (0.15, 0.30)

# Gap between plain-mode fragments: (probability, min minutes, max minutes)
FRAGMENT_GAPS = [(0.5, 2, 5), (0.3, 5, 15), (0.2, 15, 30)]
MAX_GAP_SHARE = 0.10


def parse_mode(mode: SleepMode | str) -> SleepMode:
    """Coerce a mode name, failing fast on unknown values."""
    try:
        return SleepMode(mode)
    except ValueError as e:
        raise GenerationError(f"Unknown sleep mode: {mode!r}") from e


def sleep_debt(history: Sequence[float], baseline: float) -> float:
    """Weighted shortfall over the last 7 nights, most recent weighted highest."""
    debt = 0.0
    recent = list(history)[-7:]
    for i, hours in enumerate(reversed(recent)):
        weight = 1.0 - i * 0.1
        debt += max(0.0, baseline - hours) * weight
    return debt


def sleep_pressure(history: Sequence[float], baseline: float) -> float:
    """How far the last 5 nights' average sits below baseline."""
    recent = list(history)[-5:]
    if not recent:
        return 0.0
    return max(0.0, baseline - sum(recent) / len(recent))


class SleepSynthesizer:
    """Generates one SleepSession per day for a profile."""

    def __init__(self, max_jitter_hours: float = MAX_TIMING_JITTER_HOURS):
        self.max_jitter_hours = max_jitter_hours

    def synthesize(
        self,
        profile: Profile,
        day: date,
        history: Sequence[float] = (),
        mode: SleepMode | str = SleepMode.DETAILED,
        now: datetime | None = None,
    ) -> SleepSession | None:
        """Generate the session that ends on the morning of `day`.

        Args:
            profile: Profile to generate for
            day: Wake date of the session
            history: Durations (hours) of the preceding nights, oldest first
            mode: plain or detailed stage resolution
            now: Current time; sessions that have not ended yet are not produced

        Returns:
            The session, or None if it ends after `now`
        """
        mode = parse_mode(mode)
        rng = SeededRandom.for_day(profile.id, day, f"sleep:{mode.value}")

        hours = self.sleep_hours(profile, day, history, rng)
        total_seconds = int(round(hours * 3600))

        if mode is SleepMode.PLAIN:
            offsets = self._plain_offsets(total_seconds, rng)
        else:
            offsets = self._detailed_offsets(total_seconds, rng)
        span_seconds = offsets[-1][2]

        bed_time = self._bed_time(profile, day, span_seconds, rng)
        wake_time = bed_time + timedelta(seconds=span_seconds)
        if now is not None and wake_time > now:
            logger.debug("Sleep for %s ends at %s, after now (%s)", day, wake_time, now)
            return None

        stages = tuple(
            SleepStage(
                kind=kind,
                start=bed_time + timedelta(seconds=start),
                end=bed_time + timedelta(seconds=end),
            )
            for kind, start, end in offsets
        )
        session = SleepSession(
            date=day,
            bed_time=bed_time,
            wake_time=wake_time,
            stages=stages,
            mode=mode,
        )
        logger.debug(
            "Generated %s sleep for %s on %s: %s -> %s (%.2fh, %d stages)",
            mode.value,
            profile.id,
            day,
            bed_time,
            wake_time,
            session.duration_hours,
            len(stages),
        )
        return session

    def sleep_hours(
        self,
        profile: Profile,
        day: date,
        history: Sequence[float],
        rng: SeededRandom,
    ) -> float:
        """Target sleep duration in hours for the night ending on `day`."""
        baseline = profile.effective_sleep_baseline
        lo, hi = profile.sleep_archetype.duration_range
        weekday = day.weekday()
        is_weekend = weekday >= 5  # Friday and Saturday nights

        hours = baseline + rng.next_double(-1.0, 1.0) * (hi - lo) * 0.1

        # Sleep debt compensation
        debt = sleep_debt(history, baseline)
        if debt > 0:
            compensation = min(debt * 0.3, 2.0)
            if is_weekend:
                hours += compensation * rng.next_double(0.8, 1.2)
            else:
                hours += compensation * 0.3

        # Weekly rhythm
        if is_weekend:
            hours += rng.next_double(1.0, 2.5)
            if weekday == 6 and rng.chance(0.4):
                hours -= rng.next_double(0.5, 1.5)
            elif weekday == 5 and rng.chance(0.3):
                hours -= rng.next_double(0.5, 2.0)

        if sleep_pressure(history, baseline) > 1.5:
            hours += rng.next_double(0.3, 1.0)

        hours *= 1 + rng.next_double(-0.10, 0.10)

        if rng.chance(0.08):
            roll = rng.next_double()
            if roll < 0.3:
                hours -= rng.next_double(1.0, 3.0)  # insomnia
            elif roll < 0.6:
                hours += rng.next_double(1.0, 2.5)  # catch-up
            else:
                hours *= rng.next_double(0.7, 1.3)

        if history:
            last = history[-1]
            max_delta = 3.0 if is_weekend else 2.0
            hours = min(last + max_delta, max(last - max_delta, hours))
            if len(history) >= 3:
                recent = sum(history[-3:]) / 3
                if recent < baseline - 1.0:
                    hours = baseline + rng.next_double(0.5, 1.5)

        return max(MIN_SLEEP_HOURS, min(MAX_SLEEP_HOURS, hours))

    def _bed_time(
        self, profile: Profile, day: date, span_seconds: int, rng: SeededRandom
    ) -> datetime:
        archetype = profile.sleep_archetype
        variation = (1.0 - archetype.consistency) * self.max_jitter_hours
        midpoint_hours = archetype.window_midpoint + rng.next_double(-variation, variation)
        midnight = datetime.combine(day, time.min)
        midpoint = midnight + timedelta(seconds=int(round(midpoint_hours * 3600)))
        return midpoint - timedelta(seconds=span_seconds // 2)

    def _detailed_offsets(
        self, total_seconds: int, rng: SeededRandom
    ) -> list[tuple[StageKind, int, int]]:
        """Cycle-based stages covering exactly [0, total_seconds]."""
        latency = rng.next_int(5, 30) * 60
        stages = [(StageKind.AWAKE, 0, latency)]

        cycles = rng.next_int(4, 6)
        asleep = total_seconds - latency
        cursor = latency
        for i in range(cycles):
            length = asleep // cycles
            if i == cycles - 1:
                length = total_seconds - cursor
            deep_share, rem_share = (
                EARLY_CYCLE_SHARES if i < cycles / 2 else LATE_CYCLE_SHARES
            )
            deep = int(length * deep_share * rng.next_double(0.8, 1.2))
            rem = int(length * rem_share * rng.next_double(0.8, 1.2))
            light = length - deep - rem
            for kind, seconds in (
                (StageKind.LIGHT, light),
                (StageKind.DEEP, deep),
                (StageKind.REM, rem),
            ):
                if seconds > 0:
                    stages.append((kind, cursor, cursor + seconds))
                    cursor += seconds

        for _ in range(rng.next_int(1, 5)):
            wake = rng.next_int(5, 30) * 60
            candidates = [
                idx
                for idx, (kind, start, end) in enumerate(stages)
                if kind.is_asleep and end - start > 2 * wake
            ]
            if not candidates:
                continue
            idx = rng.choice(candidates)
            kind, start, end = stages[idx]
            wake_start = start + (end - start) // 2 - wake // 2
            stages[idx : idx + 1] = [
                (kind, start, wake_start),
                (StageKind.AWAKE, wake_start, wake_start + wake),
                (kind, wake_start + wake, end),
            ]
        return stages

    def _plain_offsets(
        self, total_seconds: int, rng: SeededRandom
    ) -> list[tuple[StageKind, int, int]]:
        """A main block and short fragments whose durations sum to total_seconds."""
        main = int(total_seconds * rng.next_double(0.75, 0.85))
        rest = total_seconds - main
        pre_count = rng.next_int(1, 2)
        post_count = rng.next_int(1, 3)
        weights = [rng.next_double(0.5, 1.5) for _ in range(pre_count + post_count)]
        weight_sum = sum(weights)
        sizes = [int(rest * w / weight_sum) for w in weights]
        sizes[-1] += rest - sum(sizes)
        pieces = sizes[:pre_count] + [main] + sizes[pre_count:]

        gaps = []
        for _ in range(len(pieces) - 1):
            lo, hi = rng.weighted_choice([((lo, hi), p) for p, lo, hi in FRAGMENT_GAPS])
            gaps.append(rng.next_int(lo, hi) * 60)
        gap_limit = int(total_seconds * MAX_GAP_SHARE)
        if sum(gaps) > gap_limit:
            scale = gap_limit / sum(gaps)
            gaps = [max(60, int(g * scale)) for g in gaps]

        stages = []
        cursor = 0
        for i, seconds in enumerate(pieces):
            stages.append((StageKind.LIGHT, cursor, cursor + seconds))
            cursor += seconds
            if i < len(gaps):
                cursor += gaps[i]
        return stages
