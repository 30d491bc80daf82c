"""Sleep-aware step synthesis.

A day's total is derived from the profile baseline and the preceding night,
allocated to hours along a diurnal curve while sleep hours stay near zero,
reconciled so the hours sum exactly to the total, then expanded into small
timestamped increments.

Ceiling policy: an hour's weighted allocation is capped at 20% of the day's
total (never below HOURLY_CAP_FLOOR). Burst caps only decide how many
increments an hour is split into; they never limit what an hour receives.
"""

import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Iterable, Sequence

from ..models.profile import Profile
from ..models.sleep import SleepMode, SleepSession
from ..models.steps import ActivityKind, StepIncrement, StepsDay
from .prng import SeededRandom
from .sleep import parse_mode

logger = logging.getLogger(__name__)

MIN_TOTAL_STEPS = 200
MAX_TOTAL_STEPS = 25000

# Relative activity by hour of day: commute, lunch and evening peaks
AWAKE_WEIGHTS = [
    0.01, 0.01, 0.01, 0.01, 0.01, 0.02, 0.04, 0.08,
    0.12, 0.10, 0.08, 0.09, 0.11, 0.06, 0.09, 0.08,
    0.09, 0.11, 0.12, 0.08, 0.06, 0.04, 0.03, 0.02,
]

ACTIVE_HOURS = frozenset({7, 8, 9, 12, 13, 18, 19, 20})
BURST_CAP = 50
ACTIVE_BURST_CAP = 150
HOURLY_CAP_SHARE = 0.20
HOURLY_CAP_FLOOR = 300
RESIDUAL_HOURS = 6

# Sleep overlap thresholds
FULL_SLEEP_RATIO = 0.95
MOSTLY_ASLEEP_RATIO = 0.5
AWAKE_RATIO = 0.2

# Night bathroom visits: (probability, min steps, max steps)
NIGHT_EVENT_STEPS = [(0.70, 20, 60), (0.15, 8, 25), (0.10, 60, 120), (0.05, 100, 200)]

# Daily disruptive events: (name, min multiplier, max multiplier)
DAILY_EVENTS = [
    ("illness", 0.2, 0.6),
    ("busy", 0.3, 0.7),
    ("shopping", 1.5, 2.5),
    ("workout", 1.8, 3.0),
    ("travel", 2.0, 4.0),
]


def sleep_quality_factor(session: SleepSession | None) -> float:
    """Activity multiplier from last night's sleep.

    U-shaped in duration (best between 6.5 and 8.5 hours), reduced by
    fragmentation and nudged by how early the person got up.
    """
    if session is None:
        return 1.0
    hours = session.duration_hours
    if hours < 5:
        factor = 0.5 + hours / 5 * 0.3
    elif hours < 6.5:
        factor = 0.8 + (hours - 5) / 1.5 * 0.15
    elif hours <= 8.5:
        factor = 0.95 + (hours - 6.5) / 2 * 0.15
    elif hours <= 10:
        factor = 1.1 - (hours - 8.5) / 1.5 * 0.2
    else:
        factor = 0.9 - (hours - 10) / 2 * 0.3

    segments = session.segment_count
    if segments > 8:
        factor *= 0.85
    elif segments > 6:
        factor *= 0.95

    wake_hour = session.wake_time.hour
    if wake_hour <= 6:
        factor *= 1.1
    elif wake_hour >= 10:
        factor *= 0.9
    return max(0.3, min(2.0, factor))


def sleep_windows(
    day: date, sessions: Iterable[SleepSession]
) -> list[tuple[datetime, datetime]]:
    """Bed-to-wake windows clipped to the calendar day, sorted."""
    day_start = datetime.combine(day, time.min)
    day_end = day_start + timedelta(days=1)
    windows = []
    for session in sessions:
        start = max(session.bed_time, day_start)
        end = min(session.wake_time, day_end)
        if end > start:
            windows.append((start, end))
    return sorted(windows)


def awake_segments(
    start: datetime, end: datetime, windows: Sequence[tuple[datetime, datetime]]
) -> list[tuple[datetime, datetime]]:
    """The parts of [start, end) not covered by any sleep window."""
    segments = []
    cursor = start
    for w_start, w_end in windows:
        if w_end <= cursor or w_start >= end:
            continue
        if w_start > cursor:
            segments.append((cursor, w_start))
        cursor = max(cursor, w_end)
        if cursor >= end:
            break
    if cursor < end:
        segments.append((cursor, end))
    return segments


def hour_sleep_ratios(
    day: date, windows: Sequence[tuple[datetime, datetime]]
) -> list[float]:
    """Fraction of each hour of the day overlapped by sleep."""
    day_start = datetime.combine(day, time.min)
    ratios = []
    for hour in range(24):
        h_start = day_start + timedelta(hours=hour)
        h_end = h_start + timedelta(hours=1)
        covered = timedelta(0)
        for w_start, w_end in windows:
            lo = max(h_start, w_start)
            hi = min(h_end, w_end)
            if hi > lo:
                covered += hi - lo
        ratios.append(min(1.0, covered / timedelta(hours=1)))
    return ratios


def hourly_cap(total: int) -> int:
    return max(int(total * HOURLY_CAP_SHARE), HOURLY_CAP_FLOOR)


def residual_candidates(ratios: Sequence[float], hours_available: int = 24) -> list[int]:
    """Hours that absorb rounding residuals, most active and least asleep first."""
    hours = [h for h in range(hours_available) if ratios[h] < MOSTLY_ASLEEP_RATIO]
    if not hours:
        hours = list(range(hours_available))
    return sorted(
        hours,
        key=lambda h: (
            not 8 <= h <= 20,
            ratios[h] >= AWAKE_RATIO,
            -AWAKE_WEIGHTS[h],
            h,
        ),
    )


def reconcile(
    hourly: list[int],
    target: int,
    ratios: Sequence[float],
    hours_available: int = 24,
) -> None:
    """Adjust `hourly` in place so it sums to `target`."""
    residual = target - sum(hourly)
    candidates = residual_candidates(ratios, hours_available)
    if residual > 0 and candidates:
        cap = hourly_cap(target)
        for limit in (cap, None):
            pool = [h for h in candidates if limit is None or hourly[h] < limit]
            while residual > 0 and pool:
                top = pool[:RESIDUAL_HOURS]
                share, extra = divmod(residual, len(top))
                for i, h in enumerate(top):
                    add = share + (1 if i < extra else 0)
                    if limit is not None:
                        add = min(add, limit - hourly[h])
                    hourly[h] += add
                    residual -= add
                pool = [h for h in pool if limit is None or hourly[h] < limit]
            if residual == 0:
                break

    while residual < 0:
        donors = [h for h in candidates if hourly[h] > 0]
        if not donors:
            donors = [h for h in range(24) if hourly[h] > 0]
        if not donors:
            break
        top = sorted(donors, key=lambda h: (-hourly[h], h))[:RESIDUAL_HOURS]
        share = max(1, -residual // len(top))
        for h in top:
            take = min(hourly[h], share, -residual)
            hourly[h] -= take
            residual += take
            if residual == 0:
                break


def split_evenly(total: int, parts: int) -> list[int]:
    """Split `total` into `parts` integers, remainder on the first ones."""
    share, extra = divmod(total, parts)
    return [share + (1 if i < extra else 0) for i in range(parts)]


def _burst_sizes(steps: int, count: int, rng: SeededRandom) -> list[int]:
    sizes = split_evenly(steps, count)
    for i in range(count - 1):
        movable = min(sizes[i] // 4, sizes[i] - 1)
        if movable > 0:
            delta = rng.next_int(0, movable)
            sizes[i] -= delta
            sizes[i + 1] += delta
    rng.shuffle(sizes)
    return sizes


def _offset_to_time(
    offset: float, segments: Sequence[tuple[datetime, datetime]]
) -> datetime:
    remaining = offset
    for start, end in segments:
        length = (end - start).total_seconds()
        if remaining < length:
            return start + timedelta(seconds=int(remaining))
        remaining -= length
    start, end = segments[-1]
    return end - timedelta(seconds=1)


def _burst_kind(steps: int, rng: SeededRandom, intensity: float) -> ActivityKind:
    if steps < 20:
        return ActivityKind.WALKING if rng.chance(0.7) else ActivityKind.STANDING
    if steps < 50:
        return ActivityKind.WALKING
    return ActivityKind.RUNNING if rng.chance(0.2 * intensity) else ActivityKind.WALKING


def expand_hours(
    day: date,
    hourly: Sequence[int],
    windows: Sequence[tuple[datetime, datetime]],
    rng: SeededRandom,
    events: Sequence[StepIncrement] = (),
    intensity: float = 1.0,
) -> list[StepIncrement]:
    """Turn hourly totals into timestamped increments.

    Each hour's increments sum to its bucket. `events` are pre-placed
    increments already counted in the buckets. Awake hours are split into
    bursts inside the hour's awake minutes; sleep hours get a few tiny
    increments.
    """
    day_start = datetime.combine(day, time.min)
    earliest = day_start + timedelta(minutes=1)
    event_steps = [0] * 24
    for event in events:
        event_steps[event.timestamp.hour] += event.steps
    increments = list(events)
    ratios = hour_sleep_ratios(day, windows)

    for hour in range(24):
        steps = hourly[hour] - event_steps[hour]
        if steps <= 0:
            continue
        h_start = day_start + timedelta(hours=hour)
        h_end = h_start + timedelta(hours=1)
        segments = [
            (max(s, earliest), e)
            for s, e in awake_segments(h_start, h_end, windows)
            if e > earliest and e - max(s, earliest) >= timedelta(minutes=1)
        ]

        if ratios[hour] < MOSTLY_ASLEEP_RATIO and segments:
            cap = ACTIVE_BURST_CAP if hour in ACTIVE_HOURS else BURST_CAP
            awake_seconds = sum((e - s).total_seconds() for s, e in segments)
            count = max(1, min(math.ceil(steps / cap), int(awake_seconds // 60)))
            slot = awake_seconds / count
            for i, size in enumerate(_burst_sizes(steps, count, rng)):
                offset = slot * i + rng.next_double(0.0, slot)
                increments.append(
                    StepIncrement(
                        timestamp=_offset_to_time(offset, segments),
                        steps=size,
                        activity_kind=_burst_kind(size, rng, intensity),
                    )
                )
        else:
            lower = max(h_start, earliest)
            span = int((h_end - lower).total_seconds()) - 1
            remaining = steps
            while remaining > 0:
                size = min(remaining, rng.next_int(1, 20))
                remaining -= size
                increments.append(
                    StepIncrement(
                        timestamp=lower + timedelta(seconds=rng.next_int(0, span)),
                        steps=size,
                        activity_kind=ActivityKind.IDLE,
                    )
                )

    increments.sort(key=lambda inc: inc.timestamp)
    return increments


class StepSynthesizer:
    """Generates one StepsDay per day for a profile."""

    def synthesize(
        self,
        profile: Profile,
        day: date,
        sleep_sessions: Iterable[SleepSession | None] = (),
        history: Sequence[int] = (),
        mode: SleepMode | str = SleepMode.DETAILED,
        now: datetime | None = None,
    ) -> StepsDay:
        """Generate steps for one calendar day.

        Args:
            profile: Profile to generate for
            day: Calendar date
            sleep_sessions: Sessions overlapping the day (the night ending on
                `day` and optionally the one starting that evening)
            history: Daily totals of preceding days, oldest first
            mode: Fidelity mode; plain records skip sleep-time stirring
            now: Current time; only hours that have fully elapsed get steps

        Returns:
            The generated day, not yet passed through compliance
        """
        mode = parse_mode(mode)
        rng = SeededRandom.for_day(profile.id, day, f"steps:{mode.value}")
        sessions = [s for s in sleep_sessions if s is not None]
        night = next((s for s in sessions if s.date == day), None)

        day_start = datetime.combine(day, time.min)
        day_end = day_start + timedelta(days=1)
        windows = sleep_windows(day, sessions)
        ratios = hour_sleep_ratios(day, windows)

        total = self.target_total(profile, day, night, history, rng)
        hours_available = 24
        if now is not None and now < day_end:
            hours_available = max(0, int((now - day_start) // timedelta(hours=1)))
            total = self._elapsed_total(total, ratios, hours_available)

        limit = day_start + timedelta(hours=hours_available)
        events = self.night_events(day, sessions, rng, limit)
        while events and sum(e.steps for e in events) > total // 2:
            events.pop()

        event_total = sum(e.steps for e in events)
        hourly = self.allocate(
            total - event_total, ratios, rng, hours_available, stirring=mode is SleepMode.DETAILED
        )
        for event in events:
            hourly[event.timestamp.hour] += event.steps

        increments = expand_hours(
            day,
            hourly,
            windows,
            rng,
            events=events,
            intensity=profile.activity_archetype.intensity,
        )
        logger.debug(
            "Generated %d steps for %s on %s (%d increments, %d night events)",
            total,
            profile.id,
            day,
            len(increments),
            len(events),
        )
        return StepsDay(
            date=day,
            total_steps=sum(hourly),
            hourly=tuple(hourly),
            increments=tuple(increments),
        )

    def target_total(
        self,
        profile: Profile,
        day: date,
        night: SleepSession | None,
        history: Sequence[int],
        rng: SeededRandom,
    ) -> int:
        """Daily step target before allocation."""
        archetype = profile.activity_archetype
        total = float(profile.effective_steps_baseline)
        total *= sleep_quality_factor(night)

        if day.weekday() >= 5:
            roll = rng.next_double()
            if roll < 0.3:
                total *= rng.next_double(0.4, 0.8)  # sedentary
            elif roll < 0.7:
                total *= rng.next_double(0.8, 1.2) * archetype.weekend_multiplier
            else:
                total *= rng.next_double(1.3, 2.0)  # very active

        total *= 1 + rng.next_double(-0.2, 0.2)

        if rng.chance(0.10):
            name, lo, hi = rng.choice(DAILY_EVENTS)
            total *= rng.next_double(lo, hi)
            logger.debug("Daily event '%s' on %s", name, day)

        recent = list(history)[-7:]
        if recent:
            total = total * 0.85 + (sum(recent) / len(recent)) * 0.15

        low, high = archetype.daily_envelope
        total = max(MIN_TOTAL_STEPS, min(MAX_TOTAL_STEPS, total))
        return int(max(low, min(high, total)))

    def night_events(
        self,
        day: date,
        sessions: Sequence[SleepSession],
        rng: SeededRandom,
        limit: datetime,
    ) -> list[StepIncrement]:
        """Bathroom visits during sleep that fall on `day` before `limit`."""
        day_start = datetime.combine(day, time.min) + timedelta(minutes=1)
        events = []
        for session in sessions:
            if session.duration_hours < 4 and rng.chance(0.7):
                count = 0
            else:
                roll = rng.next_double()
                count = 0 if roll < 0.80 else 1 if roll < 0.95 else 2

            span = session.duration.total_seconds()
            placed: list[datetime] = []
            for _ in range(count):
                for _attempt in range(10):
                    offset = rng.next_double(0.1, 0.9) * span
                    moment = session.bed_time + timedelta(seconds=int(offset))
                    if all(abs(moment - p) >= timedelta(hours=1) for p in placed):
                        placed.append(moment)
                        break

            for moment in placed:
                lo, hi = rng.weighted_choice([((lo, hi), p) for p, lo, hi in NIGHT_EVENT_STEPS])
                steps = rng.next_int(lo, hi)
                if day_start <= moment < limit:
                    events.append(
                        StepIncrement(
                            timestamp=moment,
                            steps=steps,
                            activity_kind=ActivityKind.WALKING,
                        )
                    )
        return events

    def allocate(
        self,
        total: int,
        ratios: Sequence[float],
        rng: SeededRandom,
        hours_available: int = 24,
        stirring: bool = True,
    ) -> list[int]:
        """Distribute `total` over hours, suppressing sleep hours."""
        hourly = [0] * 24
        cap = hourly_cap(total)
        eligible = [h for h in range(hours_available) if ratios[h] < AWAKE_RATIO]
        weight_sum = sum(AWAKE_WEIGHTS[h] for h in eligible) or 1.0

        for hour in range(hours_available):
            ratio = ratios[hour]
            if ratio >= FULL_SLEEP_RATIO:
                if stirring and rng.chance(0.005):
                    hourly[hour] = rng.next_int(1, 2)
            elif ratio >= MOSTLY_ASLEEP_RATIO:
                if stirring and rng.chance(0.01):
                    hourly[hour] = rng.next_int(1, 3)
            elif ratio >= AWAKE_RATIO:
                if rng.chance(0.10):
                    hourly[hour] = rng.next_int(1, 8)
            else:
                share = total * AWAKE_WEIGHTS[hour] / weight_sum
                share *= (1 + rng.next_double(-0.3, 0.3)) * (1 - ratio)
                hourly[hour] = min(cap, int(share))

        reconcile(hourly, total, ratios, hours_available)
        return hourly

    def _elapsed_total(
        self, total: int, ratios: Sequence[float], hours_available: int
    ) -> int:
        eligible = [h for h in range(24) if ratios[h] < AWAKE_RATIO]
        weight_all = sum(AWAKE_WEIGHTS[h] for h in eligible)
        if hours_available <= 0 or weight_all <= 0:
            return 0
        weight_done = sum(AWAKE_WEIGHTS[h] for h in eligible if h < hours_available)
        return int(round(total * weight_done / weight_all))
