"""Priority-queue job scheduler driven by a real or virtual clock."""

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


@runtime_checkable
class Clock(Protocol):
    """Source of the current time for scheduling."""

    def now(self) -> datetime:
        ...


class RealClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now()


class VirtualClock:
    """Manually driven clock for simulations and tests."""

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        if moment < self._now:
            raise ValueError(f"Cannot move clock backwards from {self._now} to {moment}")
        self._now = moment

    def advance(self, delta: timedelta) -> datetime:
        self.set(self._now + delta)
        return self._now


@dataclass(order=True)
class ScheduledJob:
    """A unit of work waiting in the queue, ordered by fire time."""

    fire_time: datetime
    seq: int
    name: str = field(compare=False)
    action: Job = field(compare=False, repr=False)
    group: str = field(compare=False, default="")
    cancelled: bool = field(compare=False, default=False)


class Scheduler:
    """Runs async jobs at their fire times, one at a time, in time order.

    Jobs that raise are logged and dropped; the queue keeps running.
    """

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or RealClock()
        self._queue: list[ScheduledJob] = []
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()

    def schedule(
        self, fire_time: datetime, action: Job, name: str = "", group: str = ""
    ) -> ScheduledJob:
        """Queue `action` to run at `fire_time` (immediately if already past)."""
        job = ScheduledJob(
            fire_time=fire_time,
            seq=next(self._seq),
            name=name or getattr(action, "__name__", "job"),
            action=action,
            group=group,
        )
        heapq.heappush(self._queue, job)
        self._wakeup.set()
        logger.debug("Scheduled %s at %s", job.name, fire_time)
        return job

    def schedule_in(
        self, delay: timedelta, action: Job, name: str = "", group: str = ""
    ) -> ScheduledJob:
        return self.schedule(self.clock.now() + delay, action, name, group)

    def cancel(self, job: ScheduledJob) -> None:
        job.cancelled = True

    def cancel_group(self, group: str) -> int:
        """Cancel every pending job in a group. Returns how many were cancelled."""
        count = 0
        for job in self._queue:
            if job.group == group and not job.cancelled:
                job.cancelled = True
                count += 1
        if count:
            logger.debug("Cancelled %d jobs in group %s", count, group)
        return count

    def pending(self, group: str | None = None) -> list[ScheduledJob]:
        jobs = [j for j in self._queue if not j.cancelled]
        if group is not None:
            jobs = [j for j in jobs if j.group == group]
        return sorted(jobs)

    def next_fire_time(self) -> datetime | None:
        self._discard_cancelled()
        return self._queue[0].fire_time if self._queue else None

    async def run_due(self) -> int:
        """Run every job whose fire time has come. Returns the number run."""
        ran = 0
        while True:
            self._discard_cancelled()
            if not self._queue or self._queue[0].fire_time > self.clock.now():
                return ran
            job = heapq.heappop(self._queue)
            ran += 1
            try:
                await job.action()
            except Exception:
                logger.exception("Job %s failed", job.name)

    async def advance_to(self, target: datetime) -> int:
        """Step a VirtualClock to `target`, running jobs at their fire times."""
        if not isinstance(self.clock, VirtualClock):
            raise TypeError("advance_to requires a VirtualClock")
        ran = 0
        while True:
            fire_time = self.next_fire_time()
            if fire_time is None or fire_time > target:
                break
            if fire_time > self.clock.now():
                self.clock.set(fire_time)
            ran += await self.run_due()
        if target > self.clock.now():
            self.clock.set(target)
        return ran

    async def run_forever(self, stop: asyncio.Event, idle_seconds: float = 60.0) -> None:
        """Real-time loop: sleep until the next job or until stopped."""
        while not stop.is_set():
            await self.run_due()
            fire_time = self.next_fire_time()
            timeout = idle_seconds
            if fire_time is not None:
                timeout = min(idle_seconds, max(0.0, (fire_time - self.clock.now()).total_seconds()))
            self._wakeup.clear()
            waiters = [
                asyncio.ensure_future(stop.wait()),
                asyncio.ensure_future(self._wakeup.wait()),
            ]
            try:
                await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()

    def _discard_cancelled(self) -> None:
        while self._queue and self._queue[0].cancelled:
            heapq.heappop(self._queue)
