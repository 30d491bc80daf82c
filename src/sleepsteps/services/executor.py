"""Replays daily plans against a health data store at their scheduled times."""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Iterable

from ..clients.base import HealthDataStore, SampleType, generated_sessions
from ..clients.notifications import LoggingNotifier, Notification, NotificationEvent, Notifier
from ..config import get_settings
from ..errors import AuthorizationError, DeliveryError
from ..generators.sleep import parse_mode
from ..models.plan import DailyPlan, StepBatch
from ..models.sleep import SleepMode
from ..models.steps import StepIncrement, StepsDay
from .planner import PlanCache
from .scheduler import ScheduledJob, Scheduler

logger = logging.getLogger(__name__)

HOUSEKEEPING_GROUP = "housekeeping"


class ExecutionStatus(str, Enum):
    """Delivery state of the loaded day."""

    IDLE = "idle"
    NO_SCHEDULE = "no_schedule"
    SCHEDULED = "scheduled"
    SLEEP_IMPORTING = "sleep_importing"
    SLEEP_IMPORTED = "sleep_imported"
    STEP_IMPORTING = "step_importing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ERROR = "error"


class LogEntryType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ExecutorEvent(str, Enum):
    """Events pushed to subscribers."""

    STATUS_CHANGED = "status_changed"
    PLAN_LOADED = "plan_loaded"
    SLEEP_IMPORTED = "sleep_imported"
    BATCH_DELIVERED = "batch_delivered"
    BATCH_FAILED = "batch_failed"
    DAY_COMPLETED = "day_completed"
    ROLLOVER = "rollover"


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    entry_type: LogEntryType
    message: str
    batch_id: str | None = None


@dataclass(frozen=True)
class ExecutionStats:
    """Point-in-time view of the executor's state."""

    day: date | None
    status: ExecutionStatus
    total_batches: int
    completed_batches: int
    failed_batches: int
    retrying_batches: int
    planned_steps: int
    delivered_steps: int
    sleep_imported: bool
    last_execution: datetime | None
    next_execution: datetime | None
    log_count: int
    last_error: str | None = None

    @property
    def pending_batches(self) -> int:
        return self.total_batches - self.completed_batches - self.failed_batches

    @property
    def success_rate(self) -> float:
        finished = self.completed_batches + self.failed_batches
        if finished == 0:
            return 0.0
        return self.completed_batches / finished


Subscriber = Callable[[ExecutorEvent, ExecutionStats], None]


def sub_increments(batch: StepBatch) -> list[StepIncrement]:
    """Split a batch into roughly one-minute increments.

    Steps are split evenly; the remainder goes to the first increments.
    """
    seconds = batch.duration.total_seconds()
    count = max(1, math.ceil(seconds / 60))
    slot = batch.duration / count
    base, remainder = divmod(batch.steps, count)
    increments = []
    for i in range(count):
        steps = base + (1 if i < remainder else 0)
        if steps <= 0:
            continue
        increments.append(
            StepIncrement(
                timestamp=batch.start + slot * (i + 1),
                steps=steps,
                activity_kind=batch.activity_kind,
                duration_seconds=max(1, round(slot.total_seconds())),
            )
        )
    return increments


class ScheduledExecutor:
    """Arms delivery jobs for one day at a time and tracks their outcome.

    All state here is ephemeral: nothing is written back into the plan.
    Hosts read `snapshot()` or `subscribe()` to events instead of
    inspecting attributes.
    """

    def __init__(
        self,
        store: HealthDataStore,
        scheduler: Scheduler,
        cache: PlanCache | None = None,
        notifier: Notifier | None = None,
        mode: SleepMode | str = SleepMode.DETAILED,
        max_attempts: int | None = None,
        retry_delay: timedelta | None = None,
        sleep_retry_attempts: int | None = None,
        log_limit: int | None = None,
        housekeeping_interval: timedelta | None = None,
    ):
        settings = get_settings()
        self.store = store
        self.scheduler = scheduler
        self.cache = cache
        self.notifier = notifier or LoggingNotifier()
        self.mode = parse_mode(mode)
        self.max_attempts = (
            max_attempts if max_attempts is not None else settings.max_retry_attempts
        )
        self.retry_delay = retry_delay or timedelta(minutes=settings.retry_delay_minutes)
        self.sleep_retry_attempts = (
            sleep_retry_attempts
            if sleep_retry_attempts is not None
            else settings.sleep_retry_attempts
        )
        self.log_limit = log_limit or settings.execution_log_limit
        self.housekeeping_interval = housekeeping_interval or timedelta(
            minutes=settings.housekeeping_interval_minutes
        )

        self.plan: DailyPlan | None = None
        self.status = ExecutionStatus.IDLE
        self.log: list[LogEntry] = []
        self.last_error: str | None = None
        self.last_execution: datetime | None = None
        self._delivered: set[str] = set()
        self._failed: set[str] = set()
        self._retries: dict[str, int] = {}
        self._retry_jobs: dict[str, ScheduledJob] = {}
        self._sleep_imported = False
        self._sleep_retries = 0
        self._sleep_done = False
        self._subscribers: list[Subscriber] = []

    @property
    def now(self) -> datetime:
        return self.scheduler.clock.now()

    @property
    def group(self) -> str:
        return f"day:{self.plan.date.isoformat()}" if self.plan else "day:none"

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self) -> bool:
        """Authorize, load today's plan and start housekeeping.

        Returns:
            False when the store refused authorization
        """
        try:
            granted = await self.store.request_authorization()
        except AuthorizationError as e:
            granted = False
            self.last_error = str(e)
        if not granted:
            self._fail_authorization("Health store authorization was denied")
            return False

        if self.cache is not None:
            await self.cache.ensure(self.now)
            await self.resume(self.cache.today_plan(self.now))
        self._schedule_housekeeping()
        return True

    def stop(self) -> None:
        self.scheduler.cancel_group(self.group)
        self.scheduler.cancel_group(HOUSEKEEPING_GROUP)
        self._retry_jobs.clear()

    async def resume(self, plan: DailyPlan | None) -> None:
        """Load a plan, first marking what the store already holds for its day.

        Delivery state lives in memory only, so after a restart the store's
        own generated samples are the record of which batches and which sleep
        import already went out.
        """
        if plan is None or (self.plan is not None and self.plan.date == plan.date):
            self.load_plan(plan)
            return
        try:
            delivered, sleep_written = await self._stored_progress(plan)
        except DeliveryError as e:
            logger.warning("Could not read back %s from the store: %s", plan.date, e)
            delivered, sleep_written = set(), False
        self.load_plan(plan, delivered=delivered, sleep_written=sleep_written)

    async def _stored_progress(self, plan: DailyPlan) -> tuple[set[str], bool]:
        """Batches whose window already holds generated steps, and whether sleep is in."""
        delivered: set[str] = set()
        batches = sorted(plan.step_batches, key=lambda b: b.scheduled_time)
        if batches:
            samples = await self.store.query_samples(
                SampleType.STEP_COUNT,
                batches[0].start - timedelta(minutes=1),
                batches[-1].scheduled_time,
            )
            ends = [s.end for s in samples if s.is_generated]
            for batch in batches:
                if any(batch.start < end <= batch.scheduled_time for end in ends):
                    delivered.add(batch.id)

        sleep_written = False
        session = plan.sleep_session
        if session is not None:
            samples = await self.store.query_samples(
                SampleType.SLEEP_ANALYSIS, session.bed_time, session.wake_time
            )
            matches = generated_sessions([plan.date])
            sleep_written = any(matches(s) for s in samples)
        return delivered, sleep_written

    def load_plan(
        self,
        plan: DailyPlan | None,
        delivered: Iterable[str] = (),
        sleep_written: bool = False,
    ) -> None:
        """Arm jobs for a plan, cancelling those of the previous one.

        Reloading the same date keeps delivery state so nothing is sent twice.
        `delivered` and `sleep_written` mark work already found in the store.
        """
        self.scheduler.cancel_group(self.group)
        self._retry_jobs.clear()

        same_day = plan is not None and self.plan is not None and plan.date == self.plan.date
        if not same_day:
            self._delivered = set()
            self._failed = set()
            self._retries = {}
            self._sleep_imported = False
            self._sleep_retries = 0
            self._sleep_done = False
        self._delivered.update(delivered)
        if sleep_written:
            self._sleep_imported = True
            self._sleep_done = True
        self.plan = plan

        if plan is None:
            self._set_status(ExecutionStatus.NO_SCHEDULE)
            self._log(LogEntryType.WARNING, "No plan available for today")
            return

        if plan.sleep_session is not None and not self._sleep_done:
            when = plan.import_schedule.sleep_import_time or plan.sleep_session.wake_time
            self.scheduler.schedule(when, self._import_sleep, name="sleep-import", group=self.group)
        else:
            self._sleep_done = True

        armed = 0
        for batch in plan.step_batches:
            if batch.id in self._delivered or batch.id in self._failed:
                continue
            self.scheduler.schedule(
                batch.scheduled_time,
                self._batch_job(batch),
                name=f"batch-{batch.id}",
                group=self.group,
            )
            armed += 1

        self._set_status(ExecutionStatus.SCHEDULED)
        self._log(
            LogEntryType.INFO,
            f"Loaded plan for {plan.date}: {armed} batches, {plan.total_steps} steps",
        )
        self._emit(ExecutorEvent.PLAN_LOADED)
        self._notify(NotificationEvent.SYNC_STARTED, f"Sync scheduled for {plan.date}")
        self._check_completed()

    # ------------------------------------------------------------------
    # Delivery

    async def _import_sleep(self, retry: bool = True) -> None:
        plan = self.plan
        if plan is None or plan.sleep_session is None or self._sleep_done:
            return
        self._set_status(ExecutionStatus.SLEEP_IMPORTING)
        try:
            await self._write(self.store.write_sleep_session(plan.sleep_session, self.mode), "sleep import")
        except AuthorizationError as e:
            self._fail_authorization(str(e))
            return
        except DeliveryError as e:
            self.last_execution = self.now
            if retry and self._sleep_retries < self.sleep_retry_attempts:
                self._sleep_retries += 1
                self._log(LogEntryType.WARNING, f"Sleep import failed, retrying: {e}")
                self.scheduler.schedule_in(
                    self.retry_delay, self._import_sleep, name="sleep-retry", group=self.group
                )
            else:
                self._sleep_done = True
                self.last_error = str(e)
                self._log(LogEntryType.ERROR, f"Sleep import failed permanently: {e}")
                self._notify(NotificationEvent.SYNC_FAILED, f"Sleep import failed for {plan.date}")
                self._check_completed()
            return

        self.last_execution = self.now
        self._sleep_imported = True
        self._sleep_done = True
        self._set_status(ExecutionStatus.SLEEP_IMPORTED)
        self._log(
            LogEntryType.SUCCESS,
            f"Imported {plan.sleep_session.duration_hours:.1f}h of sleep for {plan.date}",
        )
        self._emit(ExecutorEvent.SLEEP_IMPORTED)
        self._check_completed()

    def _batch_job(self, batch: StepBatch):
        async def job() -> None:
            await self.deliver_batch(batch)

        return job

    async def deliver_batch(self, batch: StepBatch, retry: bool = True) -> bool:
        """Write one batch. Returns True when it was delivered by this call.

        With `retry` off a failed write is recorded as a permanent failure
        instead of arming another attempt.
        """
        if batch.id in self._delivered:
            logger.debug("Batch %s already delivered", batch.id)
            return False
        self._retry_jobs.pop(batch.id, None)
        self._set_status(ExecutionStatus.STEP_IMPORTING)

        by_day: dict[date, list[StepIncrement]] = {}
        for inc in sub_increments(batch):
            by_day.setdefault(inc.start.date(), []).append(inc)
        try:
            for day, increments in sorted(by_day.items()):
                await self._write(
                    self.store.write_steps_day(StepsDay.from_increments(day, increments)),
                    f"batch {batch.id}",
                )
        except AuthorizationError as e:
            self._fail_authorization(str(e))
            return False
        except DeliveryError as e:
            self._batch_failed(batch, e, retry=retry)
            return False

        self.last_execution = self.now
        self._delivered.add(batch.id)
        self._failed.discard(batch.id)
        self._log(LogEntryType.SUCCESS, f"Delivered {batch.steps} steps", batch.id)
        self._emit(ExecutorEvent.BATCH_DELIVERED)
        self._check_completed()
        return True

    def _batch_failed(self, batch: StepBatch, error: Exception, retry: bool = True) -> None:
        self.last_execution = self.now
        retries = self._retries.get(batch.id, 0)
        if retry and retries < self.max_attempts:
            self._retries[batch.id] = retries + 1
            self._log(
                LogEntryType.WARNING,
                f"Delivery failed ({error}), retry {retries + 1}/{self.max_attempts}"
                f" in {self.retry_delay}",
                batch.id,
            )
            self._retry_jobs[batch.id] = self.scheduler.schedule_in(
                self.retry_delay,
                self._batch_job(batch),
                name=f"retry-{batch.id}",
                group=self.group,
            )
        else:
            self._failed.add(batch.id)
            self.last_error = str(error)
            self._log(
                LogEntryType.ERROR,
                f"Giving up after {retries} retries: {error}",
                batch.id,
            )
            self._notify(
                NotificationEvent.SYNC_FAILED, f"Batch {batch.id} could not be delivered"
            )
            self._check_completed()
        self._emit(ExecutorEvent.BATCH_FAILED)

    async def _write(self, call, operation: str) -> None:
        if not await call:
            raise DeliveryError(operation, "store reported failure")

    # ------------------------------------------------------------------
    # Housekeeping

    def _schedule_housekeeping(self) -> None:
        now = self.now
        interval = self.housekeeping_interval
        midnight = datetime.combine(now.date(), datetime.min.time())
        next_tick = midnight + ((now - midnight) // interval + 1) * interval
        self.scheduler.schedule(
            next_tick, self.housekeeping, name="housekeeping", group=HOUSEKEEPING_GROUP
        )

    async def housekeeping(self) -> None:
        """Periodic tick: roll over to a new day and re-arm stale retries."""
        try:
            now = self.now
            if self.plan is None or self.plan.date != now.date():
                await self.rollover(now)
                return
            self._rearm_stale_retries(now)
            if self.cache is not None:
                await self.cache.ensure(now)
        finally:
            self._schedule_housekeeping()

    async def rollover(self, now: datetime) -> None:
        """Finish what is due from the old day, then switch to today's plan.

        Batches still waiting on a retry get one last attempt here; their
        timers belong to the old day and are cancelled with it.
        """
        old = self.plan
        if old is not None and old.date != now.date():
            for batch in old.step_batches:
                if (
                    batch.scheduled_time <= now
                    and batch.id not in self._delivered
                    and batch.id not in self._failed
                ):
                    job = self._retry_jobs.get(batch.id)
                    if job is not None:
                        self.scheduler.cancel(job)
                    await self.deliver_batch(batch, retry=False)
            if not self._sleep_done and old.sleep_session is not None:
                await self._import_sleep(retry=False)
        if self.cache is not None:
            await self.cache.rollover(now)
            plan = self.cache.today_plan(now)
        else:
            plan = None
        self._log(LogEntryType.INFO, f"Day rollover to {now.date()}")
        await self.resume(plan)
        self._emit(ExecutorEvent.ROLLOVER)

    def _rearm_stale_retries(self, now: datetime) -> None:
        """Run overdue retries now, replacing their queued jobs."""
        for batch_id, job in list(self._retry_jobs.items()):
            if job.fire_time < now and batch_id not in self._delivered and self.plan:
                batch = self.plan.get_batch(batch_id)
                if batch is not None:
                    self.scheduler.cancel(job)
                    logger.info("Re-arming retry for %s", batch_id)
                    self._retry_jobs[batch_id] = self.scheduler.schedule(
                        now, self._batch_job(batch), name=f"retry-{batch_id}", group=self.group
                    )

    # ------------------------------------------------------------------
    # Manual actions

    async def execute_remaining(self) -> int:
        """Deliver every due batch now, ahead of pending timers.

        Returns:
            Number of batches delivered
        """
        if self.plan is None:
            return 0
        now = self.now
        if not self._sleep_done and self.plan.sleep_session is not None:
            if self.plan.sleep_session.wake_time <= now:
                await self._import_sleep()
        delivered = 0
        for batch in self.plan.step_batches:
            if batch.scheduled_time > now or batch.id in self._delivered:
                continue
            if batch.id in self._failed:
                continue
            if await self.deliver_batch(batch):
                delivered += 1
        return delivered

    async def retry_failed(self) -> int:
        """Give permanently failed batches a fresh set of attempts."""
        if self.plan is None:
            return 0
        failed = [b for b in self.plan.step_batches if b.id in self._failed]
        delivered = 0
        for batch in failed:
            self._failed.discard(batch.id)
            self._retries.pop(batch.id, None)
            if await self.deliver_batch(batch):
                delivered += 1
        if self.status is ExecutionStatus.ERROR and not self._failed:
            self.last_error = None
            self._set_status(ExecutionStatus.SCHEDULED)
        return delivered

    def skip_today(self) -> None:
        """Cancel the rest of today's deliveries."""
        cancelled = self.scheduler.cancel_group(self.group)
        self._retry_jobs.clear()
        self._set_status(ExecutionStatus.SKIPPED)
        self._log(LogEntryType.INFO, f"Skipped today, {cancelled} jobs cancelled")

    # ------------------------------------------------------------------
    # Observation

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for events. Returns a function that unsubscribes."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def snapshot(self) -> ExecutionStats:
        plan = self.plan
        delivered_steps = 0
        if plan is not None:
            delivered_steps = sum(b.steps for b in plan.step_batches if b.id in self._delivered)
        pending = self.scheduler.pending(self.group)
        return ExecutionStats(
            day=plan.date if plan else None,
            status=self.status,
            total_batches=len(plan.step_batches) if plan else 0,
            completed_batches=len(self._delivered),
            failed_batches=len(self._failed),
            retrying_batches=len(self._retry_jobs),
            planned_steps=plan.total_steps if plan else 0,
            delivered_steps=delivered_steps,
            sleep_imported=self._sleep_imported,
            last_execution=self.last_execution,
            next_execution=pending[0].fire_time if pending else None,
            log_count=len(self.log),
            last_error=self.last_error,
        )

    def is_delivered(self, batch_id: str) -> bool:
        return batch_id in self._delivered

    def is_failed(self, batch_id: str) -> bool:
        return batch_id in self._failed

    def retry_count(self, batch_id: str) -> int:
        return self._retries.get(batch_id, 0)

    # ------------------------------------------------------------------
    # Internals

    def _check_completed(self) -> None:
        plan = self.plan
        if plan is None or self.status in (ExecutionStatus.SKIPPED, ExecutionStatus.ERROR):
            return
        finished = len(self._delivered) + len(self._failed)
        if self._sleep_done and finished >= len(plan.step_batches):
            if self.status is ExecutionStatus.COMPLETED:
                return
            self._set_status(ExecutionStatus.COMPLETED)
            self._log(
                LogEntryType.SUCCESS if not self._failed else LogEntryType.WARNING,
                f"Day {plan.date} complete: {len(self._delivered)} delivered,"
                f" {len(self._failed)} failed",
            )
            self._emit(ExecutorEvent.DAY_COMPLETED)
            if not self._failed:
                self._notify(NotificationEvent.SYNC_SUCCEEDED, f"Sync complete for {plan.date}")

    def _fail_authorization(self, message: str) -> None:
        self.scheduler.cancel_group(self.group)
        self._retry_jobs.clear()
        self.last_error = message
        self._set_status(ExecutionStatus.ERROR)
        self._log(LogEntryType.ERROR, f"Authorization failed: {message}")
        self._notify(NotificationEvent.SYNC_FAILED, message)

    def _set_status(self, status: ExecutionStatus) -> None:
        if status is self.status:
            return
        logger.debug("Status %s -> %s", self.status.value, status.value)
        self.status = status
        self._emit(ExecutorEvent.STATUS_CHANGED)

    def _log(self, entry_type: LogEntryType, message: str, batch_id: str | None = None) -> None:
        self.log.append(LogEntry(self.now, entry_type, message, batch_id))
        level = {
            LogEntryType.ERROR: logging.ERROR,
            LogEntryType.WARNING: logging.WARNING,
        }.get(entry_type, logging.INFO)
        logger.log(level, "%s%s", f"[{batch_id}] " if batch_id else "", message)
        self._cleanup_log()

    def _cleanup_log(self) -> None:
        """Keep only the most recent entries."""
        if len(self.log) > self.log_limit:
            del self.log[: len(self.log) - self.log_limit]

    def _emit(self, event: ExecutorEvent) -> None:
        if not self._subscribers:
            return
        stats = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(event, stats)
            except Exception:
                logger.exception("Subscriber failed handling %s", event.value)

    def _notify(self, event: NotificationEvent, message: str) -> None:
        day = self.plan.date if self.plan else None
        try:
            self.notifier.notify(Notification(event, message, day, self.now))
        except Exception:
            logger.exception("Notifier failed for %s", event.value)
