"""Plan execution commands."""

import asyncio
import signal
from datetime import timedelta

import click

from ..clients.memory.client import InMemoryHealthStore
from ..clients.notifications import CollectingNotifier, LoggingNotifier
from ..clients.sqlite.client import SqliteHealthStore
from ..config import get_settings
from ..db import WeeklyPackageRepository, get_db_path
from ..services.executor import ExecutionStats, ScheduledExecutor
from ..services.planner import PlanCache
from ..services.scheduler import RealClock, Scheduler, VirtualClock
from .base import (
    DATETIME_FORMATS,
    async_command,
    echo_error,
    echo_info,
    echo_success,
    echo_warning,
    ensure_initialized,
    load_profile,
    resolve_now,
)


@click.group()
@click.pass_context
def execute(ctx):
    """Replay weekly packages against a health store."""
    ensure_initialized(ctx)


@execute.command()
@click.option("--profile", "-p", "profile_id", help="Profile id (default: most recent)")
@click.option(
    "--start",
    type=click.DateTime(formats=DATETIME_FORMATS),
    help="Simulated start time (default: now)",
)
@click.option("--days", "-d", type=click.IntRange(1, 60), default=1, show_default=True)
@click.option(
    "--store",
    type=click.Choice(["memory", "sqlite"]),
    default="memory",
    show_default=True,
    help="Where delivered samples go",
)
@click.option("--fail-writes", type=int, default=0, help="Make the first N writes fail")
@click.option("--mode", type=click.Choice(["plain", "detailed"]), help="Sleep fidelity mode")
@click.option("--log-tail", type=int, default=10, show_default=True, help="Log entries to print")
@click.pass_context
@async_command
async def simulate(
    ctx,
    profile_id: str | None,
    start,
    days: int,
    store: str,
    fail_writes: int,
    mode: str | None,
    log_tail: int,
):
    """Run the executor on a virtual clock, as fast as possible."""
    start = resolve_now(start)
    found = await load_profile(ctx, profile_id)
    mode = mode or get_settings().default_sleep_mode

    clock = VirtualClock(start)
    if store == "memory":
        health_store = InMemoryHealthStore(
            fail_writes=fail_writes, device=found.device, clock=clock.now
        )
    else:
        if fail_writes:
            echo_warning("--fail-writes only applies to the memory store")
        health_store = SqliteHealthStore(get_db_path(), device=found.device, clock=clock.now)

    scheduler = Scheduler(clock)
    notifier = CollectingNotifier()
    cache = PlanCache(found, WeeklyPackageRepository(get_db_path()), mode=mode)
    executor = ScheduledExecutor(health_store, scheduler, cache=cache, notifier=notifier, mode=mode)

    if not await executor.start():
        echo_error(f"Authorization failed: {executor.last_error}")
        ctx.exit(1)

    end = start + timedelta(days=days)
    echo_info(f"Simulating {start} -> {end}")
    jobs = await scheduler.advance_to(end)
    executor.stop()

    _print_stats(executor.snapshot())
    click.echo(f"Jobs run: {jobs}")
    click.echo(f"Notifications: {len(notifier.notifications)}")
    if executor.log and log_tail > 0:
        click.echo()
        click.echo("Recent log:")
        for entry in executor.log[-log_tail:]:
            batch = f" [{entry.batch_id}]" if entry.batch_id else ""
            click.echo(
                f"  {entry.timestamp:%Y-%m-%d %H:%M} {entry.entry_type.value:<7}{batch} {entry.message}"
            )
    if isinstance(health_store, InMemoryHealthStore):
        click.echo()
        echo_success(
            f"Store holds {len(health_store.samples)} samples"
            f" ({health_store.write_calls} write calls)"
        )


@execute.command()
@click.option("--profile", "-p", "profile_id", help="Profile id (default: most recent)")
@click.option("--mode", type=click.Choice(["plain", "detailed"]), help="Sleep fidelity mode")
@click.pass_context
@async_command
async def run(ctx, profile_id: str | None, mode: str | None):
    """Run the executor in real time against the local store until interrupted."""
    found = await load_profile(ctx, profile_id)
    mode = mode or get_settings().default_sleep_mode
    scheduler = Scheduler(RealClock())
    cache = PlanCache(found, WeeklyPackageRepository(get_db_path()), mode=mode)
    executor = ScheduledExecutor(
        SqliteHealthStore(get_db_path(), device=found.device),
        scheduler,
        cache=cache,
        notifier=LoggingNotifier(),
        mode=mode,
    )

    if not await executor.start():
        echo_error(f"Authorization failed: {executor.last_error}")
        ctx.exit(1)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    echo_info("Executor running, press Ctrl+C to stop")
    await scheduler.run_forever(stop)
    executor.stop()
    _print_stats(executor.snapshot())


def _print_stats(stats: ExecutionStats) -> None:
    click.echo()
    click.echo(f"Day: {stats.day or '-'}  Status: {stats.status.value}")
    click.echo(
        f"Batches: {stats.completed_batches}/{stats.total_batches} delivered,"
        f" {stats.failed_batches} failed, {stats.retrying_batches} retrying"
        f" ({stats.success_rate:.0%} success)"
    )
    click.echo(f"Steps: {stats.delivered_steps}/{stats.planned_steps}")
    click.echo(f"Sleep imported: {'yes' if stats.sleep_imported else 'no'}")
    if stats.last_error:
        click.echo(f"Last error: {stats.last_error}")
