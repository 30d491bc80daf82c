"""Weekly plan commands."""

from datetime import timedelta

import click

from ..compliance import ComplianceValidator
from ..config import get_settings
from ..db import WeeklyPackageRepository, get_db_path
from ..errors import GenerationError
from ..models.plan import week_start_for
from ..models.steps import StepsDay
from ..services.executor import sub_increments
from ..services.planner import PlanCache
from .base import (
    DATETIME_FORMATS,
    async_command,
    echo_error,
    echo_info,
    echo_success,
    echo_warning,
    ensure_initialized,
    format_table,
    load_profile,
    now_option,
    resolve_now,
)

MODE_CHOICE = click.Choice(["plain", "detailed"])


@click.group()
@click.pass_context
def plan(ctx):
    """Generate and inspect weekly packages."""
    ensure_initialized(ctx)


@plan.command()
@click.option("--profile", "-p", "profile_id", help="Profile id (default: most recent)")
@click.option("--mode", type=MODE_CHOICE, help="Sleep fidelity mode")
@click.option("--force", "-f", is_flag=True, help="Regenerate even if a package exists")
@now_option
@click.pass_context
@async_command
async def generate(ctx, profile_id: str | None, mode: str | None, force: bool, now):
    """Make sure this week's (and, when due, next week's) package exists."""
    now = resolve_now(now)
    found = await load_profile(ctx, profile_id)
    cache = PlanCache(
        found,
        WeeklyPackageRepository(get_db_path()),
        mode=mode or get_settings().default_sleep_mode,
    )
    try:
        if force:
            await cache.ensure(now)
            generated = [await cache.force_regenerate(now)]
        else:
            generated = await cache.ensure(now)
    except GenerationError as e:
        echo_error(f"Generation failed: {e}")
        ctx.exit(1)

    if not generated:
        echo_info("Packages are up to date")
    for package in generated:
        echo_success(package.get_summary())
    click.echo(f"Cache status: {cache.status(now).value}")


@plan.command()
@click.option("--profile", "-p", "profile_id", help="Profile id (default: most recent)")
@click.option(
    "--day",
    type=click.DateTime(formats=DATETIME_FORMATS),
    help="Show batches for this day",
)
@now_option
@click.pass_context
@async_command
async def show(ctx, profile_id: str | None, day, now):
    """Show the package covering a day (default: today)."""
    now = resolve_now(now)
    found = await load_profile(ctx, profile_id)
    target = day or now
    package = await WeeklyPackageRepository(get_db_path()).load_weekly_package(found.id, target)
    if package is None:
        echo_warning(f"No package for the week of {week_start_for(target)}")
        ctx.exit(1)

    click.echo()
    click.echo(package.get_summary())
    click.echo(f"Generated: {package.generated_at}")
    click.echo()

    rows = []
    for daily in package.daily_plans:
        session = daily.sleep_session
        rows.append(
            [
                daily.date.strftime("%a %Y-%m-%d"),
                f"{session.bed_time:%H:%M}" if session else "-",
                f"{session.wake_time:%H:%M}" if session else "-",
                f"{session.duration_hours:.1f}h" if session else "-",
                str(daily.total_steps),
                str(len(daily.step_batches)),
            ]
        )
    click.echo(format_table(["Date", "Bed", "Wake", "Sleep", "Steps", "Batches"], rows))

    if day is not None:
        daily = package.get_daily_plan(day)
        click.echo()
        click.echo(f"Batches for {daily.date}:")
        batch_rows = [
            [
                b.id,
                f"{b.start:%H:%M}-{b.scheduled_time:%H:%M}",
                str(b.steps),
                b.activity_kind.value,
                b.priority.value,
                "yes" if b.is_during_sleep else "",
            ]
            for b in daily.step_batches
        ]
        click.echo(
            format_table(["ID", "Window", "Steps", "Activity", "Priority", "Asleep"], batch_rows)
        )
        click.echo()
        click.echo(
            f"Steps inside the sleep window: {daily.sleep_reduction.total_steps}"
            f" across {len(daily.sleep_reduction.slots)} slots"
        )

        increments = [inc for b in daily.step_batches for inc in sub_increments(b)]
        report = ComplianceValidator(get_settings().min_daily_steps).quality_report(
            daily.sleep_session, StepsDay.from_increments(daily.date, increments)
        )
        verdict = "acceptable" if report.is_acceptable else "questionable"
        click.echo(f"Quality score: {report.score}/100 ({verdict})")
        for finding in report.findings:
            click.echo(f"  - {finding}")


@plan.command()
@click.option("--profile", "-p", "profile_id", help="Profile id (default: most recent)")
@now_option
@click.pass_context
@async_command
async def status(ctx, profile_id: str | None, now):
    """Show stored packages for a profile."""
    now = resolve_now(now)
    found = await load_profile(ctx, profile_id)
    repo = WeeklyPackageRepository(get_db_path())
    current = await repo.load_weekly_package(found.id, now)
    upcoming = await repo.load_weekly_package(
        found.id, week_start_for(now) + timedelta(days=7)
    )
    stats = await repo.storage_stats()

    click.echo(f"Profile: {found.id}")
    click.echo(f"Current week: {current.get_summary() if current else 'missing'}")
    if current is not None:
        click.echo(f"  {current.elapsed_fraction(now):.0%} elapsed, expires {current.expires_at}")
        click.echo(f"Next week: {upcoming.get_summary() if upcoming else 'not generated yet'}")
    click.echo(
        f"Stored packages: {stats.package_count} "
        f"({stats.oldest_week or '-'} to {stats.newest_week or '-'}, {stats.total_bytes} bytes)"
    )


@plan.command()
@click.option(
    "--keep-weeks",
    type=int,
    default=None,
    help="Elapsed weeks to keep (default from settings)",
)
@now_option
@async_command
async def clean(keep_weeks: int | None, now):
    """Delete expired packages."""
    now = resolve_now(now)
    if keep_weeks is None:
        keep_weeks = get_settings().package_retention_weeks
    deleted = await WeeklyPackageRepository(get_db_path()).delete_expired_packages(now, keep_weeks)
    echo_success(f"Deleted {deleted} expired package(s)")
