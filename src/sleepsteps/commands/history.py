"""Historical backfill commands."""

from datetime import timedelta

import click

from ..clients.sqlite.client import SqliteHealthStore
from ..config import get_settings
from ..db import get_db_path
from ..errors import AuthorizationError, DeliveryError
from ..services.history import sync_history
from .base import (
    DATETIME_FORMATS,
    async_command,
    echo_error,
    echo_success,
    ensure_initialized,
    format_table,
    load_profile,
    now_option,
    resolve_now,
)


@click.group()
@click.pass_context
def history(ctx):
    """Backfill past days into the local health store."""
    ensure_initialized(ctx)


@history.command()
@click.option("--profile", "-p", "profile_id", help="Profile id (default: most recent)")
@click.option("--days", "-d", type=click.IntRange(1, 366), default=7, show_default=True)
@click.option(
    "--start",
    type=click.DateTime(formats=DATETIME_FORMATS),
    help="First day (default: --days before today)",
)
@click.option("--mode", type=click.Choice(["plain", "detailed"]), help="Sleep fidelity mode")
@now_option
@click.pass_context
@async_command
async def generate(ctx, profile_id: str | None, days: int, start, mode: str | None, now):
    """Generate past days and replace earlier generated samples for them."""
    now = resolve_now(now)
    found = await load_profile(ctx, profile_id)
    first_day = start.date() if start else now.date() - timedelta(days=days - 1)
    store = SqliteHealthStore(get_db_path(), device=found.device)

    try:
        result = await sync_history(
            store,
            found,
            first_day,
            days,
            now,
            mode=mode or get_settings().default_sleep_mode,
        )
    except (AuthorizationError, DeliveryError) as e:
        echo_error(f"Writing history failed: {e}")
        ctx.exit(1)

    rows = [
        [
            d.date.isoformat(),
            f"{d.sleep_session.duration_hours:.1f}h" if d.sleep_session else "-",
            str(d.steps.total_steps),
        ]
        for d in result.days
    ]
    click.echo()
    click.echo(format_table(["Date", "Sleep", "Steps"], rows))
    click.echo()
    if result.deleted_samples:
        click.echo(f"Replaced {result.deleted_samples} previously generated samples")
    echo_success(
        f"Wrote {len(result.days)} days: {result.total_steps} steps,"
        f" {result.total_sleep_hours:.1f}h sleep"
    )
