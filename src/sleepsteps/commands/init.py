"""Initialize project command."""

import click

from ..config import get_settings
from ..db import get_db_path, init_db
from .base import async_command, echo_info, echo_success


@click.command()
@async_command
async def init():
    """Initialize the sleepsteps data directory and database.

    This creates the data directory and the SQLite schema for profiles,
    weekly packages and the local health sample store.
    """
    data_dir = get_settings().data_dir
    echo_info(f"Initializing sleepsteps in {data_dir}")

    db_path = get_db_path(data_dir)
    await init_db(db_path)
    echo_success(f"Database initialized at {db_path}")

    click.echo()
    click.echo("sleepsteps is ready to use!")
    click.echo()
    click.echo("Next steps:")
    click.echo("  1. Create a profile:")
    click.echo("     sleepsteps profile generate          # Random profile")
    click.echo("     sleepsteps profile create -i         # Interactive questionnaire")
    click.echo()
    click.echo("  2. Plan the week and replay it:")
    click.echo("     sleepsteps plan generate")
    click.echo("     sleepsteps execute simulate --days 1")
