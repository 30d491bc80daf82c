"""CLI entry point for sleepsteps."""

import logging

import click

from . import __version__
from .commands import execute, history, init, plan, profile
from .config import get_settings


@click.group()
@click.version_option(version=__version__, prog_name="sleepsteps")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """sleepsteps: synthetic sleep and step data, planned a week ahead.

    Generate plausible sleep sessions and step counts for simulated people,
    pre-compute them into weekly packages and replay them into a health
    store on schedule.

    Example usage:

        # Initialize the project
        sleepsteps init

        # Create a profile
        sleepsteps profile generate --seed 42

        # Plan this week and look at it
        sleepsteps plan generate
        sleepsteps plan show

        # Replay a day on a virtual clock
        sleepsteps execute simulate --days 1
    """
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# Register commands
main.add_command(init)
main.add_command(profile)
main.add_command(plan)
main.add_command(history)
main.add_command(execute)


def run():
    """Run the CLI (handles async event loop)."""
    main()


if __name__ == "__main__":
    run()
