"""Profile management commands."""

from datetime import datetime

import click

from ..clients.manual.client import ProfileQuestionnaire
from ..db import ProfileRepository, get_db_path
from ..errors import GenerationError
from ..generators.prng import SeededRandom, derive_seed
from ..models.profile import ActivityArchetype, Profile, Sex, SleepArchetype, generate_profile
from .base import (
    async_command,
    echo_error,
    echo_info,
    echo_success,
    ensure_initialized,
    format_table,
    load_profile,
)


@click.group()
@click.pass_context
def profile(ctx):
    """Manage simulated profiles."""
    ensure_initialized(ctx)


@profile.command()
@click.option("--interactive", "-i", is_flag=True, help="Use the interactive questionnaire")
@click.option("--id", "profile_id", help="Profile id")
@click.option("--age", type=int, default=30, show_default=True)
@click.option("--sex", type=click.Choice([s.value for s in Sex]), default="other", show_default=True)
@click.option("--height", type=float, default=170.0, show_default=True, help="Height in cm")
@click.option("--weight", type=float, default=68.0, show_default=True, help="Weight in kg")
@click.option("--sleep-hours", type=float, default=7.5, show_default=True, help="Typical nightly sleep")
@click.option("--daily-steps", type=int, default=7000, show_default=True, help="Typical daily steps")
@click.option(
    "--sleep-archetype",
    type=click.Choice([a.value for a in SleepArchetype]),
    help="Override the archetype inferred from --sleep-hours",
)
@click.option(
    "--activity-archetype",
    type=click.Choice([a.value for a in ActivityArchetype]),
    help="Override the archetype inferred from --daily-steps",
)
@click.pass_context
@async_command
async def create(
    ctx,
    interactive: bool,
    profile_id: str | None,
    age: int,
    sex: str,
    height: float,
    weight: float,
    sleep_hours: float,
    daily_steps: int,
    sleep_archetype: str | None,
    activity_archetype: str | None,
):
    """Create a profile from explicit values or the questionnaire."""
    try:
        if interactive:
            new_profile = await ProfileQuestionnaire().collect_profile()
        else:
            new_profile = Profile.from_baselines(
                id=profile_id or f"p{datetime.now():%Y%m%d%H%M%S}",
                age=age,
                sex=Sex(sex),
                height=height,
                weight=weight,
                sleep_baseline=sleep_hours,
                steps_baseline=daily_steps,
            )
            if sleep_archetype or activity_archetype:
                data = new_profile.to_dict()
                data["sleep_archetype"] = sleep_archetype or data["sleep_archetype"]
                data["activity_archetype"] = activity_archetype or data["activity_archetype"]
                new_profile = Profile.from_dict(data)
    except GenerationError as e:
        echo_error(f"Invalid profile: {e}")
        ctx.exit(1)

    await _save(ctx, new_profile)


@profile.command()
@click.option("--seed", type=int, help="Seed for a reproducible profile")
@click.option("--id", "profile_id", help="Profile id (default: derived from the seed)")
@click.pass_context
@async_command
async def generate(ctx, seed: int | None, profile_id: str | None):
    """Create a random plausible profile."""
    if seed is None:
        seed = derive_seed("profile", datetime.now(), datetime.now().isoformat())
    new_profile = generate_profile(SeededRandom(seed), profile_id)
    await _save(ctx, new_profile)


@profile.command(name="list")
@async_command
async def list_profiles():
    """List all profiles."""
    repo = ProfileRepository(get_db_path())
    profiles = await repo.list_all()

    if not profiles:
        echo_info("No profiles found. Create one with 'sleepsteps profile generate'")
        return

    headers = ["ID", "Sleep", "Activity", "Age", "Sex", "Device"]
    rows = [
        [
            p.id,
            p.sleep_archetype.get_display_name(),
            p.activity_archetype.get_display_name(),
            str(p.age),
            p.sex.value,
            p.device.model,
        ]
        for p in profiles
    ]
    click.echo()
    click.echo(format_table(headers, rows))
    click.echo()
    click.echo(f"Total: {len(profiles)} profile(s)")


@profile.command()
@click.argument("profile_id", required=False)
@click.pass_context
@async_command
async def show(ctx, profile_id: str | None):
    """Show a profile (default: most recent)."""
    found = await load_profile(ctx, profile_id)
    click.echo()
    click.echo(found.get_summary())


@profile.command()
@click.argument("profile_id")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
@click.pass_context
@async_command
async def delete(ctx, profile_id: str, force: bool):
    """Delete a profile and its stored packages."""
    repo = ProfileRepository(get_db_path())
    found = await repo.get(profile_id)
    if found is None:
        echo_error(f"Profile {profile_id} not found")
        ctx.exit(1)

    if not force and not click.confirm(f"Delete profile {profile_id}?"):
        echo_info("Cancelled")
        return

    await repo.delete(profile_id)
    echo_success(f"Profile {profile_id} deleted")


async def _save(ctx: click.Context, new_profile: Profile) -> None:
    repo = ProfileRepository(get_db_path())
    try:
        await repo.create(new_profile)
    except ValueError as e:
        echo_error(str(e))
        ctx.exit(1)

    echo_success(f"Profile saved with ID: {new_profile.id}")
    click.echo()
    click.echo(new_profile.get_summary())
