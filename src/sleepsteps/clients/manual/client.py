"""Manual profile input via interactive questionnaire."""

from uuid import uuid4

import questionary
from questionary import Style

from ...models.profile import (
    ActivityArchetype,
    Profile,
    Sex,
    SleepArchetype,
    infer_activity_archetype,
    infer_sleep_archetype,
)

# Custom style for questionnaire
custom_style = Style(
    [
        ("qmark", "fg:#3f51b5 bold"),
        ("question", "bold"),
        ("answer", "fg:#009688 bold"),
        ("pointer", "fg:#3f51b5 bold"),
        ("highlighted", "fg:#3f51b5 bold"),
        ("instruction", ""),
        ("text", ""),
    ]
)


def _parse_float(value: str | None, default: float) -> float:
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def _parse_int(value: str | None, default: int) -> int:
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


class ProfileQuestionnaire:
    """Interactive questionnaire for describing a simulated person."""

    async def collect_profile(self) -> Profile:
        """Run interactive questionnaire to collect a profile."""
        print("\n=== Simulated Person Questionnaire ===\n")

        profile_id = await questionary.text(
            "Profile id:",
            default=uuid4().hex[:8],
            style=custom_style,
        ).ask_async()

        sex = await questionary.select(
            "Sex:",
            choices=[
                questionary.Choice("Male", Sex.MALE),
                questionary.Choice("Female", Sex.FEMALE),
                questionary.Choice("Other", Sex.OTHER),
            ],
            style=custom_style,
        ).ask_async()

        age = _parse_int(
            await questionary.text("Age:", default="30", style=custom_style).ask_async(),
            30,
        )
        height = _parse_float(
            await questionary.text(
                "Height (cm):", default="170", style=custom_style
            ).ask_async(),
            170.0,
        )
        weight = _parse_float(
            await questionary.text(
                "Weight (kg):", default="68", style=custom_style
            ).ask_async(),
            68.0,
        )

        sleep_baseline = _parse_float(
            await questionary.text(
                "Typical nightly sleep (hours):", default="7.5", style=custom_style
            ).ask_async(),
            7.5,
        )
        steps_baseline = _parse_int(
            await questionary.text(
                "Typical daily steps:", default="7000", style=custom_style
            ).ask_async(),
            7000,
        )

        sleep_archetype = await questionary.select(
            "Sleep pattern:",
            choices=[
                questionary.Choice(
                    f"Infer from baseline ({infer_sleep_archetype(sleep_baseline).get_display_name()})",
                    None,
                ),
            ]
            + [questionary.Choice(a.get_display_name(), a) for a in SleepArchetype],
            style=custom_style,
        ).ask_async()

        activity_archetype = await questionary.select(
            "Activity level:",
            choices=[
                questionary.Choice(
                    f"Infer from baseline ({infer_activity_archetype(steps_baseline).get_display_name()})",
                    None,
                ),
            ]
            + [questionary.Choice(a.get_display_name(), a) for a in ActivityArchetype],
            style=custom_style,
        ).ask_async()

        return Profile(
            id=profile_id or uuid4().hex[:8],
            age=age,
            sex=sex or Sex.OTHER,
            height=height,
            weight=weight,
            sleep_archetype=sleep_archetype or infer_sleep_archetype(sleep_baseline),
            activity_archetype=activity_archetype
            or infer_activity_archetype(steps_baseline),
            sleep_baseline=sleep_baseline,
            steps_baseline=steps_baseline,
        )
