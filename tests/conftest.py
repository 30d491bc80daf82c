"""Pytest configuration and fixtures."""

import tempfile
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest

from sleepsteps.models.profile import ActivityArchetype, DeviceInfo, Profile, Sex, SleepArchetype
from sleepsteps.models.sleep import SleepMode, SleepSession, SleepStage, StageKind

# A Monday
WEEK_START = date(2024, 3, 4)


@pytest.fixture
def temp_db_path():
    """Create a temporary database path."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def week_start():
    return WEEK_START


@pytest.fixture
def sample_profile():
    """A normal sleeper with medium activity."""
    return Profile(
        id="test-user",
        age=34,
        sex=Sex.FEMALE,
        height=168.0,
        weight=63.5,
        sleep_archetype=SleepArchetype.NORMAL,
        activity_archetype=ActivityArchetype.MEDIUM,
        sleep_baseline=7.5,
        steps_baseline=7000,
        device=DeviceInfo(model="iPhone15,2", serial="F2LTEST01", uuid="uuid-test"),
    )


@pytest.fixture
def eight_hour_session():
    """23:00 to 07:00 ending on the Tuesday of the test week."""
    day = WEEK_START + timedelta(days=1)
    bed = datetime(2024, 3, 4, 23, 0)
    wake = datetime(2024, 3, 5, 7, 0)
    return SleepSession(
        date=day,
        bed_time=bed,
        wake_time=wake,
        stages=(
            SleepStage(StageKind.AWAKE, bed, bed + timedelta(minutes=15)),
            SleepStage(StageKind.LIGHT, bed + timedelta(minutes=15), datetime(2024, 3, 5, 2, 0)),
            SleepStage(StageKind.DEEP, datetime(2024, 3, 5, 2, 0), datetime(2024, 3, 5, 4, 0)),
            SleepStage(StageKind.REM, datetime(2024, 3, 5, 4, 0), wake),
        ),
        mode=SleepMode.DETAILED,
    )
