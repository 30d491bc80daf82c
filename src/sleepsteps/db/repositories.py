"""Data access layer for sleepsteps."""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path

import aiosqlite

from ..models.plan import WeeklyPackage, week_start_for
from ..models.profile import Profile
from .engine import get_db_path

logger = logging.getLogger(__name__)


class ProfileRepository:
    """Repository for simulated profiles."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or get_db_path()

    async def create(self, profile: Profile) -> str:
        """Store a new profile. Raises ValueError if the id is taken."""
        data = profile.to_dict()
        async with aiosqlite.connect(self.db_path) as db:
            try:
                await db.execute(
                    """
                    INSERT INTO profiles
                    (id, age, sex, height, weight, sleep_archetype, activity_archetype,
                     sleep_baseline, steps_baseline, device)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        data["id"],
                        data["age"],
                        data["sex"],
                        data["height"],
                        data["weight"],
                        data["sleep_archetype"],
                        data["activity_archetype"],
                        data["sleep_baseline"],
                        data["steps_baseline"],
                        json.dumps(data["device"]),
                    ),
                )
            except aiosqlite.IntegrityError as e:
                raise ValueError(f"Profile {profile.id} already exists") from e
            await db.commit()
        return profile.id

    async def get(self, profile_id: str) -> Profile | None:
        """Get a profile by ID."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM profiles WHERE id = ?", (profile_id,))
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._row_to_profile(row)

    async def get_latest(self) -> Profile | None:
        """Get the most recently created/updated profile."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM profiles ORDER BY updated_at DESC, rowid DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._row_to_profile(row)

    async def list_all(self) -> list[Profile]:
        """List all profiles."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM profiles ORDER BY updated_at DESC, rowid DESC"
            )
            rows = await cursor.fetchall()
            return [self._row_to_profile(row) for row in rows]

    async def delete(self, profile_id: str) -> None:
        """Delete a profile and its packages."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM weekly_packages WHERE profile_id = ?", (profile_id,))
            await db.execute("DELETE FROM profiles WHERE id = ?", (profile_id,))
            await db.commit()

    def _row_to_profile(self, row: aiosqlite.Row) -> Profile:
        """Convert a database row to a Profile."""
        return Profile.from_dict(
            {
                "id": row["id"],
                "age": row["age"],
                "sex": row["sex"],
                "height": row["height"],
                "weight": row["weight"],
                "sleep_archetype": row["sleep_archetype"],
                "activity_archetype": row["activity_archetype"],
                "sleep_baseline": row["sleep_baseline"],
                "steps_baseline": row["steps_baseline"],
                "device": json.loads(row["device"] or "{}"),
            }
        )


@dataclass
class StorageStats:
    """Summary of stored packages."""

    package_count: int
    oldest_week: date | None
    newest_week: date | None
    total_bytes: int


class WeeklyPackageRepository:
    """Repository for pre-computed weekly packages (offline plan storage)."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or get_db_path()

    async def save_weekly_package(self, package: WeeklyPackage) -> None:
        """Store a package, replacing any existing one for the same week."""
        issues = package.validate()
        if issues:
            raise ValueError(f"Refusing to store invalid package: {'; '.join(issues)}")
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO weekly_packages
                (profile_id, week_start, generated_at, data_version, data)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(profile_id, week_start) DO UPDATE SET
                    generated_at = excluded.generated_at,
                    data_version = excluded.data_version,
                    data = excluded.data
                """,
                (
                    package.profile_id,
                    package.week_start.isoformat(),
                    package.generated_at.isoformat(),
                    package.data_version,
                    json.dumps(package.to_dict()),
                ),
            )
            await db.commit()
        logger.debug("Saved package %s/%s", package.profile_id, package.week_start)

    async def load_weekly_package(
        self, profile_id: str, week_containing: date | datetime
    ) -> WeeklyPackage | None:
        """Load the package for the ISO week containing a date."""
        week_start = week_start_for(week_containing)
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT data FROM weekly_packages WHERE profile_id = ? AND week_start = ?",
                (profile_id, week_start.isoformat()),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._load(row["data"])

    async def list_for_profile(self, profile_id: str) -> list[WeeklyPackage]:
        """All stored packages for a profile, oldest week first."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT data FROM weekly_packages WHERE profile_id = ? ORDER BY week_start",
                (profile_id,),
            )
            rows = await cursor.fetchall()
            packages = [self._load(row["data"]) for row in rows]
            return [p for p in packages if p is not None]

    async def delete_expired_packages(self, now: datetime, keep_weeks: int = 0) -> int:
        """Delete packages whose week ended more than `keep_weeks` weeks ago."""
        cutoff = week_start_for(now) - timedelta(weeks=keep_weeks)
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM weekly_packages WHERE week_start < ?",
                (cutoff.isoformat(),),
            )
            await db.commit()
            deleted = cursor.rowcount
        if deleted:
            logger.info("Deleted %d expired packages (before %s)", deleted, cutoff)
        return deleted

    async def storage_stats(self) -> StorageStats:
        """Count, week range and size of stored packages."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                SELECT COUNT(*), MIN(week_start), MAX(week_start),
                       COALESCE(SUM(LENGTH(data)), 0)
                FROM weekly_packages
                """
            )
            count, oldest, newest, size = await cursor.fetchone()
        return StorageStats(
            package_count=count,
            oldest_week=date.fromisoformat(oldest) if oldest else None,
            newest_week=date.fromisoformat(newest) if newest else None,
            total_bytes=size,
        )

    def _load(self, raw: str) -> WeeklyPackage | None:
        """Decode a stored package, skipping corrupt entries."""
        try:
            package = WeeklyPackage.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Skipping unreadable package: %s", e)
            return None
        issues = package.validate()
        if issues:
            logger.warning(
                "Skipping invalid package %s/%s: %s",
                package.profile_id,
                package.week_start,
                "; ".join(issues),
            )
            return None
        return package
