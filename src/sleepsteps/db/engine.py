"""Database engine setup and initialization."""

from pathlib import Path

import aiosqlite

from ..config import get_settings


def get_db_path(data_dir: Path | None = None) -> Path:
    """Get the database file path."""
    settings = get_settings()
    if data_dir is None:
        data_dir = settings.data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / settings.db_filename


async def init_db(db_path: Path | None = None) -> None:
    """Initialize the database schema."""
    if db_path is None:
        db_path = get_db_path()

    async with aiosqlite.connect(db_path) as db:
        # Simulated people
        await db.execute("""
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                age INTEGER NOT NULL,
                sex TEXT NOT NULL,
                height REAL NOT NULL,
                weight REAL NOT NULL,
                sleep_archetype TEXT NOT NULL,
                activity_archetype TEXT NOT NULL,
                sleep_baseline REAL,
                steps_baseline INTEGER,
                device TEXT DEFAULT '{}',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Pre-computed weekly packages (one JSON document per profile/week)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS weekly_packages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                profile_id TEXT NOT NULL,
                week_start TEXT NOT NULL,
                generated_at TEXT NOT NULL,
                data_version TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (profile_id, week_start)
            )
        """)

        # Local health data sink
        await db.execute("""
            CREATE TABLE IF NOT EXISTS health_samples (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sample_type TEXT NOT NULL,
                start_time TEXT NOT NULL,
                end_time TEXT NOT NULL,
                value TEXT NOT NULL,
                metadata TEXT DEFAULT '{}',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Create indexes for common queries
        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_weekly_packages_profile
            ON weekly_packages(profile_id, week_start)
        """)
        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_health_samples_type_start
            ON health_samples(sample_type, start_time)
        """)

        await db.commit()
