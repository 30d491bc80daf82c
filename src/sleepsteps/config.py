"""
sleepsteps Configuration
========================
Tunables for generation, planning and delivery. Values come from
environment variables prefixed with SLEEPSTEPS_ or a local .env file.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Default data directory (repository root / data)
DEFAULT_DATA_DIR = Path(__file__).parent.parent.parent / "data"


class Settings(BaseSettings):
    """Loaded from environment variables or a .env file."""

    # --- Storage ---
    data_dir: Path = DEFAULT_DATA_DIR
    db_filename: str = "sleepsteps.db"
    # Elapsed weeks kept before packages are deleted
    package_retention_weeks: int = 0

    # --- Logging ---
    log_level: str = "INFO"

    # --- Generation ---
    default_sleep_mode: str = "detailed"  # plain | detailed
    min_daily_steps: int = 800

    # --- Planning ---
    batch_minutes: int = 15
    sleep_reduction_minutes: int = 30
    fallback_delay_minutes: int = 60

    # --- Delivery ---
    max_retry_attempts: int = 3
    retry_delay_minutes: int = 30
    # Sleep imports get a single retry
    sleep_retry_attempts: int = 1
    execution_log_limit: int = 100
    housekeeping_interval_minutes: int = 60

    model_config = {
        "env_prefix": "SLEEPSTEPS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
