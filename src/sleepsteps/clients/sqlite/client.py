"""SQLite-backed local health store."""

import json
import logging
from datetime import datetime
from pathlib import Path

import aiosqlite

from ...db.engine import get_db_path
from ...errors import DeliveryError
from ..base import BaseHealthStore, HealthSample, SamplePredicate, SampleType

logger = logging.getLogger(__name__)


class SqliteHealthStore(BaseHealthStore):
    """Stores samples in the health_samples table of the local database."""

    def __init__(self, db_path: Path | None = None, **kwargs):
        super().__init__(**kwargs)
        self.db_path = db_path or get_db_path()

    @property
    def store_name(self) -> str:
        return "sqlite"

    async def request_authorization(self) -> bool:
        return True

    async def save_samples(self, samples: list[HealthSample]) -> None:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.executemany(
                    """
                    INSERT INTO health_samples
                    (sample_type, start_time, end_time, value, metadata)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            s.sample_type.value,
                            s.start.isoformat(),
                            s.end.isoformat(),
                            json.dumps(s.value),
                            json.dumps(s.metadata),
                        )
                        for s in samples
                    ],
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise DeliveryError("save_samples", str(e)) from e
        logger.debug("Stored %d samples in %s", len(samples), self.db_path)

    async def query_samples(
        self, sample_type: SampleType, start: datetime, end: datetime
    ) -> list[HealthSample]:
        rows = await self._fetch(
            """
            SELECT * FROM health_samples
            WHERE sample_type = ? AND start_time >= ? AND start_time < ?
            ORDER BY start_time
            """,
            (sample_type.value, start.isoformat(), end.isoformat()),
        )
        return [self._row_to_sample(row) for row in rows]

    async def delete_samples(
        self, sample_type: SampleType, predicate: SamplePredicate
    ) -> int:
        rows = await self._fetch(
            "SELECT * FROM health_samples WHERE sample_type = ?",
            (sample_type.value,),
        )
        doomed = [row["id"] for row in rows if predicate(self._row_to_sample(row))]
        if not doomed:
            return 0
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.executemany(
                    "DELETE FROM health_samples WHERE id = ?",
                    [(sample_id,) for sample_id in doomed],
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise DeliveryError("delete_samples", str(e)) from e
        return len(doomed)

    async def count(self) -> dict[str, int]:
        """Number of stored samples per type."""
        rows = await self._fetch(
            "SELECT sample_type, COUNT(*) AS n FROM health_samples GROUP BY sample_type",
            (),
        )
        return {row["sample_type"]: row["n"] for row in rows}

    async def _fetch(self, query: str, params: tuple) -> list[aiosqlite.Row]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(query, params)
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise DeliveryError("query_samples", str(e)) from e

    def _row_to_sample(self, row: aiosqlite.Row) -> HealthSample:
        return HealthSample(
            sample_type=SampleType(row["sample_type"]),
            start=datetime.fromisoformat(row["start_time"]),
            end=datetime.fromisoformat(row["end_time"]),
            value=json.loads(row["value"]),
            metadata=json.loads(row["metadata"]),
        )
