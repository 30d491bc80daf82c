"""In-memory health store, used for simulation and tests."""

import logging
from datetime import datetime

from ...errors import AuthorizationError, DeliveryError
from ..base import BaseHealthStore, HealthSample, SamplePredicate, SampleType

logger = logging.getLogger(__name__)


class InMemoryHealthStore(BaseHealthStore):
    """Keeps samples in a list.

    `fail_writes` makes the next N writes raise DeliveryError, which is how
    simulations exercise the executor's retry path.
    """

    def __init__(self, authorized: bool = True, fail_writes: int = 0, **kwargs):
        super().__init__(**kwargs)
        self.samples: list[HealthSample] = []
        self.authorized = authorized
        self.fail_writes = fail_writes
        self.write_calls = 0

    @property
    def store_name(self) -> str:
        return "memory"

    async def request_authorization(self) -> bool:
        return self.authorized

    async def save_samples(self, samples: list[HealthSample]) -> None:
        self.write_calls += 1
        if not self.authorized:
            raise AuthorizationError("Health store access not granted")
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise DeliveryError("save_samples", "simulated write failure")
        self.samples.extend(samples)
        logger.debug("Stored %d samples (%d total)", len(samples), len(self.samples))

    async def query_samples(
        self, sample_type: SampleType, start: datetime, end: datetime
    ) -> list[HealthSample]:
        return sorted(
            (
                s
                for s in self.samples
                if s.sample_type == sample_type and start <= s.start < end
            ),
            key=lambda s: s.start,
        )

    async def delete_samples(
        self, sample_type: SampleType, predicate: SamplePredicate
    ) -> int:
        kept = [
            s for s in self.samples if not (s.sample_type == sample_type and predicate(s))
        ]
        deleted = len(self.samples) - len(kept)
        self.samples = kept
        return deleted
