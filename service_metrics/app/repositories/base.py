"""
Repository contract shared by the metric store backends.

Every backend applies the same upsert rule: a counter update adds to the
stored accumulator, a gauge update replaces the stored value, and the stored
kind tag follows the latest update.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Tuple

from shared.models import MetricValue, WireMetric

MetricValues = Dict[str, MetricValue]


class MetricRepository(ABC):
    """Operations every metric store backend implements."""

    @abstractmethod
    async def save(self, name: str, value: MetricValue) -> None:
        """Upsert one metric. Raises StorageError if the write fails."""

    @abstractmethod
    async def save_all(self, batch: Sequence[WireMetric]) -> None:
        """Upsert a batch as one atomic unit.

        Every element is validated before anything is applied; a failure
        leaves the store unchanged.
        """

    @abstractmethod
    async def find_by_name(self, name: str) -> MetricValue:
        """Return the current value. Raises NotFoundError."""

    @abstractmethod
    async def find_all(self) -> MetricValues:
        """Return an isolated copy of every stored metric."""

    @abstractmethod
    async def restore(self) -> None:
        """Load initial state from the persistence target, if supported."""

    @abstractmethod
    async def flush(self) -> None:
        """Write the full state to the persistence target, if supported."""

    @abstractmethod
    async def ping(self) -> None:
        """Raise if the backend cannot be reached."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""

    async def connect(self) -> None:
        """Open backend resources. Backends without any keep the default."""


def prepare_batch(batch: Sequence[WireMetric]) -> List[Tuple[str, MetricValue]]:
    """Convert a batch to stored values, rejecting it whole on the first invalid element."""
    return [metric.to_value() for metric in batch]
