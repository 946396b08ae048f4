"""
In-memory metric store with JSON snapshot persistence.
"""

import asyncio
import json
import os
import tempfile
import threading
from contextlib import contextmanager
from typing import Dict, Sequence

from shared.errors import NotFoundError, StorageError
from shared.logging import get_logger
from shared.models import MetricValue, WireMetric

from .base import MetricRepository, MetricValues, prepare_batch


class ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self):
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class InMemoryRepository(MetricRepository):
    """Map-backed store.

    With `write_through` set every successful save is followed by a flush.
    A failed flush is reported to the caller but the in-memory change stays
    applied.
    """

    def __init__(self, store_file: str = "", restore_enabled: bool = False, write_through: bool = False):
        self.store_file = store_file
        self.restore_enabled = restore_enabled
        self.write_through = write_through
        self.logger = get_logger("metrics.repository.inmemory")

        self._lock = ReadWriteLock()
        self._storage: Dict[str, MetricValue] = {}

    async def save(self, name: str, value: MetricValue) -> None:
        with self._lock.write_locked():
            self._upsert(name, value)

        if self.write_through:
            await self.flush()

    async def save_all(self, batch: Sequence[WireMetric]) -> None:
        values = prepare_batch(batch)

        with self._lock.write_locked():
            for name, value in values:
                self._upsert(name, value)

        if self.write_through:
            await self.flush()

    def _upsert(self, name: str, value: MetricValue) -> None:
        stored = self._storage.get(name)
        if stored is None:
            self._storage[name] = value.copy()
        else:
            stored.merge(value)

    async def find_by_name(self, name: str) -> MetricValue:
        with self._lock.read_locked():
            stored = self._storage.get(name)
            if stored is None:
                raise NotFoundError(f"metric {name!r} not found", details={"id": name})
            return stored.copy()

    async def find_all(self) -> MetricValues:
        with self._lock.read_locked():
            return {name: value.copy() for name, value in self._storage.items()}

    async def restore(self) -> None:
        if not self.restore_enabled or not self.store_file:
            return

        try:
            restored = await asyncio.to_thread(self._read_snapshot, self.store_file)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise StorageError(f"restore data: {e}", details={"store_file": self.store_file}) from e

        with self._lock.write_locked():
            self._storage = restored

        self.logger.info("Snapshot restored", store_file=self.store_file, metrics=len(restored))

    async def flush(self) -> None:
        if not self.store_file:
            return

        with self._lock.read_locked():
            snapshot = {name: value.to_snapshot() for name, value in self._storage.items()}

        try:
            await asyncio.to_thread(self._write_snapshot, self.store_file, snapshot)
        except OSError as e:
            raise StorageError(f"save snapshot: {e}", details={"store_file": self.store_file}) from e

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @staticmethod
    def _read_snapshot(path: str) -> Dict[str, MetricValue]:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("snapshot is not a JSON object")
        return {name: MetricValue.from_snapshot(item) for name, item in data.items()}

    @staticmethod
    def _write_snapshot(path: str, snapshot: Dict[str, dict]) -> None:
        directory = os.path.dirname(os.path.abspath(path))
        fd, tmp_path = tempfile.mkstemp(prefix=".snapshot-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f)
                f.write("\n")
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

