"""
Periodic snapshot flushing for the metric server.
"""

import asyncio
import os
import signal
from typing import Callable, Optional

from shared.logging import get_logger
from shared.metrics import ServiceInstrumentation

from .repositories import MetricRepository


def terminate_process(error: Exception) -> None:
    """Ask the server process to shut down in an orderly way."""
    os.kill(os.getpid(), signal.SIGTERM)


class SnapshotScheduler:
    """Flushes the repository on a fixed period, independent of traffic.

    A failed flush is fatal: `on_failure` is called once and the loop ends.
    """

    def __init__(
        self,
        repository: MetricRepository,
        interval_seconds: float,
        on_failure: Callable[[Exception], None] = terminate_process,
        instrumentation: Optional[ServiceInstrumentation] = None
    ):
        if interval_seconds <= 0:
            raise ValueError("snapshot interval must be positive")
        self.repository = repository
        self.interval_seconds = interval_seconds
        self.on_failure = on_failure
        self.instrumentation = instrumentation
        self.logger = get_logger("metrics.scheduler")

        self.task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self):
        """Start the flush loop."""
        self.running = True
        self.task = asyncio.create_task(self._run())
        self.logger.info("Snapshot scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self):
        """Stop the flush loop."""
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

        self.logger.info("Snapshot scheduler stopped")

    async def _run(self):
        while self.running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.repository.flush()
            except Exception as e:
                self.logger.error("Snapshot flush failed, shutting down", error=str(e))
                self._record("error")
                self.running = False
                self.on_failure(e)
                return
            self._record("ok")

    def _record(self, outcome: str):
        if self.instrumentation is not None:
            self.instrumentation.record_snapshot(outcome)
