"""
Report collected metrics to the metric server.
"""

import asyncio
from typing import Dict, List, Optional

import httpx

from shared.codec import encode_batch, encode_metric, encode_path
from shared.logging import get_logger
from shared.models import MetricValue

from .collector import AgentMetrics


class MetricsSender:
    """Sends agent metrics in one of three modes.

    `plain` and `json` send one independent request per metric, `jsonbatch`
    sends the whole snapshot in one request. Failures are logged, never
    retried and never raised.
    """

    def __init__(
        self,
        metrics: AgentMetrics,
        address: str,
        mode: str = "jsonbatch",
        key: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.metrics = metrics
        self.mode = mode
        self.key = key
        self.timeout = timeout
        self.base_url = address if "://" in address else f"http://{address}"
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self.logger = get_logger("agent.sender")

    async def send(self) -> None:
        """Snapshot the metrics once and transmit them."""
        values = self.metrics.snapshot_for_send()
        if self.mode == "jsonbatch":
            await self._send_batch(values)
        else:
            await self._fan_out(values)

    async def close(self) -> None:
        await self.client.aclose()

    async def _send_batch(self, values: Dict[str, MetricValue]) -> None:
        try:
            response = await self.client.post("/updates/", json=encode_batch(values, self.key))
            if response.status_code != 200:
                self.logger.warning("Batch rejected", status_code=response.status_code, body=response.text)
        except httpx.HTTPError as e:
            self.logger.warning("Batch send failed", error=str(e))

    async def _fan_out(self, values: Dict[str, MetricValue]) -> None:
        tasks: List[asyncio.Task] = [
            asyncio.create_task(self._send_one(name, value)) for name, value in values.items()
        ]
        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=self.timeout)
        for task in pending:
            task.cancel()
        if pending:
            self.logger.warning("Abandoned unfinished sends", pending=len(pending))

    async def _send_one(self, name: str, value: MetricValue) -> None:
        try:
            if self.mode == "plain":
                response = await self.client.post(
                    f"/update/{encode_path(name, value)}",
                    headers={"Content-Type": "text/plain"}
                )
            else:
                response = await self.client.post("/update/", json=encode_metric(name, value, self.key))
            if response.status_code != 200:
                self.logger.warning("Metric rejected", name=name, status_code=response.status_code)
        except httpx.HTTPError as e:
            self.logger.warning("Metric send failed", name=name, error=str(e))
