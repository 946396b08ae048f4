"""
Metric agent for the Runtime Metrics system.
"""

import asyncio
import signal
from typing import Awaitable, Callable, Dict, Optional, Sequence

from shared.config import AgentConfig, get_agent_config
from shared.logging import configure_logging, get_logger

from .collector import AgentMetrics, read_host_stats, read_runtime_stats
from .sender import MetricsSender


class MetricsAgent:
    """Runs two samplers and one sender until stopped.

    The tasks share only the metrics container. The stop event is checked
    between ticks, so a request in flight is never interrupted by it.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        metrics: Optional[AgentMetrics] = None,
        sender: Optional[MetricsSender] = None,
        runtime_reader: Callable[[], Dict[str, float]] = read_runtime_stats,
        host_reader: Callable[[], Dict[str, float]] = read_host_stats
    ):
        self.config = config or AgentConfig()
        self.metrics = metrics or AgentMetrics()
        self.sender = sender or MetricsSender(
            self.metrics,
            self.config.address,
            mode=self.config.mode,
            key=self.config.key,
            timeout=self.config.report_interval_seconds
        )
        self.runtime_reader = runtime_reader
        self.host_reader = host_reader
        self.logger = get_logger("agent.runner")
        self.stop_event = asyncio.Event()

    async def sample_runtime(self):
        self.metrics.update_gauges(self.runtime_reader())

    async def sample_host(self):
        # psutil blocks while measuring CPU utilization
        self.metrics.update_gauges(await asyncio.to_thread(self.host_reader))

    async def report(self):
        await self.sender.send()

    async def _every(self, interval: float, name: str, tick: Callable[[], Awaitable[None]]):
        while not self.stop_event.is_set():
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                try:
                    await tick()
                except Exception as e:
                    self.logger.error("Periodic task failed", task=name, error=str(e))

    def stop(self):
        self.stop_event.set()

    async def run(self):
        """Run until `stop()` is called."""
        poll = self.config.poll_interval_seconds
        report = self.config.report_interval_seconds

        self.logger.info(
            "Agent started",
            address=self.config.address,
            mode=self.config.mode,
            poll_interval=poll,
            report_interval=report
        )
        try:
            await asyncio.gather(
                self._every(poll, "runtime", self.sample_runtime),
                self._every(poll, "host", self.sample_host),
                self._every(report, "sender", self.report),
            )
        finally:
            await self.sender.close()
            self.logger.info("Agent stopped")


async def _serve(config: AgentConfig):
    agent = MetricsAgent(config)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT):
        loop.add_signal_handler(sig, agent.stop)
    await agent.run()


def main(argv: Optional[Sequence[str]] = None):
    config = get_agent_config(argv)
    configure_logging("agent", config.log_level)
    asyncio.run(_serve(config))


if __name__ == "__main__":
    main()
