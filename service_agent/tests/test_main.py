"""
Unit tests for the agent runner.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_agent.app.collector import POLL_COUNT, AgentMetrics
from service_agent.app.main import MetricsAgent
from service_agent.app.sender import MetricsSender
from shared.config import AgentConfig


class TestMetricsAgent:
    """Test cases for MetricsAgent."""

    @pytest.fixture
    def config(self):
        return AgentConfig(poll_interval="0.01", report_interval="0.03")

    @pytest.fixture
    def sender(self):
        sender = MagicMock()
        sender.send = AsyncMock()
        sender.close = AsyncMock()
        return sender

    @pytest.fixture
    def agent(self, config, sender):
        return MetricsAgent(
            config,
            sender=sender,
            runtime_reader=lambda: {"ThreadCount": 3},
            host_reader=lambda: {"TotalMemory": 4096, "FreeMemory": 1024}
        )

    def test_default_sender_from_config(self):
        config = AgentConfig(address="collector:9090", mode="json", key="k")

        agent = MetricsAgent(config)

        assert isinstance(agent.sender, MetricsSender)
        assert agent.sender.base_url == "http://collector:9090"
        assert agent.sender.mode == "json"
        assert agent.sender.key == "k"
        assert agent.sender.metrics is agent.metrics

    @pytest.mark.asyncio
    async def test_run_samples_and_reports_until_stopped(self, agent, sender):
        task = asyncio.create_task(agent.run())
        await asyncio.sleep(0.15)
        agent.stop()
        await asyncio.wait_for(task, timeout=1)

        snapshot = agent.metrics.snapshot()
        assert snapshot["ThreadCount"].value == 3.0
        assert snapshot["TotalMemory"].value == 4096.0
        assert snapshot["FreeMemory"].value == 1024.0
        assert sender.send.await_count >= 1
        sender.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_before_first_tick(self, agent, sender):
        agent.stop()

        await asyncio.wait_for(agent.run(), timeout=1)

        sender.send.assert_not_awaited()
        sender.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_sampler_does_not_stop_agent(self, config, sender):
        def broken():
            raise OSError("no /proc")

        agent = MetricsAgent(config, sender=sender, runtime_reader=broken, host_reader=lambda: {})

        task = asyncio.create_task(agent.run())
        await asyncio.sleep(0.1)
        agent.stop()
        await asyncio.wait_for(task, timeout=1)

        assert sender.send.await_count >= 1

    @pytest.mark.asyncio
    async def test_report_advances_poll_count(self, config):
        metrics = AgentMetrics()
        sender = MetricsSender(metrics, "localhost:1", client=MagicMock())
        sender._send_batch = AsyncMock()
        agent = MetricsAgent(config, metrics=metrics, sender=sender)

        await agent.report()
        await agent.report()

        assert metrics.snapshot()[POLL_COUNT].delta == 2
        assert sender._send_batch.await_count == 2
