"""
Local metric collection for the agent.
"""

import gc
import random
import resource
import threading
from typing import Dict, Mapping, Tuple

import psutil

from shared.models import MetricKind, MetricValue

POLL_COUNT = "PollCount"
RANDOM_VALUE = "RandomValue"

# Python runtime statistics sampled from the interpreter itself
RUNTIME_STATS: Tuple[Tuple[str, MetricKind], ...] = (
    ("GCCollections0", MetricKind.GAUGE),
    ("GCCollections1", MetricKind.GAUGE),
    ("GCCollections2", MetricKind.GAUGE),
    ("GCCollected", MetricKind.GAUGE),
    ("GCUncollectable", MetricKind.GAUGE),
    ("GCPending0", MetricKind.GAUGE),
    ("GCPending1", MetricKind.GAUGE),
    ("GCPending2", MetricKind.GAUGE),
    ("GCFrozen", MetricKind.GAUGE),
    ("ThreadCount", MetricKind.GAUGE),
    ("MaxRSS", MetricKind.GAUGE),
    ("UserCPUTime", MetricKind.GAUGE),
    ("SystemCPUTime", MetricKind.GAUGE),
    ("MinorFaults", MetricKind.GAUGE),
    ("MajorFaults", MetricKind.GAUGE),
    ("VoluntaryCtxSwitches", MetricKind.GAUGE),
    ("InvoluntaryCtxSwitches", MetricKind.GAUGE),
)

# Host statistics sampled through psutil
HOST_STATS: Tuple[Tuple[str, MetricKind], ...] = (
    ("TotalMemory", MetricKind.GAUGE),
    ("FreeMemory", MetricKind.GAUGE),
    ("CPUutilization1", MetricKind.GAUGE),
)

AGENT_STATS: Tuple[Tuple[str, MetricKind], ...] = (
    (POLL_COUNT, MetricKind.COUNTER),
    (RANDOM_VALUE, MetricKind.GAUGE),
)

METRIC_REGISTRY: Tuple[Tuple[str, MetricKind], ...] = RUNTIME_STATS + HOST_STATS + AGENT_STATS


class AgentMetrics:
    """Metrics container shared by the samplers and the sender.

    Every access goes through one lock.
    """

    def __init__(self, registry: Tuple[Tuple[str, MetricKind], ...] = METRIC_REGISTRY):
        self._lock = threading.Lock()
        self._values: Dict[str, MetricValue] = {name: MetricValue(kind=kind) for name, kind in registry}
        self._random = random.Random()

    def update_gauges(self, readings: Mapping[str, float]) -> None:
        """Store gauge readings; names outside the registry are ignored."""
        with self._lock:
            for name, reading in readings.items():
                stored = self._values.get(name)
                if stored is None or stored.kind != MetricKind.GAUGE:
                    continue
                stored.value = float(reading)

    def snapshot_for_send(self) -> Dict[str, MetricValue]:
        """Advance the poll counter, reseed the random gauge, copy everything.

        Called once per report tick.
        """
        with self._lock:
            self._random.seed()
            if POLL_COUNT in self._values:
                self._values[POLL_COUNT].delta += 1
            if RANDOM_VALUE in self._values:
                self._values[RANDOM_VALUE].value = self._random.random()
            return {name: value.copy() for name, value in self._values.items()}

    def snapshot(self) -> Dict[str, MetricValue]:
        with self._lock:
            return {name: value.copy() for name, value in self._values.items()}


def read_runtime_stats() -> Dict[str, float]:
    """Interpreter garbage-collector, thread and resource-usage readings."""
    readings: Dict[str, float] = {}

    for generation, stats in enumerate(gc.get_stats()):
        readings[f"GCCollections{generation}"] = stats.get("collections", 0)
    readings["GCCollected"] = sum(stats.get("collected", 0) for stats in gc.get_stats())
    readings["GCUncollectable"] = sum(stats.get("uncollectable", 0) for stats in gc.get_stats())
    for generation, pending in enumerate(gc.get_count()):
        readings[f"GCPending{generation}"] = pending
    readings["GCFrozen"] = gc.get_freeze_count()
    readings["ThreadCount"] = threading.active_count()

    usage = resource.getrusage(resource.RUSAGE_SELF)
    readings["MaxRSS"] = usage.ru_maxrss
    readings["UserCPUTime"] = usage.ru_utime
    readings["SystemCPUTime"] = usage.ru_stime
    readings["MinorFaults"] = usage.ru_minflt
    readings["MajorFaults"] = usage.ru_majflt
    readings["VoluntaryCtxSwitches"] = usage.ru_nvcsw
    readings["InvoluntaryCtxSwitches"] = usage.ru_nivcsw
    return readings


def read_host_stats(cpu_sample_seconds: float = 1.0) -> Dict[str, float]:
    """Host memory and CPU readings. Blocks for `cpu_sample_seconds`."""
    memory = psutil.virtual_memory()
    cpu_utilization = psutil.cpu_percent(interval=cpu_sample_seconds, percpu=True)
    return {
        "TotalMemory": memory.total,
        "FreeMemory": memory.free,
        "CPUutilization1": cpu_utilization[0] if cpu_utilization else 0.0,
    }
