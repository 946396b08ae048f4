"""
Metric value and wire models shared by the server and the agent.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt

from shared.errors import UnsupportedKindError, ValidationError


class MetricKind(str, Enum):
    """Metric kinds."""
    GAUGE = "gauge"
    COUNTER = "counter"


KNOWN_KINDS = frozenset(kind.value for kind in MetricKind)

# Counters are signed 64-bit on the wire and in the SQL store
INT64_MIN = -2 ** 63
INT64_MAX = 2 ** 63 - 1

CounterDelta = Annotated[StrictInt, Field(ge=INT64_MIN, le=INT64_MAX)]


@dataclass
class MetricValue:
    """Stored value of a metric.

    Only the field matching `kind` is meaningful. Both are kept so that an
    update can replace the gauge and accumulate the counter in one step.
    """
    kind: MetricKind
    delta: int = 0
    value: float = 0.0

    @classmethod
    def gauge(cls, value: float) -> "MetricValue":
        return cls(kind=MetricKind.GAUGE, value=float(value))

    @classmethod
    def counter(cls, delta: int) -> "MetricValue":
        return cls(kind=MetricKind.COUNTER, delta=int(delta))

    @property
    def magnitude(self) -> Union[int, float]:
        if self.kind == MetricKind.COUNTER:
            return self.delta
        return self.value

    def merge(self, update: "MetricValue") -> None:
        """Apply an update: counters accumulate, gauges are replaced.

        The kind tag always follows the update, even when it changes.
        """
        self.delta += update.delta
        self.value = update.value
        self.kind = update.kind

    def copy(self) -> "MetricValue":
        return MetricValue(kind=self.kind, delta=self.delta, value=self.value)

    def to_snapshot(self) -> Dict[str, Any]:
        """Snapshot form with zero-valued fields omitted."""
        data: Dict[str, Any] = {}
        if self.delta:
            data["delta"] = self.delta
        if self.value:
            data["value"] = self.value
        data["type"] = self.kind.value
        return data

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "MetricValue":
        return cls(
            kind=MetricKind(data["type"]),
            delta=int(data.get("delta", 0)),
            value=float(data.get("value", 0.0))
        )


class WireMetric(BaseModel):
    """Transport form of a single metric."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    mtype: str = Field(default="", alias="type")
    delta: Optional[CounterDelta] = None
    value: Optional[StrictFloat] = None
    hash: Optional[str] = None

    @classmethod
    def from_value(cls, name: str, value: MetricValue) -> "WireMetric":
        metric = cls(id=name, mtype=value.kind.value)
        if value.kind == MetricKind.GAUGE:
            metric.value = value.value
        else:
            metric.delta = value.delta
        return metric

    def to_value(self) -> Tuple[str, MetricValue]:
        """Validate the wire form and convert it to a stored value."""
        if not self.id.strip():
            raise ValidationError("metric name empty")
        if self.mtype not in KNOWN_KINDS:
            raise UnsupportedKindError(
                f"unknown data type for {self.id}",
                details={"id": self.id, "type": self.mtype}
            )
        if self.mtype == MetricKind.GAUGE.value:
            if self.value is None:
                raise ValidationError(f"unknown data value for {self.id}", details={"id": self.id})
            return self.id, MetricValue.gauge(self.value)
        if self.delta is None:
            raise ValidationError(f"unknown data value for {self.id}", details={"id": self.id})
        return self.id, MetricValue.counter(self.delta)

    @property
    def magnitude(self) -> Optional[Union[int, float]]:
        if self.mtype == MetricKind.COUNTER.value:
            return self.delta
        return self.value

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
