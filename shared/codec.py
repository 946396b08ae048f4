"""
Wire codec for the three metric encodings.

- path:  /update/{kind}/{name}/{value}, no signature
- JSON object: one wire metric
- JSON array: a batch of wire metrics, validated as a whole before use
"""

import math
import re
from decimal import Decimal
from typing import Dict, List, Mapping, Tuple

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from shared.errors import UnsupportedKindError, ValidationError
from shared.models import INT64_MAX, INT64_MIN, KNOWN_KINDS, MetricKind, MetricValue, WireMetric
from shared.signing import sign_metric, verify_metric

_batch_adapter = TypeAdapter(List[WireMetric])
_COUNTER_TEXT = re.compile(r"[+-]?[0-9]+")


def decode_path(kind: str, name: str, raw_value: str) -> Tuple[str, MetricValue]:
    """Decode a path-encoded update."""
    if kind not in KNOWN_KINDS:
        raise UnsupportedKindError("unknown data type", details={"type": kind})
    if not name.strip():
        raise ValidationError("metric name empty")
    try:
        if kind == MetricKind.GAUGE.value:
            return name, MetricValue.gauge(float(raw_value))
        return name, MetricValue.counter(_parse_counter(raw_value))
    except ValueError:
        raise ValidationError("incorrect value", details={"value": raw_value})


def _parse_counter(raw_value: str) -> int:
    if not _COUNTER_TEXT.fullmatch(raw_value):
        raise ValueError(raw_value)
    delta = int(raw_value)
    if not INT64_MIN <= delta <= INT64_MAX:
        raise ValueError(raw_value)
    return delta


def decode_metric(body: bytes) -> WireMetric:
    """Parse a single JSON wire metric without semantic checks."""
    try:
        return WireMetric.model_validate_json(body)
    except PydanticValidationError as e:
        raise ValidationError("malformed metric body", details={"errors": _error_summary(e)})


def decode_batch(body: bytes) -> List[WireMetric]:
    """Parse a JSON array of wire metrics without semantic checks."""
    try:
        return _batch_adapter.validate_json(body)
    except PydanticValidationError as e:
        raise ValidationError("malformed batch body", details={"errors": _error_summary(e)})


def validate_metric(metric: WireMetric, key: str = "") -> Tuple[str, MetricValue]:
    """Structural checks, then the signature when a key is configured."""
    name, value = metric.to_value()
    verify_metric(metric, key)
    return name, value


def validate_batch(metrics: List[WireMetric], key: str = "") -> List[Tuple[str, MetricValue]]:
    """Validate every element; the first failure rejects the whole batch."""
    return [validate_metric(metric, key) for metric in metrics]


def encode_path(name: str, value: MetricValue) -> str:
    """Path suffix for the plain update endpoint."""
    return f"{value.kind.value}/{name}/{format_magnitude(value)}"


def encode_metric(name: str, value: MetricValue, key: str = "") -> Dict:
    return sign_metric(WireMetric.from_value(name, value), key).to_wire()


def encode_batch(values: Mapping[str, MetricValue], key: str = "") -> List[Dict]:
    return [encode_metric(name, value, key) for name, value in values.items()]


def format_gauge(value: float) -> str:
    """Shortest positional decimal form, no exponent, no trailing zeros."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_magnitude(value: MetricValue) -> str:
    if value.kind == MetricKind.GAUGE:
        return format_gauge(value.value)
    return str(value.delta)


def _error_summary(error: PydanticValidationError) -> List[str]:
    return [f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in error.errors()]
