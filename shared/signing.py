"""
HMAC-SHA256 signing of wire metrics.

The signed string is "{id}:{kind}:{magnitude}" with gauges rendered with six
decimal places and counters as plain integers. An empty key disables both
signing and verification.
"""

import binascii
import hashlib
import hmac
from typing import Optional, Union

from shared.errors import AuthenticationError
from shared.models import MetricKind, WireMetric


def signing_string(metric_id: str, kind: str, magnitude: Union[int, float]) -> str:
    if kind == MetricKind.GAUGE.value:
        return f"{metric_id}:gauge:{float(magnitude):f}"
    return f"{metric_id}:counter:{int(magnitude)}"


def _digest(metric_id: str, kind: str, magnitude: Union[int, float], key: str) -> bytes:
    message = signing_string(metric_id, kind, magnitude).encode("utf-8")
    return hmac.new(key.encode("utf-8"), message, hashlib.sha256).digest()


def sign(metric_id: str, kind: str, magnitude: Union[int, float], key: str) -> str:
    """Return the lowercase hex signature."""
    return _digest(metric_id, kind, magnitude, key).hex()


def verify(metric_id: str, kind: str, magnitude: Union[int, float], signature: Optional[str], key: str) -> bool:
    """Check a hex signature in constant time."""
    if not signature:
        return False
    try:
        received = binascii.unhexlify(signature)
    except (binascii.Error, ValueError):
        return False
    return hmac.compare_digest(_digest(metric_id, kind, magnitude, key), received)


def sign_metric(metric: WireMetric, key: str) -> WireMetric:
    """Set `hash` on a wire metric when a key is configured."""
    if key and metric.magnitude is not None:
        metric.hash = sign(metric.id, metric.mtype, metric.magnitude, key)
    return metric


def verify_metric(metric: WireMetric, key: str) -> None:
    """Raise AuthenticationError unless the metric carries a valid signature."""
    if not key:
        return
    if metric.magnitude is None or not verify(metric.id, metric.mtype, metric.magnitude, metric.hash, key):
        raise AuthenticationError(
            f"unknown or bad hash value for {metric.id}",
            details={"id": metric.id}
        )
