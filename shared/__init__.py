"""
Shared utilities for the Runtime Metrics services.

This package holds the building blocks used by both the server and the agent:

- config: Server and agent configuration via pydantic-settings and flags
- logging: Structured logging with request correlation
- metrics: Prometheus instrumentation for the server itself
- errors: Error types and the JSON error response
- models: Metric values and the wire form
- codec: Path, JSON and batch encodings
- signing: HMAC-SHA256 signatures over wire metrics

Do not import from service_* packages into shared/.
"""
