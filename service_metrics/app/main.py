"""
Metric server for the Runtime Metrics system.
"""

import html
from typing import Dict, Optional, Sequence

from fastapi import Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from shared.base_service import BaseService
from shared.codec import (
    decode_batch,
    decode_metric,
    decode_path,
    format_magnitude,
    validate_batch,
    validate_metric,
)
from shared.config import ServerConfig, get_server_config
from shared.errors import NotFoundError, StorageError
from shared.models import MetricValue, WireMetric
from shared.signing import sign_metric

from .repositories import MetricRepository, create_repository
from .scheduler import SnapshotScheduler

INDEX_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Runtime Metrics</title>
</head>
<body>
<pre>
{lines}</pre>
</body>
</html>
"""


class MetricsServer(BaseService):
    """Metric server implementation."""

    def __init__(self, config: Optional[ServerConfig] = None, repository: Optional[MetricRepository] = None):
        config = config or ServerConfig()
        self.repository = repository or create_repository(config)
        self.scheduler: Optional[SnapshotScheduler] = None
        super().__init__("metrics", config)

        self._setup_metrics_routes()

    @property
    def key(self) -> str:
        return self.config.key

    def _setup_metrics_routes(self):
        """Set up metric ingestion and query routes."""

        @self.app.get("/", response_class=HTMLResponse)
        async def index():
            """List every stored metric."""
            metrics = await self.repository.find_all()
            lines = "".join(
                f"{name} = {format_magnitude(value)}\n"
                for name, value in sorted(metrics.items())
            )
            return HTMLResponse(INDEX_TEMPLATE.format(lines=html.escape(lines)))

        @self.app.get("/ping")
        async def ping():
            """Report whether the backend is reachable."""
            await self.repository.ping()
            return {}

        @self.app.post("/update/{kind}/{name}/{value}")
        async def update_plain(kind: str, name: str, value: str):
            """Update one metric from the path encoding."""
            metric_name, metric_value = decode_path(kind, name, value)
            await self.repository.save(metric_name, metric_value)
            return PlainTextResponse("")

        async def update_json(request: Request):
            """Update one metric from a JSON body."""
            metric = decode_metric(await request.body())
            name, value = validate_metric(metric, self.key)
            await self.repository.save(name, value)
            return JSONResponse({})

        async def update_json_batch(request: Request):
            """Update a batch of metrics; any invalid element rejects the batch."""
            metrics = decode_batch(await request.body())
            validate_batch(metrics, self.key)
            await self.repository.save_all(metrics)
            return JSONResponse({})

        async def value_json(request: Request):
            """Return one metric as a wire object."""
            query = decode_metric(await request.body())
            stored = await self._find(query.mtype, query.id)
            metric = sign_metric(WireMetric.from_value(query.id, stored), self.key)
            return JSONResponse(metric.to_wire())

        for path, endpoint in (
            ("/update", update_json),
            ("/updates", update_json_batch),
            ("/value", value_json),
        ):
            self.app.add_api_route(path, endpoint, methods=["POST"])
            self.app.add_api_route(f"{path}/", endpoint, methods=["POST"], include_in_schema=False)

        @self.app.get("/value/{kind}/{name}")
        async def value_plain(kind: str, name: str):
            """Return one metric value as plain text."""
            stored = await self._find(kind, name)
            return PlainTextResponse(format_magnitude(stored))

    async def _find(self, kind: str, name: str) -> MetricValue:
        value = await self.repository.find_by_name(name)
        if value.kind.value != kind:
            raise NotFoundError("metric not found", details={"id": name, "type": kind})
        return value

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check the repository backend."""
        try:
            await self.repository.ping()
            return {"repository": "ok"}
        except StorageError:
            return {"repository": "error"}

    async def start(self):
        """Connect and restore the repository, then start snapshotting."""
        await self.repository.connect()

        try:
            await self.repository.restore()
        except StorageError as e:
            self.logger.warning("Restore failed, starting empty", error=e.message)

        if not self.config.write_through and self.config.store_file:
            self.scheduler = SnapshotScheduler(
                self.repository,
                self.config.store_interval_seconds,
                instrumentation=self.instrumentation
            )
            await self.scheduler.start()

        self.logger.info("Metrics server components started")

    async def stop(self):
        """Stop snapshotting and release the repository."""
        if self.scheduler is not None:
            await self.scheduler.stop()
            self.scheduler = None

        try:
            await self.repository.close()
        except StorageError as e:
            self.logger.warning("Repository close failed", error=e.message)

        self.logger.info("Metrics server components stopped")

    def run(self):
        """Run the server."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )


def create_app(config: Optional[ServerConfig] = None):
    """Create metrics server application."""
    server = MetricsServer(config)
    return server.app


def main(argv: Optional[Sequence[str]] = None):
    MetricsServer(get_server_config(argv)).run()


if __name__ == "__main__":
    main()
