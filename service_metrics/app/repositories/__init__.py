"""
Metric store backends.

The concrete backend is chosen once at startup: an empty database DSN selects
the in-memory store, anything else the PostgreSQL store.
"""

from shared.config import ServerConfig

from .base import MetricRepository, MetricValues
from .inmemory import InMemoryRepository
from .postgres import PostgreSQLRepository


def create_repository(config: ServerConfig) -> MetricRepository:
    """Build the backend selected by the configuration."""
    if not config.database_dsn:
        return InMemoryRepository(
            store_file=config.store_file,
            restore_enabled=config.restore,
            write_through=config.write_through
        )
    return PostgreSQLRepository(config.database_dsn)


__all__ = [
    "MetricRepository",
    "MetricValues",
    "InMemoryRepository",
    "PostgreSQLRepository",
    "create_repository",
]
