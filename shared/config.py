"""
Shared configuration management for the Runtime Metrics services.

Values come from, in order of precedence: environment variables, a `.env`
file, command-line flags, field defaults.
"""

import argparse
import math
import re
from typing import Optional, Sequence

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

SEND_MODES = ("plain", "json", "jsonbatch")


def parse_duration(value: str) -> float:
    """Parse a duration like "300s", "1m30s" or "250ms" into seconds.

    A bare number is taken as seconds.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds) or seconds < 0:
            raise ValueError(f"invalid duration: {value!r}")
        return seconds

    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    log_level: str = Field(default="info")

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings):
        # Environment wins over flags passed as init kwargs
        return env_settings, dotenv_settings, init_settings, file_secret_settings


class ServerConfig(BaseConfig):
    """Metric server configuration."""

    address: str = Field(default="localhost:8080")
    store_interval: str = Field(default="300s")
    store_file: str = Field(default="/tmp/cmas-metrics-db.json")
    restore: bool = Field(default=True)
    key: str = Field(default="")
    database_dsn: str = Field(default="")

    @field_validator("store_interval")
    @classmethod
    def _check_store_interval(cls, value: str) -> str:
        parse_duration(value)
        return value

    @property
    def store_interval_seconds(self) -> float:
        return parse_duration(self.store_interval)

    @property
    def write_through(self) -> bool:
        """True when every write must be flushed synchronously."""
        return self.store_interval_seconds == 0

    @property
    def host(self) -> str:
        return self.address.rsplit(":", 1)[0] or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.address.rsplit(":", 1)[1])


class AgentConfig(BaseConfig):
    """Agent configuration."""

    address: str = Field(default="localhost:8080")
    poll_interval: str = Field(default="2s")
    report_interval: str = Field(default="10s")
    mode: str = Field(default="jsonbatch")
    key: str = Field(default="")

    @field_validator("poll_interval", "report_interval")
    @classmethod
    def _check_interval(cls, value: str) -> str:
        if parse_duration(value) <= 0:
            raise ValueError(f"interval must be positive: {value!r}")
        return value

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        if value not in SEND_MODES:
            raise ValueError(f"unknown send mode: {value!r}")
        return value

    @property
    def poll_interval_seconds(self) -> float:
        return parse_duration(self.poll_interval)

    @property
    def report_interval_seconds(self) -> float:
        return parse_duration(self.report_interval)


def _drop_unset(namespace: argparse.Namespace) -> dict:
    return {key: value for key, value in vars(namespace).items() if value is not None}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "t", "true", "yes", "y", "on")


def get_server_config(argv: Optional[Sequence[str]] = None) -> ServerConfig:
    """Build the server configuration from flags and environment."""
    parser = argparse.ArgumentParser(description="Runtime metrics server")
    parser.add_argument("-a", dest="address", help="server address")
    parser.add_argument("-r", dest="restore", type=_parse_bool, help="restore data")
    parser.add_argument("-i", dest="store_interval", help="store interval")
    parser.add_argument("-f", dest="store_file", help="store file")
    parser.add_argument("-k", dest="key", help="key")
    parser.add_argument("-d", dest="database_dsn", help="database dsn")
    args = parser.parse_args(argv)
    return ServerConfig(**_drop_unset(args))


def get_agent_config(argv: Optional[Sequence[str]] = None) -> AgentConfig:
    """Build the agent configuration from flags and environment."""
    parser = argparse.ArgumentParser(description="Runtime metrics agent")
    parser.add_argument("-a", dest="address", help="server address")
    parser.add_argument("-p", dest="poll_interval", help="poll interval")
    parser.add_argument("-r", dest="report_interval", help="report interval")
    parser.add_argument("-t", dest="mode", choices=SEND_MODES, help="data type")
    parser.add_argument("-k", dest="key", help="data signing key")
    args = parser.parse_args(argv)
    return AgentConfig(**_drop_unset(args))
