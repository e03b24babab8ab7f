"""Configuration loading helpers for the speedtest agent."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigError, ConfigErrorKind

DEFAULT_CONFIG_PATH = "/etc/speedtest-agent/config.json"


@dataclass(frozen=True)
class SpeedtestConfig:
    binary: str = "speedtest"
    timeout_seconds: Optional[float] = None
    max_concurrent: Optional[int] = None


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass(frozen=True)
class AgentConfig:
    auth_token: str
    port: int
    host: str = "0.0.0.0"
    speedtest: SpeedtestConfig = field(default_factory=SpeedtestConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    reverse_proxy_headers: bool = False


def _parse_failure(message: str) -> ConfigError:
    return ConfigError(ConfigErrorKind.PARSE_FAILURE, message)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _section(data: Dict[str, Any], key: str, cls):
    raw = data.get(key, {})
    if not isinstance(raw, dict):
        raise _parse_failure(f"'{key}' must be an object")
    try:
        return cls(**raw)
    except TypeError as exc:
        raise _parse_failure(f"Invalid '{key}' section: {exc}") from exc


def _validate_speedtest(section: SpeedtestConfig) -> None:
    if not isinstance(section.binary, str) or not section.binary:
        raise _parse_failure("'speedtest.binary' must be a non-empty string")
    timeout = section.timeout_seconds
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            raise _parse_failure("'speedtest.timeout_seconds' must be a number")
        if timeout <= 0:
            raise ConfigError(ConfigErrorKind.INVALID_CONFIG, "'speedtest.timeout_seconds' must be positive")
    limit = section.max_concurrent
    if limit is not None:
        if not _is_int(limit):
            raise _parse_failure("'speedtest.max_concurrent' must be an integer")
        if limit < 1:
            raise ConfigError(ConfigErrorKind.INVALID_CONFIG, "'speedtest.max_concurrent' must be at least 1")


def parse_config(data: Any) -> AgentConfig:
    """Build an AgentConfig from an already decoded JSON document."""

    if not isinstance(data, dict):
        raise _parse_failure("Configuration root must be a JSON object")

    token = data.get("auth_token", "")
    if not isinstance(token, str):
        raise _parse_failure("'auth_token' must be a string")
    if not token:
        raise ConfigError(ConfigErrorKind.INVALID_CONFIG, "auth_token is missing from config file")
    if any(char.isspace() for char in token):
        raise ConfigError(ConfigErrorKind.INVALID_CONFIG, "auth_token must not contain whitespace")

    port = data.get("port")
    if not _is_int(port):
        raise _parse_failure("'port' must be an integer")
    if not 1 <= port <= 65535:
        raise ConfigError(ConfigErrorKind.INVALID_CONFIG, f"'port' out of range: {port}")

    host = data.get("host", "0.0.0.0")
    if not isinstance(host, str):
        raise _parse_failure("'host' must be a string")

    proxy_headers = data.get("reverse_proxy_headers", False)
    if not isinstance(proxy_headers, bool):
        raise _parse_failure("'reverse_proxy_headers' must be a boolean")

    speedtest = _section(data, "speedtest", SpeedtestConfig)
    _validate_speedtest(speedtest)
    logging_config = _section(data, "logging", LoggingConfig)
    if not isinstance(logging_config.level, str):
        raise _parse_failure("'logging.level' must be a string")
    if logging_config.file is not None and not isinstance(logging_config.file, str):
        raise _parse_failure("'logging.file' must be a string")

    return AgentConfig(
        auth_token=token,
        port=port,
        host=host,
        speedtest=speedtest,
        logging=logging_config,
        reverse_proxy_headers=proxy_headers,
    )


def load_config(path: str = DEFAULT_CONFIG_PATH) -> AgentConfig:
    """Load agent configuration from a JSON file."""

    source_path = Path(path)
    if not source_path.exists():
        raise ConfigError(ConfigErrorKind.NOT_FOUND, f"Missing configuration file at {source_path}")

    try:
        with source_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise _parse_failure(f"Invalid JSON in {source_path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(ConfigErrorKind.IO_FAILURE, f"Cannot read {source_path}: {exc}") from exc

    return parse_config(data)
