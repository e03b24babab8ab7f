"""Ookla speedtest CLI runner."""

from __future__ import annotations

import json
import logging
import math
import re
import subprocess
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import SpeedtestConfig
from ..errors import MeasurementError, MeasurementErrorKind
from .models import RawMeasurement

LOGGER = logging.getLogger(__name__)

# fromisoformat before 3.11 only takes 3 or 6 fractional digits
FRACTION_RE = re.compile(r"(T\d{2}:\d{2}:\d{2})\.(\d+)")

# Never extend this from request data.
SPEEDTEST_ARGS = ("--format=json", "--accept-license", "--accept-gdpr")


def bandwidth_to_megabytes_per_second(bandwidth: int) -> float:
    return bandwidth / 8 / 1_000_000


def build_command(settings: SpeedtestConfig) -> List[str]:
    return [settings.binary, *SPEEDTEST_ARGS]


class SpeedtestRunner:
    """Runs the speedtest binary once per call, optionally capping concurrent runs."""

    def __init__(self, settings: SpeedtestConfig):
        self.settings = settings
        self._slots: Optional[threading.BoundedSemaphore] = None
        if settings.max_concurrent:
            self._slots = threading.BoundedSemaphore(settings.max_concurrent)

    def __call__(self) -> RawMeasurement:
        if self._slots is None:
            return run_speedtest(self.settings)
        with self._slots:
            return run_speedtest(self.settings)


def run_speedtest(settings: SpeedtestConfig) -> RawMeasurement:
    output = _run_cli(build_command(settings), settings.timeout_seconds)
    return parse_speedtest_output(output)


def _decode(raw: Optional[bytes]) -> str:
    if not raw:
        return ""
    if isinstance(raw, str):
        return raw
    return raw.decode("utf-8", errors="replace")


def _run_cli(command: List[str], timeout: Optional[float]) -> str:
    LOGGER.debug("Running %s", " ".join(command))
    try:
        completed = subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        output = _decode(exc.output)
        raise MeasurementError(
            MeasurementErrorKind.SUBPROCESS_FAILURE,
            f"timed out after {timeout} seconds",
            output=output,
        ) from exc
    except OSError as exc:
        raise MeasurementError(MeasurementErrorKind.SUBPROCESS_FAILURE, str(exc), output="") from exc

    output = _decode(completed.stdout)
    if completed.returncode != 0:
        raise MeasurementError(
            MeasurementErrorKind.SUBPROCESS_FAILURE,
            f"exit status {completed.returncode}",
            output=output,
        )
    return output


def _parse_failure(message: str) -> MeasurementError:
    return MeasurementError(MeasurementErrorKind.PARSE_FAILURE, message)


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = data.get(key)
    if not isinstance(section, dict):
        raise _parse_failure(f"missing or invalid '{key}' object")
    return section


def _number(section: Dict[str, Any], path: str, key: str) -> float:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _parse_failure(f"'{path}.{key}' must be a number")
    if not math.isfinite(value):
        raise _parse_failure(f"'{path}.{key}' must be finite")
    return float(value)


def _integer(section: Dict[str, Any], path: str, key: str) -> int:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise _parse_failure(f"'{path}.{key}' must be an integer")
    return value


def _string(section: Dict[str, Any], path: str, key: str) -> str:
    value = section.get(key)
    if not isinstance(value, str):
        raise _parse_failure(f"'{path}.{key}' must be a string")
    return value


def _pad_fraction(match: "re.Match[str]") -> str:
    return f"{match.group(1)}.{match.group(2)[:6].ljust(6, '0')}"


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise _parse_failure("'timestamp' must be a string")
    clean = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    clean = FRACTION_RE.sub(_pad_fraction, clean)
    try:
        return datetime.fromisoformat(clean)
    except ValueError as exc:
        raise _parse_failure(f"invalid timestamp {raw!r}") from exc


def parse_speedtest_output(output: str) -> RawMeasurement:
    """Validate the CLI's JSON report and pull out the fields the agent uses."""

    try:
        data = json.loads(output)
    except json.JSONDecodeError as exc:
        raise _parse_failure(str(exc)) from exc
    if not isinstance(data, dict):
        raise _parse_failure("report is not a JSON object")

    ping = _section(data, "ping")
    download = _section(data, "download")
    upload = _section(data, "upload")
    server = _section(data, "server")

    jitter = None
    if ping.get("jitter") is not None:
        jitter = _number(ping, "ping", "jitter")

    report_type = data.get("type")
    if report_type is not None and not isinstance(report_type, str):
        raise _parse_failure("'type' must be a string")

    return RawMeasurement(
        type=report_type,
        timestamp=_parse_timestamp(data.get("timestamp")),
        ping_jitter_ms=jitter,
        ping_latency_ms=_number(ping, "ping", "latency"),
        download_bandwidth=_integer(download, "download", "bandwidth"),
        upload_bandwidth=_integer(upload, "upload", "bandwidth"),
        server_host=_string(server, "server", "host"),
        server_country=_string(server, "server", "country"),
    )
