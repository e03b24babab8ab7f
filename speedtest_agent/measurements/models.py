"""Shared dataclasses for measurements."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class RawMeasurement:
    """Fields read from one `speedtest --format=json` report."""

    type: Optional[str]
    timestamp: Optional[datetime]
    ping_jitter_ms: Optional[float]
    ping_latency_ms: float
    download_bandwidth: int
    upload_bandwidth: int
    server_host: str
    server_country: str


@dataclass
class AgentResponse:
    download_speed_MB_s: float = 0.0
    upload_speed_MB_s: float = 0.0
    latency_ms: float = 0.0
    server_country: str = ""
    server_host: str = ""
    error: Optional[str] = None

    @classmethod
    def failure(cls, message: str) -> "AgentResponse":
        return cls(error=message)

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        payload = asdict(self)
        payload.pop("error")
        return payload
