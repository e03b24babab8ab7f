from __future__ import annotations

import json
import subprocess

import pytest

from speedtest_agent.config import AgentConfig

TOKEN = "s3cret-token"

SAMPLE_REPORT = {
    "type": "result",
    "timestamp": "2024-05-01T12:00:00Z",
    "ping": {"jitter": 1.25, "latency": 15.5},
    "download": {"bandwidth": 80000000},
    "upload": {"bandwidth": 8000000},
    "server": {"host": "h", "country": "US"},
}


@pytest.fixture
def agent_config() -> AgentConfig:
    return AgentConfig(auth_token=TOKEN, port=8080)


@pytest.fixture
def fake_speedtest(monkeypatch):
    """Replace subprocess.run with a stub returning canned combined output."""

    calls = []

    def install(output=json.dumps(SAMPLE_REPORT), returncode=0, exc=None):
        def fake_run(command, **kwargs):
            calls.append((command, kwargs))
            if exc is not None:
                raise exc
            data = output.encode("utf-8") if isinstance(output, str) else output
            return subprocess.CompletedProcess(command, returncode, stdout=data, stderr=None)

        monkeypatch.setattr(subprocess, "run", fake_run)
        return calls

    return install
