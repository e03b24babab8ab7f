from __future__ import annotations

import json
import logging

import pytest

from speedtest_agent.config import AgentConfig
from speedtest_agent.errors import AuthError, AuthErrorKind, MeasurementError, MeasurementErrorKind
from speedtest_agent.measurements.speedtest_runner import parse_speedtest_output
from speedtest_agent.web.app import authenticate, create_web_app

from .conftest import SAMPLE_REPORT, TOKEN


class StubRunner:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def stub_runner():
    return StubRunner(result=parse_speedtest_output(json.dumps(SAMPLE_REPORT)))


@pytest.fixture
def client(agent_config, stub_runner):
    app = create_web_app(agent_config, runner=stub_runner)
    app.testing = True
    return app.test_client()


def bearer(token=TOKEN):
    return {"Authorization": f"Bearer {token}"}


def test_successful_measurement(client, stub_runner):
    response = client.post("/speedtest", headers=bearer())

    assert response.status_code == 200
    assert response.mimetype == "application/json"
    assert response.get_json() == {
        "download_speed_MB_s": 10.0,
        "upload_speed_MB_s": 1.0,
        "latency_ms": 15.5,
        "server_host": "h",
        "server_country": "US",
    }
    assert stub_runner.calls == 1


def test_non_round_bandwidth(agent_config):
    report = dict(SAMPLE_REPORT, download={"bandwidth": 12345678})
    runner = StubRunner(result=parse_speedtest_output(json.dumps(report)))
    client = create_web_app(agent_config, runner=runner).test_client()

    body = client.post("/speedtest", headers=bearer()).get_json()

    assert body["download_speed_MB_s"] == pytest.approx(1.543209375)


@pytest.mark.parametrize(
    "headers, message",
    [
        ({}, "Authorization header is required"),
        ({"Authorization": ""}, "Authorization header is required"),
        ({"Authorization": TOKEN}, "Invalid Authorization header format"),
        ({"Authorization": f"Basic {TOKEN}"}, "Invalid Authorization header format"),
        ({"Authorization": f"bearer {TOKEN}"}, "Invalid Authorization header format"),
        ({"Authorization": "Bearer "}, "Invalid Authorization header format"),
        ({"Authorization": f"Bearer {TOKEN} extra"}, "Invalid Authorization header format"),
        ({"Authorization": f"Bearer Bearer {TOKEN}"}, "Invalid Authorization header format"),
        ({"Authorization": f"xBearer {TOKEN}"}, "Invalid Authorization header format"),
        ({"Authorization": "Bearer wrong-token"}, "Invalid token"),
        ({"Authorization": f"Bearer {TOKEN.upper()}"}, "Invalid token"),
    ],
)
def test_rejected_requests_never_run_speedtest(client, stub_runner, headers, message):
    response = client.post("/speedtest", headers=headers)

    assert response.status_code == 401
    assert response.mimetype == "text/plain"
    assert response.get_data(as_text=True).strip() == message
    assert stub_runner.calls == 0


def test_subprocess_failure(agent_config):
    error = MeasurementError(MeasurementErrorKind.SUBPROCESS_FAILURE, "exit status 1", output="boom")
    client = create_web_app(agent_config, runner=StubRunner(error=error)).test_client()

    response = client.post("/speedtest", headers=bearer())

    assert response.status_code == 500
    assert response.get_json() == {"error": "Failed to execute speedtest-cli: exit status 1"}


def test_parse_failure_from_malformed_output(agent_config, fake_speedtest):
    fake_speedtest(output="{definitely not json")
    client = create_web_app(agent_config).test_client()

    response = client.post("/speedtest", headers=bearer())

    assert response.status_code == 500
    body = response.get_json()
    assert body["error"].startswith("Failed to parse speedtest-cli output: ")
    assert set(body) == {"error"}


def test_non_zero_exit_through_real_runner(agent_config, fake_speedtest):
    fake_speedtest(output="license not accepted", returncode=1)
    client = create_web_app(agent_config).test_client()

    response = client.post("/speedtest", headers=bearer())

    assert response.status_code == 500
    assert "Failed to execute speedtest-cli" in response.get_json()["error"]


def test_only_post_is_routed(client, stub_runner):
    response = client.get("/speedtest", headers=bearer())

    assert response.status_code == 405
    assert stub_runner.calls == 0


def test_injected_logger_receives_events(agent_config, stub_runner, caplog):
    logger = logging.getLogger("tests.agent")
    client = create_web_app(agent_config, runner=stub_runner, logger=logger).test_client()

    with caplog.at_level(logging.INFO, logger="tests.agent"):
        client.post("/speedtest", headers=bearer())

    messages = [record.getMessage() for record in caplog.records if record.name == "tests.agent"]
    assert "Request authenticated. Executing speed test..." in messages
    assert "Speed test successful. Download: 10.00 MB/s, Upload: 1.00 MB/s" in messages


def test_uses_configured_token_verbatim(stub_runner):
    config = AgentConfig(auth_token="Tok:en/=", port=8080)
    client = create_web_app(config, runner=stub_runner).test_client()

    assert client.post("/speedtest", headers=bearer("Tok:en/=")).status_code == 200
    assert client.post("/speedtest", headers=bearer("Tok:en/")).status_code == 401


def test_authenticate_kinds():
    authenticate(f"Bearer {TOKEN}", TOKEN)
    for header, kind in [
        (None, AuthErrorKind.MISSING_HEADER),
        ("Token abc", AuthErrorKind.MALFORMED_HEADER),
        ("Bearer abc", AuthErrorKind.TOKEN_MISMATCH),
    ]:
        with pytest.raises(AuthError) as excinfo:
            authenticate(header, TOKEN)
        assert excinfo.value.kind is kind


def test_non_finite_latency_is_rejected(agent_config, fake_speedtest):
    fake_speedtest(output=json.dumps(dict(SAMPLE_REPORT, ping={"latency": float("nan")})))
    client = create_web_app(agent_config).test_client()

    response = client.post("/speedtest", headers=bearer())

    assert response.status_code == 500
    body = json.loads(response.get_data(as_text=True))
    assert body["error"].startswith("Failed to parse speedtest-cli output: ")


@pytest.mark.parametrize(
    "proxy_headers, expected_addr",
    [(True, "203.0.113.7"), (False, "127.0.0.1")],
)
def test_forwarded_client_address(stub_runner, caplog, proxy_headers, expected_addr):
    config = AgentConfig(auth_token=TOKEN, port=8080, reverse_proxy_headers=proxy_headers)
    logger = logging.getLogger("tests.proxy")
    client = create_web_app(config, runner=stub_runner, logger=logger).test_client()

    with caplog.at_level(logging.WARNING, logger="tests.proxy"):
        client.post("/speedtest", headers={"X-Forwarded-For": "203.0.113.7"})

    messages = [record.getMessage() for record in caplog.records if record.name == "tests.proxy"]
    assert messages == [f"Rejected request from {expected_addr}: missing_header"]
