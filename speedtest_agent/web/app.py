"""Flask application factory and the authenticated speed test route."""

from __future__ import annotations

import hmac
import logging
from typing import Callable, Optional

from flask import Flask, Response, jsonify, request
from werkzeug.middleware.proxy_fix import ProxyFix

from ..config import AgentConfig
from ..errors import AuthError, AuthErrorKind, MeasurementError, MeasurementErrorKind
from ..measurements.models import AgentResponse, RawMeasurement
from ..measurements.speedtest_runner import SpeedtestRunner, bandwidth_to_megabytes_per_second

LOGGER = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

FAILURE_PREFIXES = {
    MeasurementErrorKind.SUBPROCESS_FAILURE: "Failed to execute speedtest-cli",
    MeasurementErrorKind.PARSE_FAILURE: "Failed to parse speedtest-cli output",
}


def authenticate(header: Optional[str], expected_token: str) -> None:
    """Raise AuthError unless the header is exactly `Bearer <expected_token>`."""

    if not header:
        raise AuthError(AuthErrorKind.MISSING_HEADER)
    parts = header.split(BEARER_PREFIX)
    if len(parts) != 2 or parts[0] != "" or not parts[1] or len(parts[1].split()) != 1:
        raise AuthError(AuthErrorKind.MALFORMED_HEADER)
    if not hmac.compare_digest(parts[1].encode("utf-8"), expected_token.encode("utf-8")):
        raise AuthError(AuthErrorKind.TOKEN_MISMATCH)


def summarize(measurement: RawMeasurement) -> AgentResponse:
    return AgentResponse(
        download_speed_MB_s=bandwidth_to_megabytes_per_second(measurement.download_bandwidth),
        upload_speed_MB_s=bandwidth_to_megabytes_per_second(measurement.upload_bandwidth),
        latency_ms=measurement.ping_latency_ms,
        server_country=measurement.server_country,
        server_host=measurement.server_host,
    )


def create_web_app(
    config: AgentConfig,
    runner: Optional[Callable[[], RawMeasurement]] = None,
    logger: Optional[logging.Logger] = None,
) -> Flask:
    app = Flask(__name__)
    log = logger or LOGGER
    run_measurement = runner or SpeedtestRunner(config.speedtest)
    auth_token = config.auth_token

    if config.reverse_proxy_headers:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore

    @app.post("/speedtest")
    def api_speedtest():
        try:
            authenticate(request.headers.get("Authorization"), auth_token)
        except AuthError as exc:
            log.warning("Rejected request from %s: %s", request.remote_addr, exc.kind.value)
            return Response(f"{exc}\n", status=401, mimetype="text/plain")

        log.info("Request authenticated. Executing speed test...")
        try:
            measurement = run_measurement()
        except MeasurementError as exc:
            if exc.kind is MeasurementErrorKind.SUBPROCESS_FAILURE:
                log.error("Speedtest command failed: %s\nOutput: %s", exc, exc.output)
            else:
                log.error("Failed to parse speedtest JSON: %s", exc)
            message = f"{FAILURE_PREFIXES[exc.kind]}: {exc}"
            return jsonify(AgentResponse.failure(message).to_dict()), 500

        response = summarize(measurement)
        log.info(
            "Speed test successful. Download: %.2f MB/s, Upload: %.2f MB/s",
            response.download_speed_MB_s,
            response.upload_speed_MB_s,
        )
        return jsonify(response.to_dict())

    return app
