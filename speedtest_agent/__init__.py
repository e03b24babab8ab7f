"""Application bootstrap helpers."""

from __future__ import annotations

import logging

from flask import Flask
from werkzeug.serving import BaseWSGIServer, make_server

from .config import DEFAULT_CONFIG_PATH, AgentConfig, load_config
from .errors import ServerStartError
from .logging_setup import configure_logging
from .web.app import create_web_app

LOGGER = logging.getLogger(__name__)


class ApplicationContext:
    """Holds the loaded configuration and the app built from it."""

    def __init__(self, config: AgentConfig):
        self.config = config
        configure_logging(config.logging)
        self.web_app: Flask = create_web_app(config=config)

    def make_server(self) -> BaseWSGIServer:
        address = f"{self.config.host}:{self.config.port}"
        try:
            return make_server(self.config.host, self.config.port, self.web_app, threaded=True)
        except OSError as exc:
            raise ServerStartError(f"cannot listen on {address}: {exc}") from exc
        except SystemExit as exc:
            # werkzeug reports bind errors on stderr and exits instead of raising
            raise ServerStartError(f"cannot listen on {address}") from exc

    def serve(self) -> None:
        server = self.make_server()
        LOGGER.info("Starting speedtest-agent on %s:%d", self.config.host, self.config.port)
        try:
            server.serve_forever()
        finally:
            server.server_close()


def bootstrap(config_path: str = DEFAULT_CONFIG_PATH) -> ApplicationContext:
    """Load configuration and wire dependencies."""

    return ApplicationContext(load_config(config_path))
