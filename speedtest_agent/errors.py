"""Error taxonomy for the agent."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ConfigErrorKind(Enum):
    NOT_FOUND = "not_found"
    IO_FAILURE = "io_failure"
    PARSE_FAILURE = "parse_failure"
    INVALID_CONFIG = "invalid_config"


class AuthErrorKind(Enum):
    MISSING_HEADER = "missing_header"
    MALFORMED_HEADER = "malformed_header"
    TOKEN_MISMATCH = "token_mismatch"


class MeasurementErrorKind(Enum):
    SUBPROCESS_FAILURE = "subprocess_failure"
    PARSE_FAILURE = "parse_failure"


class AgentError(Exception):
    """Base class for every error raised by the agent."""


class ConfigError(AgentError):
    """Configuration could not be loaded. Fatal at startup."""

    def __init__(self, kind: ConfigErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class AuthError(AgentError):
    """Request failed bearer token authentication."""

    messages = {
        AuthErrorKind.MISSING_HEADER: "Authorization header is required",
        AuthErrorKind.MALFORMED_HEADER: "Invalid Authorization header format",
        AuthErrorKind.TOKEN_MISMATCH: "Invalid token",
    }

    def __init__(self, kind: AuthErrorKind):
        super().__init__(self.messages[kind])
        self.kind = kind


class MeasurementError(AgentError):
    """The speed test could not be run or its report could not be read."""

    def __init__(self, kind: MeasurementErrorKind, message: str, output: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.output = output


class ServerStartError(AgentError):
    """The HTTP listener could not be bound. Fatal at startup."""
