"""
pygnunet error types.

Every public operation either succeeds or raises exactly one of these.
"Not found" style answers from the daemon are subclasses of NotFound so
callers can tell them apart from transport failures.
"""

from typing import Any, Optional


class GNUnetError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class ConfigError(GNUnetError):
    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        line: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        location = source or "<config>"
        if line is not None:
            location = f"{location}:{line}"
        super().__init__("config_error", f"{location}: {message}", details)
        self.source = source
        self.line = line


class ConnectError(GNUnetError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("connect_error", message, details)


class ConnectionLost(GNUnetError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("connection_lost", message, details)


class MalformedMessage(GNUnetError):
    def __init__(self, message: str, code: str = "malformed_message", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class UnexpectedMessage(MalformedMessage):
    """A well-framed message that makes no sense at this point of the exchange."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code="unexpected_message", details=details)


class NotFound(GNUnetError):
    def __init__(self, message: str, code: str = "not_found", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class ProtocolNotFound(NotFound):
    """The configuration knows no service by that name."""

    def __init__(self, service: str):
        super().__init__(f"No configuration section for service '{service}'", "protocol_not_found", {"service": service})


class ZoneNotConfigured(NotFound):
    """A subsystem name was given as zone but the daemon has no default ego for it."""

    def __init__(self, subsystem: str, details: Optional[dict[str, Any]] = None):
        super().__init__(f"No default zone configured for '{subsystem}'", "zone_not_configured", details)
        self.subsystem = subsystem
