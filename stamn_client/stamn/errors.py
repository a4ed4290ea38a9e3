"""
Error taxonomy for the Stamn agent client.

Transport and protocol failures are recovered inside the client
(reconnect / drop the frame). Denials and timeouts are surfaced to the
caller of the specific action. Configuration errors stop startup.
"""

from typing import Optional


class StamnError(Exception):
    """Base class for all Stamn client errors."""


class TransportError(StamnError):
    """Connect failed, socket error, or unexpected close."""


class ConnectionLostError(TransportError):
    """The connection went away while a request was outstanding."""

    code = "connection_lost"


class ProtocolError(StamnError):
    """Malformed or unrecognized inbound frame."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class ActionDenied(StamnError):
    """The server explicitly refused an action."""

    def __init__(self, code: str, reason: str):
        super().__init__(f"{reason} ({code})")
        self.code = code
        self.reason = reason


class RequestTimeout(StamnError):
    """No server reply to a request/await action within the deadline."""

    code = "timeout"


class ConfigurationError(StamnError):
    """Missing or invalid configuration (e.g. credentials)."""


class InvalidDirection(ValueError):
    """A move direction that is not one of up/down/left/right."""

    def __init__(self, value: object):
        super().__init__(
            f"Invalid direction {value!r}. Use: up, down, left, right."
        )
        self.value = value
