"""
MODULE OVERVIEW:
The gateway error taxonomy.

WHAT IS HAPPENING HERE:
Transport failures are recoverable and feed the reconnect policy. Decode
failures are reported and the connection stays open. Reconnect exhaustion is
the only fatal error. Callers see all of them on the `error` category, and an
in-flight `connect()` raises the ones that happen before the handshake.
"""
from typing import Any


class GatewayError(Exception):
    """Base class for everything the gateway client raises or reports."""


class GatewayResolveError(GatewayError):
    def __init__(self, message: str, code: int | None = None):
        super().__init__(f"Failed to get gateway URL: {message}")
        self.code = code


class GatewayConnectionError(GatewayError):
    """The transport was refused or closed before the handshake completed."""


class DecodeError(GatewayError):
    def __init__(self, message: str, raw: Any = None):
        super().__init__(f"Failed to parse message: {message}")
        self.raw = raw


class HandshakeError(DecodeError):
    """The HELLO payload was malformed or carried a non-zero code."""

    def __init__(self, message: str, raw: Any = None):
        GatewayError.__init__(self, f"Handshake failed: {message}")
        self.raw = raw


class ReconnectExhaustedError(GatewayError):
    def __init__(self, attempts: int):
        super().__init__(f"Max reconnect attempts reached ({attempts})")
        self.attempts = attempts
