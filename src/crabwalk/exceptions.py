"""
exceptions.py — Crabwalk Unified Error Hierarchy

All Crabwalk-specific exceptions live here. The gateway client and the
protocol layer raise typed subclasses of CrabwalkError — never bare Exception.

Import from here, not from individual modules:
    from crabwalk.exceptions import Disconnected, RequestTimeout

Hierarchy:
    CrabwalkError
    ├── GatewayError
    │   ├── ConnectionTimeout
    │   ├── GatewayConnectionError
    │   ├── AuthFailure
    │   ├── Disconnected
    │   ├── RequestTimeout
    │   └── RemoteError
    └── ProtocolParseError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class CrabwalkError(Exception):
    """Base class for all Crabwalk exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Gateway connection layer
# ─────────────────────────────────────────────────────────────────────────────

class GatewayError(CrabwalkError):
    """Base for errors raised by the gateway client."""


class ConnectionTimeout(GatewayError):
    """No handshake completed within the connect deadline."""

    def __init__(self, url: str, timeout: float) -> None:
        self.url = url
        self.timeout = timeout
        super().__init__(
            f"Connection timeout after {timeout:g}s — is the gateway running at {url}?"
        )


class GatewayConnectionError(GatewayError):
    """Transport-level failure: socket could not be opened or closed mid-handshake."""


class AuthFailure(GatewayError):
    """The gateway rejected the connect handshake."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"Gateway rejected handshake ({code}): {message}")


class Disconnected(GatewayError):
    """Operation attempted while the client is not connected."""

    def __init__(self, message: str = "Not connected") -> None:
        super().__init__(message)


class RequestTimeout(GatewayError):
    """No matching response arrived before the request deadline."""

    def __init__(self, method: str, request_id: str, timeout: float) -> None:
        self.method = method
        self.request_id = request_id
        self.timeout = timeout
        super().__init__(
            f"Request '{method}' ({request_id}) timed out after {timeout:g}s"
        )


class RemoteError(GatewayError):
    """The gateway answered a request with ok=false."""

    def __init__(self, code: str, message: str, method: Optional[str] = None) -> None:
        self.code = code
        self.message = message
        self.method = method
        super().__init__(f"{code}: {message}" if code else message)


# ─────────────────────────────────────────────────────────────────────────────
# Protocol layer
# ─────────────────────────────────────────────────────────────────────────────

class ProtocolParseError(CrabwalkError):
    """An inbound frame could not be decoded. Non-fatal: the frame is dropped."""

    def __init__(self, reason: str, raw: object = None) -> None:
        self.reason = reason
        self.raw = raw
        super().__init__(f"Malformed frame: {reason}")
