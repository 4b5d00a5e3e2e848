"""
gateway/ — Gateway Protocol Client

WebSocket client for the agent gateway: frame protocol, challenge/response
handshake, correlated requests and the event stream the monitor consumes.
"""

from crabwalk.gateway.protocol import (
    EventFrame,
    HelloOk,
    RequestFrame,
    ResponseFrame,
    SessionInfo,
    parse_frame,
)
from crabwalk.gateway.gateway_client import ConnectionState, GatewayClient

__all__ = [
    "ConnectionState",
    "EventFrame",
    "GatewayClient",
    "HelloOk",
    "RequestFrame",
    "ResponseFrame",
    "SessionInfo",
    "parse_frame",
]
