"""
gateway/protocol.py — Gateway WebSocket Frame Protocol (v3)

Typed frame schema for all client↔gateway communication.
Every frame is a JSON object tagged by its `type` field:

    {"type": "req",   "id": "...", "method": "...", "params": {...}}
    {"type": "res",   "id": "...", "ok": true, "payload": ...}
    {"type": "res",   "id": "...", "ok": false, "error": {"code", "message"}}
    {"type": "event", "event": "...", "payload": ..., "seq": 1,
                      "stateVersion": {"presence": 1, "health": 1}}
    {"type": "hello-ok", "protocol": 3, "snapshot": {...}, "features": {...}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from crabwalk.exceptions import ProtocolParseError

PROTOCOL_VERSION = 3

CHALLENGE_EVENT = "connect.challenge"
HELLO_OK = "hello-ok"


# ─────────────────────────────────────────────────────────────────────────────
# Frame types
# ─────────────────────────────────────────────────────────────────────────────

class FrameType(str, Enum):
    """All frame tags understood by the client."""

    REQUEST  = "req"
    RESPONSE = "res"
    EVENT    = "event"
    HELLO_OK = HELLO_OK


@dataclass
class ErrorShape:
    code: str
    message: str


@dataclass
class StateVersion:
    presence: int = 0
    health: int = 0


@dataclass
class RequestFrame:
    """Client → gateway request envelope."""
    id: str
    method: str
    params: Optional[dict[str, Any]] = None

    def to_json(self) -> str:
        """Serialize to JSON string, dropping a missing params object."""
        d: dict[str, Any] = {"type": FrameType.REQUEST.value, "id": self.id, "method": self.method}
        if self.params is not None:
            d["params"] = self.params
        return json.dumps(d)


@dataclass
class ResponseFrame:
    id: str
    ok: bool
    payload: Any = None
    error: Optional[ErrorShape] = None


@dataclass
class EventFrame:
    event: str
    payload: Any = None
    seq: Optional[int] = None
    state_version: Optional[StateVersion] = None


@dataclass
class HelloOk:
    """Successful handshake result."""
    protocol: int
    snapshot: dict[str, Any] = field(default_factory=dict)
    features: dict[str, Any] = field(default_factory=dict)

    @property
    def methods(self) -> list[str]:
        return list(self.features.get("methods") or [])

    @property
    def events(self) -> list[str]:
        return list(self.features.get("events") or [])

    @property
    def presence_count(self) -> int:
        presence = self.snapshot.get("presence")
        return len(presence) if isinstance(presence, list) else 0


Frame = Union[RequestFrame, ResponseFrame, EventFrame, HelloOk]


# ─────────────────────────────────────────────────────────────────────────────
# Handshake payloads
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class ChallengePayload:
    nonce: str
    ts: int


@dataclass
class ClientInfo:
    id: str = "clawdbot"
    display_name: str = "Crabwalk Monitor"
    version: str = "0.1.0"
    platform: str = "python"
    mode: str = "bot"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "version": self.version,
            "platform": self.platform,
            "mode": self.mode,
        }


def create_connect_params(
    token: Optional[str] = None,
    client: Optional[ClientInfo] = None,
) -> dict[str, Any]:
    """Build the params object of the `connect` request."""
    params: dict[str, Any] = {
        "minProtocol": PROTOCOL_VERSION,
        "maxProtocol": PROTOCOL_VERSION,
        "client": (client or ClientInfo()).to_dict(),
    }
    if token:
        params["auth"] = {"token": token}
    return params


# ─────────────────────────────────────────────────────────────────────────────
# sessions.list
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class SessionInfo:
    """One entry of a `sessions.list` result, as reported by the gateway."""
    key: str
    agent_id: str = "unknown"
    created_at: int = 0
    last_activity_at: int = 0
    message_count: int = 0
    last_message: Any = None
    status: Optional[str] = None
    spawned_by: Optional[str] = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SessionInfo":
        if not isinstance(d, dict) or not isinstance(d.get("key"), str):
            raise ProtocolParseError("session entry without a key", d)
        return cls(
            key=d["key"],
            agent_id=d.get("agentId") or "unknown",
            created_at=_as_int(d.get("createdAt")),
            last_activity_at=_as_int(d.get("lastActivityAt")),
            message_count=_as_int(d.get("messageCount")),
            last_message=d.get("lastMessage"),
            status=d.get("status"),
            spawned_by=d.get("spawnedBy"),
        )


def sessions_list_params(
    limit: Optional[int] = None,
    active_minutes: Optional[int] = None,
    include_last_message: Optional[bool] = None,
    agent_id: Optional[str] = None,
) -> dict[str, Any]:
    """Build `sessions.list` params, omitting unset filters."""
    params = {
        "limit": limit,
        "activeMinutes": active_minutes,
        "includeLastMessage": include_last_message,
        "agentId": agent_id,
    }
    return {k: v for k, v in params.items() if v is not None}


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────

def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    return default


def _parse_hello(d: dict[str, Any]) -> HelloOk:
    protocol = d.get("protocol")
    if not isinstance(protocol, int):
        raise ProtocolParseError("hello-ok without protocol version", d)
    return HelloOk(
        protocol=protocol,
        snapshot=d.get("snapshot") or {},
        features=d.get("features") or {},
    )


def as_hello_ok(payload: Any) -> Optional[HelloOk]:
    """Return the HelloOk carried by a response payload, if it is one."""
    if isinstance(payload, dict) and payload.get("type") == HELLO_OK:
        try:
            return _parse_hello(payload)
        except ProtocolParseError:
            return None
    return None


def parse_frame(raw: str | bytes) -> Frame:
    """
    Decode one inbound text frame.

    Raises ProtocolParseError for invalid JSON, a non-object, an unknown
    `type`, or a frame missing its required fields.
    """
    try:
        d = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolParseError(f"invalid JSON ({e})", raw) from e
    if not isinstance(d, dict):
        raise ProtocolParseError("frame is not a JSON object", raw)

    kind = d.get("type")
    if kind == FrameType.EVENT.value:
        if not isinstance(d.get("event"), str):
            raise ProtocolParseError("event frame without event name", raw)
        sv = d.get("stateVersion")
        return EventFrame(
            event=d["event"],
            payload=d.get("payload"),
            seq=d.get("seq") if isinstance(d.get("seq"), int) else None,
            state_version=(
                StateVersion(
                    presence=_as_int(sv.get("presence")),
                    health=_as_int(sv.get("health")),
                )
                if isinstance(sv, dict)
                else None
            ),
        )

    if kind == FrameType.RESPONSE.value:
        if not isinstance(d.get("id"), str):
            raise ProtocolParseError("response frame without id", raw)
        err = d.get("error")
        return ResponseFrame(
            id=d["id"],
            ok=bool(d.get("ok")),
            payload=d.get("payload"),
            error=(
                ErrorShape(
                    code=str(err.get("code", "")),
                    message=str(err.get("message", "Request failed")),
                )
                if isinstance(err, dict)
                else None
            ),
        )

    if kind == FrameType.HELLO_OK.value:
        return _parse_hello(d)

    if kind == FrameType.REQUEST.value:
        if not isinstance(d.get("id"), str) or not isinstance(d.get("method"), str):
            raise ProtocolParseError("request frame without id/method", raw)
        params = d.get("params")
        return RequestFrame(
            id=d["id"],
            method=d["method"],
            params=params if isinstance(params, dict) else None,
        )

    raise ProtocolParseError(f"unknown frame type {kind!r}", raw)


def parse_challenge(payload: Any) -> ChallengePayload:
    if not isinstance(payload, dict):
        return ChallengePayload(nonce="", ts=0)
    return ChallengePayload(
        nonce=str(payload.get("nonce", "")),
        ts=_as_int(payload.get("ts")),
    )
