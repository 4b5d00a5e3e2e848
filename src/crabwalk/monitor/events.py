"""
monitor/events.py — Typed Gateway Events

Raw event payloads are heterogeneous JSON. decode_event() turns one
EventFrame into exactly one tagged variant, each with its own typed
payload, so the translator can dispatch on the variant type instead of
poking at string fields.

    chat                   → ChatEvent
    agent / lifecycle      → LifecycleEvent
    agent / assistant      → AssistantEvent
    agent / tool           → ToolEvent
    agent / exec           → ExecEvent
    session, session.status → SessionPresenceEvent
    anything else          → UnknownEvent
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from crabwalk.gateway.protocol import EventFrame


class ChatState(str, Enum):
    START   = "start"
    DELTA   = "delta"
    FINAL   = "final"
    ABORTED = "aborted"
    ERROR   = "error"


class LifecyclePhase(str, Enum):
    START = "start"
    END   = "end"
    ERROR = "error"


class ToolPhase(str, Enum):
    CALL   = "call"
    RESULT = "result"


class ExecPhase(str, Enum):
    START    = "start"
    OUTPUT   = "output"
    COMPLETE = "complete"


_TOOL_PHASES = {
    "start": ToolPhase.CALL,
    "call": ToolPhase.CALL,
    "result": ToolPhase.RESULT,
    "end": ToolPhase.RESULT,
}

_EXEC_PHASES = {
    "start": ExecPhase.START,
    "output": ExecPhase.OUTPUT,
    "complete": ExecPhase.COMPLETE,
    "end": ExecPhase.COMPLETE,
    "exit": ExecPhase.COMPLETE,
}

SESSION_EVENTS = frozenset({"session", "session.status"})


# ─────────────────────────────────────────────────────────────────────────────
# Variants
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ChatEvent:
    run_id: str
    session_key: str
    seq: int
    state: ChatState
    ts: Optional[int] = None
    text: Optional[str] = None
    error_message: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    stop_reason: Optional[str] = None
    duration_ms: Optional[int] = None


@dataclass(frozen=True)
class LifecycleEvent:
    run_id: str
    session_key: str
    seq: int
    phase: LifecyclePhase
    ts: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class AssistantEvent:
    run_id: str
    session_key: str
    seq: int
    ts: Optional[int] = None
    text: Optional[str] = None


@dataclass(frozen=True)
class ToolEvent:
    run_id: str
    session_key: str
    seq: int
    phase: ToolPhase
    tool_name: str
    tool_call_id: Optional[str] = None
    ts: Optional[int] = None
    args: Any = None
    result: Optional[str] = None
    is_error: bool = False
    duration_ms: Optional[int] = None


@dataclass(frozen=True)
class ExecEvent:
    run_id: str
    session_key: str
    seq: int
    phase: ExecPhase
    exec_id: str
    ts: Optional[int] = None
    pid: Optional[int] = None
    command: Optional[str] = None
    stream: str = "stdout"
    text: str = ""
    exit_code: Optional[int] = None
    failed: bool = False


@dataclass(frozen=True)
class SessionPresenceEvent:
    session_key: str
    status: Optional[str] = None
    spawned_by: Optional[str] = None
    ts: Optional[int] = None


@dataclass(frozen=True)
class UnknownEvent:
    event: str
    reason: str = ""


GatewayEvent = Union[
    ChatEvent,
    LifecycleEvent,
    AssistantEvent,
    ToolEvent,
    ExecEvent,
    SessionPresenceEvent,
    UnknownEvent,
]


# ─────────────────────────────────────────────────────────────────────────────
# Field helpers
# ─────────────────────────────────────────────────────────────────────────────

def _opt_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def extract_text(message: Any) -> Optional[str]:
    """
    Pull displayable text out of a chat message.

    Accepts a plain string, {"text": ...}, {"content": "..."} or
    {"content": [{"type": "text", "text": ...}, ...]}.
    """
    if message is None:
        return None
    if isinstance(message, str):
        return message
    if isinstance(message, list):
        parts = [extract_text(part) for part in message]
        joined = "".join(p for p in parts if p)
        return joined or None
    if isinstance(message, dict):
        if isinstance(message.get("text"), str):
            return message["text"]
        content = message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            texts = [
                part.get("text", "")
                for part in content
                if isinstance(part, dict) and part.get("type", "text") == "text"
            ]
            joined = "".join(t for t in texts if isinstance(t, str))
            return joined or None
    return None


def _session_key(payload: dict[str, Any], data: Optional[dict[str, Any]] = None) -> str:
    key = payload.get("sessionKey")
    if not isinstance(key, str) and data is not None:
        key = data.get("sessionKey")
    return key if isinstance(key, str) else ""


# ─────────────────────────────────────────────────────────────────────────────
# Decoders
# ─────────────────────────────────────────────────────────────────────────────

def _decode_chat(payload: dict[str, Any]) -> GatewayEvent:
    try:
        state = ChatState(payload.get("state"))
    except ValueError:
        return UnknownEvent("chat", f"unknown chat state {payload.get('state')!r}")

    usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
    return ChatEvent(
        run_id=_opt_str(payload.get("runId")) or "",
        session_key=_session_key(payload),
        seq=_opt_int(payload.get("seq")) or 0,
        state=state,
        ts=_opt_int(payload.get("ts")),
        text=extract_text(payload.get("message")),
        error_message=_opt_str(payload.get("errorMessage")),
        input_tokens=_opt_int(usage.get("inputTokens", usage.get("input"))),
        output_tokens=_opt_int(usage.get("outputTokens", usage.get("output"))),
        stop_reason=_opt_str(payload.get("stopReason")),
        duration_ms=_opt_int(payload.get("durationMs")),
    )


def _decode_agent(payload: dict[str, Any]) -> GatewayEvent:
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    stream = payload.get("stream")
    run_id = _opt_str(payload.get("runId")) or ""
    session_key = _session_key(payload, data)
    seq = _opt_int(payload.get("seq")) or 0
    ts = _opt_int(payload.get("ts"))
    phase = data.get("phase")

    if stream == "lifecycle":
        try:
            lifecycle_phase = LifecyclePhase(phase)
        except ValueError:
            return UnknownEvent("agent", f"unknown lifecycle phase {phase!r}")
        return LifecycleEvent(
            run_id=run_id,
            session_key=session_key,
            seq=seq,
            phase=lifecycle_phase,
            ts=ts,
            error=_opt_str(data.get("error")),
        )

    if stream == "assistant":
        return AssistantEvent(
            run_id=run_id,
            session_key=session_key,
            seq=seq,
            ts=ts,
            text=extract_text(data.get("text", data.get("delta"))),
        )

    if stream == "tool":
        tool_phase = _TOOL_PHASES.get(phase)
        if tool_phase is None:
            return UnknownEvent("agent", f"unhandled tool phase {phase!r}")
        result = data.get("result")
        return ToolEvent(
            run_id=run_id,
            session_key=session_key,
            seq=seq,
            phase=tool_phase,
            tool_name=_opt_str(data.get("name")) or "unknown",
            tool_call_id=_opt_str(data.get("toolCallId")),
            ts=ts,
            args=data.get("args"),
            result=extract_text(result) if result is not None else None,
            is_error=bool(data.get("isError")),
            duration_ms=_opt_int(data.get("durationMs")),
        )

    if stream == "exec":
        exec_phase = _EXEC_PHASES.get(phase)
        exec_id = _opt_str(data.get("execId") or data.get("id") or data.get("toolCallId"))
        if exec_phase is None or not exec_id:
            return UnknownEvent("agent", f"unusable exec event (phase={phase!r})")
        text = data.get("text", data.get("chunk", ""))
        return ExecEvent(
            run_id=run_id,
            session_key=session_key,
            seq=seq,
            phase=exec_phase,
            exec_id=exec_id,
            ts=ts if ts is not None else _opt_int(data.get("ts")),
            pid=_opt_int(data.get("pid")),
            command=_opt_str(data.get("command")),
            stream="stderr" if data.get("stream") == "stderr" else "stdout",
            text=text if isinstance(text, str) else "",
            exit_code=_opt_int(data.get("exitCode")),
            failed=data.get("status") == "failed",
        )

    return UnknownEvent("agent", f"unhandled agent stream {stream!r}")


def _decode_session(payload: dict[str, Any]) -> GatewayEvent:
    key = payload.get("sessionKey", payload.get("key"))
    if not isinstance(key, str) or not key:
        return UnknownEvent("session", "session event without key")
    return SessionPresenceEvent(
        session_key=key,
        status=_opt_str(payload.get("status")),
        spawned_by=_opt_str(payload.get("spawnedBy")),
        ts=_opt_int(payload.get("ts", payload.get("lastActivityAt"))),
    )


def decode_event(frame: EventFrame) -> GatewayEvent:
    """Classify one event frame into its typed variant."""
    payload = frame.payload
    if not isinstance(payload, dict):
        return UnknownEvent(frame.event, "payload is not an object")
    if frame.event == "chat":
        return _decode_chat(payload)
    if frame.event == "agent":
        return _decode_agent(payload)
    if frame.event in SESSION_EVENTS:
        return _decode_session(payload)
    return UnknownEvent(frame.event)
