"""
monitor/translator.py — Event → Domain Delta Translation

Pure functions only. translate_event() maps one raw event frame to zero or
more deltas; it performs no I/O, keeps no history and reads no clock — the
caller passes the receive time — so identical input always yields
identical output.

Action ids are derived from the run so that a streamed reply and its
terminal state collapse onto one timeline entry:

    <runId>:start                 run started
    <runId>:reply                 streaming → complete | aborted | error
    <runId>:tool:<callId>:call    tool invoked
    <runId>:tool:<callId>:result  tool returned
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Optional

from crabwalk.gateway.protocol import EventFrame, SessionInfo
from crabwalk.monitor.events import (
    AssistantEvent,
    ChatEvent,
    ChatState,
    ExecEvent,
    ExecPhase,
    GatewayEvent,
    LifecycleEvent,
    LifecyclePhase,
    SessionPresenceEvent,
    ToolEvent,
    ToolPhase,
    UnknownEvent,
    decode_event,
)
from crabwalk.monitor.models import (
    Action,
    ActionAppend,
    ActionType,
    Delta,
    ExecProcess,
    ExecStatus,
    ExecUpdate,
    OutputAppend,
    OutputChunk,
    OutputStream,
    Session,
    SessionPatch,
    SessionStatus,
)

UNKNOWN = "unknown"

DEFAULT_OUTPUT_CAP = 64_000  # characters kept per exec process

_THINKING_STATUSES = frozenset({"thinking", "running", "busy", "streaming"})


# ─────────────────────────────────────────────────────────────────────────────
# Session keys
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SessionKeyParts:
    agent_id: str
    platform: str
    recipient: str
    is_group: bool


def parse_session_key(key: str) -> SessionKeyParts:
    """
    Decompose a session key.

        agent:<agentId>:<platform>:<recipient>
        agent:<agentId>:<platform>:group:<recipient>

    Recipients may themselves contain ':' (they are re-joined). Missing
    segments become "unknown".

    A direct recipient named literally "group" or starting with "group:"
    cannot be told apart from the group form: "agent:a:p:group" decodes as a
    group with recipient "unknown", and "agent:a:p:group:x" as group "x".
    """
    parts = key.split(":")
    agent_id = parts[1] if len(parts) > 1 and parts[1] else UNKNOWN
    platform = parts[2] if len(parts) > 2 and parts[2] else UNKNOWN
    is_group = len(parts) > 3 and parts[3] == "group"
    if is_group:
        recipient = ":".join(parts[4:])
    else:
        recipient = ":".join(parts[3:])
    return SessionKeyParts(
        agent_id=agent_id,
        platform=platform,
        recipient=recipient or UNKNOWN,
        is_group=is_group,
    )


def map_session_status(raw: Optional[str]) -> SessionStatus:
    """Map a gateway-reported status string onto idle | active | thinking."""
    value = (raw or "").strip().lower()
    if value in _THINKING_STATUSES:
        return SessionStatus.THINKING
    if value == SessionStatus.ACTIVE.value:
        return SessionStatus.ACTIVE
    return SessionStatus.IDLE


def session_info_to_monitor(info: SessionInfo) -> Session:
    """Build a monitor Session from a `sessions.list` entry."""
    parts = parse_session_key(info.key)
    agent_id = parts.agent_id if parts.agent_id != UNKNOWN else (info.agent_id or UNKNOWN)
    return Session(
        key=info.key,
        agent_id=agent_id,
        platform=parts.platform,
        recipient=parts.recipient,
        is_group=parts.is_group,
        status=map_session_status(info.status),
        last_activity_at=info.last_activity_at,
        spawned_by=info.spawned_by,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Per-variant translation
# ─────────────────────────────────────────────────────────────────────────────

def _patch(session_key: str, status: SessionStatus, ts: int) -> list[Delta]:
    if not session_key:
        return []
    return [SessionPatch(key=session_key, status=status, last_activity_at=ts)]


def _translate_chat(event: ChatEvent, received_at: int) -> list[Delta]:
    ts = event.ts if event.ts is not None else received_at

    if event.state is ChatState.START:
        action = Action(
            id=f"{event.run_id}:start",
            run_id=event.run_id,
            session_key=event.session_key,
            seq=event.seq,
            type=ActionType.START,
            timestamp=ts,
        )
        return [ActionAppend(action), *_patch(event.session_key, SessionStatus.THINKING, ts)]

    action_type = {
        ChatState.DELTA: ActionType.STREAMING,
        ChatState.FINAL: ActionType.COMPLETE,
        ChatState.ABORTED: ActionType.ABORTED,
        ChatState.ERROR: ActionType.ERROR,
    }[event.state]
    action = Action(
        id=f"{event.run_id}:reply",
        run_id=event.run_id,
        session_key=event.session_key,
        seq=event.seq,
        type=action_type,
        timestamp=ts,
        content=event.error_message if event.state is ChatState.ERROR else event.text,
    )
    if event.state is ChatState.FINAL:
        action = replace(
            action,
            duration=event.duration_ms,
            input_tokens=event.input_tokens,
            output_tokens=event.output_tokens,
            stop_reason=event.stop_reason,
        )

    status = SessionStatus.THINKING if event.state is ChatState.DELTA else SessionStatus.ACTIVE
    return [ActionAppend(action), *_patch(event.session_key, status, ts)]


def _translate_lifecycle(event: LifecycleEvent, received_at: int) -> list[Delta]:
    ts = event.ts if event.ts is not None else received_at
    if event.phase is LifecyclePhase.START:
        action = Action(
            id=f"{event.run_id}:start",
            run_id=event.run_id,
            session_key=event.session_key,
            seq=event.seq,
            type=ActionType.START,
            timestamp=ts,
        )
        return [ActionAppend(action), *_patch(event.session_key, SessionStatus.THINKING, ts)]
    if event.phase is LifecyclePhase.ERROR:
        action = Action(
            id=f"{event.run_id}:run-error",
            run_id=event.run_id,
            session_key=event.session_key,
            seq=event.seq,
            type=ActionType.ERROR,
            timestamp=ts,
            content=event.error,
        )
        return [ActionAppend(action), *_patch(event.session_key, SessionStatus.ACTIVE, ts)]
    return _patch(event.session_key, SessionStatus.ACTIVE, ts)


def _translate_assistant(event: AssistantEvent, received_at: int) -> list[Delta]:
    ts = event.ts if event.ts is not None else received_at
    return _patch(event.session_key, SessionStatus.THINKING, ts)


def _translate_tool(event: ToolEvent, received_at: int) -> list[Delta]:
    ts = event.ts if event.ts is not None else received_at
    call_id = event.tool_call_id or str(event.seq)
    if event.phase is ToolPhase.CALL:
        action = Action(
            id=f"{event.run_id}:tool:{call_id}:call",
            run_id=event.run_id,
            session_key=event.session_key,
            seq=event.seq,
            type=ActionType.TOOL_CALL,
            timestamp=ts,
            tool_name=event.tool_name,
            tool_args=event.args,
        )
    else:
        action = Action(
            id=f"{event.run_id}:tool:{call_id}:result",
            run_id=event.run_id,
            session_key=event.session_key,
            seq=event.seq,
            type=ActionType.TOOL_RESULT,
            timestamp=ts,
            tool_name=event.tool_name,
            content=event.result,
            duration=event.duration_ms,
        )
    return [ActionAppend(action), *_patch(event.session_key, SessionStatus.THINKING, ts)]


def _translate_exec(event: ExecEvent, received_at: int) -> list[Delta]:
    ts = event.ts if event.ts is not None else received_at
    if event.phase is ExecPhase.START:
        return [
            ExecUpdate(
                exec_id=event.exec_id,
                session_key=event.session_key,
                status=ExecStatus.RUNNING,
                timestamp=ts,
                pid=event.pid,
                command=event.command,
            )
        ]
    if event.phase is ExecPhase.OUTPUT:
        if not event.text:
            return []
        chunk = OutputChunk(
            id=f"{event.exec_id}:{event.seq}",
            stream=OutputStream(event.stream),
            text=event.text,
            timestamp=ts,
        )
        return [OutputAppend(exec_id=event.exec_id, session_key=event.session_key, chunk=chunk)]

    failed = event.failed or (event.exit_code is not None and event.exit_code != 0)
    return [
        ExecUpdate(
            exec_id=event.exec_id,
            session_key=event.session_key,
            status=ExecStatus.FAILED if failed else ExecStatus.COMPLETED,
            timestamp=ts,
            pid=event.pid,
            command=event.command,
            exit_code=event.exit_code,
        )
    ]


def _translate_session(event: SessionPresenceEvent, received_at: int) -> list[Delta]:
    return [
        SessionPatch(
            key=event.session_key,
            status=map_session_status(event.status) if event.status is not None else None,
            last_activity_at=event.ts if event.ts is not None else received_at,
            spawned_by=event.spawned_by,
        )
    ]


def _translate_unknown(event: UnknownEvent, received_at: int) -> list[Delta]:
    return []


_TRANSLATORS: dict[type, Callable[..., list[Delta]]] = {
    ChatEvent: _translate_chat,
    LifecycleEvent: _translate_lifecycle,
    AssistantEvent: _translate_assistant,
    ToolEvent: _translate_tool,
    ExecEvent: _translate_exec,
    SessionPresenceEvent: _translate_session,
    UnknownEvent: _translate_unknown,
}


def translate(event: GatewayEvent, received_at: int) -> list[Delta]:
    """Translate an already-decoded event."""
    return _TRANSLATORS[type(event)](event, received_at)


def translate_event(frame: EventFrame, received_at: int) -> list[Delta]:
    """Translate one raw event frame into domain deltas."""
    return translate(decode_event(frame), received_at)


# ─────────────────────────────────────────────────────────────────────────────
# Exec output accumulation
# ─────────────────────────────────────────────────────────────────────────────

def accumulate_output(
    process: ExecProcess,
    chunk: OutputChunk,
    cap: int = DEFAULT_OUTPUT_CAP,
) -> ExecProcess:
    """
    Return `process` with `chunk` appended.

    Once the accumulated text would exceed `cap` characters the chunk is
    dropped and `output_truncated` is set; it is never cleared afterwards.
    """
    if process.output_truncated:
        return process
    if process.output_size + len(chunk.text) > cap:
        return replace(process, output_truncated=True)
    return replace(process, outputs=[*process.outputs, chunk])
