"""
tests/unit/test_translator.py — Event Translator Tests

Tests for session key decomposition, event decoding, frame → delta
translation and exec output accumulation.
"""

import pytest

from crabwalk.gateway.protocol import EventFrame, SessionInfo
from crabwalk.monitor.events import (
    ChatEvent,
    ChatState,
    ExecEvent,
    ExecPhase,
    LifecycleEvent,
    SessionPresenceEvent,
    ToolEvent,
    ToolPhase,
    UnknownEvent,
    decode_event,
    extract_text,
)
from crabwalk.monitor.models import (
    ActionAppend,
    ActionType,
    ExecProcess,
    ExecStatus,
    ExecUpdate,
    OutputAppend,
    OutputChunk,
    OutputStream,
    SessionPatch,
    SessionStatus,
)
from crabwalk.monitor.translator import (
    accumulate_output,
    map_session_status,
    parse_session_key,
    session_info_to_monitor,
    translate_event,
)

NOW = 1_700_000_000_000
KEY = "agent:main:discord:channel:1234"


def chat(state, **extra):
    payload = {"runId": "run-1", "sessionKey": KEY, "seq": 3, "state": state, **extra}
    return EventFrame(event="chat", payload=payload)


def agent(stream, data, **extra):
    payload = {"runId": "run-1", "sessionKey": KEY, "seq": 4, "stream": stream, "data": data, **extra}
    return EventFrame(event="agent", payload=payload)


def only(deltas, kind):
    matching = [d for d in deltas if isinstance(d, kind)]
    assert len(matching) == 1, deltas
    return matching[0]


# ─────────────────────────────────────────────────────────────────────────────
# Session keys
# ─────────────────────────────────────────────────────────────────────────────

class TestSessionKey:
    def test_direct_key(self):
        parts = parse_session_key("agent:main:telegram:42")
        assert parts.agent_id == "main"
        assert parts.platform == "telegram"
        assert parts.recipient == "42"
        assert parts.is_group is False

    def test_group_key(self):
        parts = parse_session_key("agent:ops:slack:group:C0123")
        assert parts.agent_id == "ops"
        assert parts.platform == "slack"
        assert parts.recipient == "C0123"
        assert parts.is_group is True

    @pytest.mark.parametrize("recipient", ["channel:1234", "a:b:c", "plain"])
    def test_recipient_round_trip(self, recipient):
        parts = parse_session_key(f"agent:main:discord:{recipient}")
        rebuilt = f"agent:{parts.agent_id}:{parts.platform}:{parts.recipient}"
        assert rebuilt == f"agent:main:discord:{recipient}"

    def test_group_round_trip(self):
        key = "agent:main:whatsapp:group:123@g.us:thread"
        parts = parse_session_key(key)
        assert f"agent:{parts.agent_id}:{parts.platform}:group:{parts.recipient}" == key

    def test_recipient_named_group_reads_as_group(self):
        parts = parse_session_key("agent:a:p:group")
        assert parts.is_group is True
        assert parts.recipient == "unknown"

    def test_missing_segments(self):
        parts = parse_session_key("agent")
        assert parts.agent_id == "unknown"
        assert parts.platform == "unknown"
        assert parts.recipient == "unknown"

    def test_group_without_recipient(self):
        parts = parse_session_key("agent:main:slack:group")
        assert parts.is_group is True
        assert parts.recipient == "unknown"


class TestStatusMapping:
    @pytest.mark.parametrize("raw,expected", [
        ("thinking", SessionStatus.THINKING),
        ("running", SessionStatus.THINKING),
        ("BUSY", SessionStatus.THINKING),
        ("streaming", SessionStatus.THINKING),
        ("active", SessionStatus.ACTIVE),
        ("idle", SessionStatus.IDLE),
        ("sleeping", SessionStatus.IDLE),
        (None, SessionStatus.IDLE),
    ])
    def test_map(self, raw, expected):
        assert map_session_status(raw) is expected

    def test_session_info_to_monitor(self):
        info = SessionInfo(
            key="agent:main:discord:group:G1",
            last_activity_at=NOW,
            status="thinking",
            spawned_by="agent:main:discord:parent",
        )
        session = session_info_to_monitor(info)
        assert session.agent_id == "main"
        assert session.is_group is True
        assert session.recipient == "G1"
        assert session.status is SessionStatus.THINKING
        assert session.last_activity_at == NOW
        assert session.spawned_by == "agent:main:discord:parent"


# ─────────────────────────────────────────────────────────────────────────────
# Decoding
# ─────────────────────────────────────────────────────────────────────────────

class TestDecodeEvent:
    def test_chat_variant(self):
        event = decode_event(chat("delta", message={"content": [{"type": "text", "text": "hi"}]}))
        assert isinstance(event, ChatEvent)
        assert event.state is ChatState.DELTA
        assert event.text == "hi"

    def test_agent_variants(self):
        assert isinstance(decode_event(agent("lifecycle", {"phase": "start"})), LifecycleEvent)
        tool = decode_event(agent("tool", {"phase": "start", "name": "bash", "toolCallId": "t1"}))
        assert isinstance(tool, ToolEvent)
        assert tool.phase is ToolPhase.CALL
        ex = decode_event(agent("exec", {"phase": "exit", "execId": "e1", "exitCode": 2}))
        assert isinstance(ex, ExecEvent)
        assert ex.phase is ExecPhase.COMPLETE

    def test_session_variant(self):
        event = decode_event(EventFrame(event="session.status", payload={"key": KEY, "status": "active"}))
        assert isinstance(event, SessionPresenceEvent)
        assert event.session_key == KEY

    @pytest.mark.parametrize("frame", [
        EventFrame(event="chat", payload="nope"),
        EventFrame(event="chat", payload={"state": "weird"}),
        EventFrame(event="agent", payload={"stream": "telemetry"}),
        EventFrame(event="agent", payload={"stream": "exec", "data": {"phase": "start"}}),
        EventFrame(event="session", payload={}),
        EventFrame(event="presence", payload={}),
    ])
    def test_unusable_payloads_are_unknown(self, frame):
        assert isinstance(decode_event(frame), UnknownEvent)

    def test_extract_text_shapes(self):
        assert extract_text("plain") == "plain"
        assert extract_text({"text": "t"}) == "t"
        assert extract_text({"content": "c"}) == "c"
        assert extract_text({"content": [{"type": "text", "text": "a"}, {"type": "image"}, {"text": "b"}]}) == "ab"
        assert extract_text({"content": []}) is None
        assert extract_text(42) is None


# ─────────────────────────────────────────────────────────────────────────────
# Translation
# ─────────────────────────────────────────────────────────────────────────────

class TestTranslateChat:
    def test_delta_streams_and_thinks(self):
        deltas = translate_event(chat("delta", message="partial"), NOW)
        action = only(deltas, ActionAppend).action
        assert action.id == "run-1:reply"
        assert action.type is ActionType.STREAMING
        assert action.content == "partial"
        assert action.timestamp == NOW
        patch = only(deltas, SessionPatch)
        assert patch.key == KEY
        assert patch.status is SessionStatus.THINKING

    def test_final_carries_usage(self):
        frame = chat(
            "final",
            message="done",
            usage={"inputTokens": 10, "outputTokens": 20},
            stopReason="end_turn",
            durationMs=1500,
        )
        deltas = translate_event(frame, NOW)
        action = only(deltas, ActionAppend).action
        assert action.id == "run-1:reply"
        assert action.type is ActionType.COMPLETE
        assert action.input_tokens == 10
        assert action.output_tokens == 20
        assert action.stop_reason == "end_turn"
        assert action.duration == 1500
        assert only(deltas, SessionPatch).status is SessionStatus.ACTIVE

    @pytest.mark.parametrize("state,expected", [
        ("aborted", ActionType.ABORTED),
        ("error", ActionType.ERROR),
    ])
    def test_terminal_states(self, state, expected):
        deltas = translate_event(chat(state, errorMessage="boom"), NOW)
        assert only(deltas, ActionAppend).action.type is expected
        assert only(deltas, SessionPatch).status is SessionStatus.ACTIVE

    def test_error_message_becomes_content(self):
        deltas = translate_event(chat("error", errorMessage="rate limited"), NOW)
        assert only(deltas, ActionAppend).action.content == "rate limited"

    def test_payload_ts_wins(self):
        deltas = translate_event(chat("delta", ts=123), NOW)
        assert only(deltas, ActionAppend).action.timestamp == 123

    def test_pure(self):
        frame = chat("delta", message="x")
        assert translate_event(frame, NOW) == translate_event(frame, NOW)


class TestTranslateAgent:
    def test_lifecycle_start(self):
        deltas = translate_event(agent("lifecycle", {"phase": "start"}), NOW)
        action = only(deltas, ActionAppend).action
        assert action.type is ActionType.START
        assert action.id == "run-1:start"
        assert only(deltas, SessionPatch).status is SessionStatus.THINKING

    def test_lifecycle_end(self):
        deltas = translate_event(agent("lifecycle", {"phase": "end"}), NOW)
        assert deltas == [SessionPatch(key=KEY, status=SessionStatus.ACTIVE, last_activity_at=NOW)]

    def test_lifecycle_error(self):
        deltas = translate_event(agent("lifecycle", {"phase": "error", "error": "crash"}), NOW)
        action = only(deltas, ActionAppend).action
        assert action.type is ActionType.ERROR
        assert action.content == "crash"
        assert only(deltas, SessionPatch).status is SessionStatus.ACTIVE

    def test_session_key_from_data(self):
        frame = EventFrame(event="agent", payload={
            "runId": "r", "stream": "lifecycle", "data": {"phase": "end", "sessionKey": KEY},
        })
        assert only(translate_event(frame, NOW), SessionPatch).key == KEY

    def test_no_session_key_no_patch(self):
        frame = EventFrame(event="agent", payload={"runId": "r", "stream": "assistant", "data": {}})
        assert translate_event(frame, NOW) == []

    def test_tool_call_and_result(self):
        call = translate_event(
            agent("tool", {"phase": "start", "name": "read", "toolCallId": "t1", "args": {"path": "a"}}),
            NOW,
        )
        action = only(call, ActionAppend).action
        assert action.id == "run-1:tool:t1:call"
        assert action.type is ActionType.TOOL_CALL
        assert action.tool_name == "read"
        assert action.tool_args == {"path": "a"}

        result = translate_event(
            agent("tool", {"phase": "result", "name": "read", "toolCallId": "t1",
                           "result": "file body", "durationMs": 12}),
            NOW,
        )
        action = only(result, ActionAppend).action
        assert action.id == "run-1:tool:t1:result"
        assert action.type is ActionType.TOOL_RESULT
        assert action.content == "file body"
        assert action.duration == 12


class TestTranslateExec:
    def test_start(self):
        deltas = translate_event(
            agent("exec", {"phase": "start", "execId": "e1", "pid": 99, "command": "ls -la"}), NOW
        )
        update = only(deltas, ExecUpdate)
        assert update.exec_id == "e1"
        assert update.status is ExecStatus.RUNNING
        assert update.pid == 99
        assert update.command == "ls -la"

    def test_output(self):
        deltas = translate_event(
            agent("exec", {"phase": "output", "execId": "e1", "stream": "stderr", "text": "warn\n"}), NOW
        )
        append = only(deltas, OutputAppend)
        assert append.chunk.id == "e1:4"
        assert append.chunk.stream is OutputStream.STDERR
        assert append.chunk.text == "warn\n"

    def test_empty_output_ignored(self):
        assert translate_event(agent("exec", {"phase": "output", "execId": "e1", "text": ""}), NOW) == []

    @pytest.mark.parametrize("data,expected", [
        ({"exitCode": 0}, ExecStatus.COMPLETED),
        ({}, ExecStatus.COMPLETED),
        ({"exitCode": 1}, ExecStatus.FAILED),
        ({"status": "failed"}, ExecStatus.FAILED),
    ])
    def test_complete(self, data, expected):
        frame = agent("exec", {"phase": "complete", "execId": "e1", **data})
        assert only(translate_event(frame, NOW), ExecUpdate).status is expected


class TestTranslateSession:
    def test_presence_patch(self):
        frame = EventFrame(event="session", payload={
            "sessionKey": "agent:main:discord:child",
            "status": "busy",
            "spawnedBy": KEY,
            "ts": 55,
        })
        assert translate_event(frame, NOW) == [
            SessionPatch(
                key="agent:main:discord:child",
                status=SessionStatus.THINKING,
                last_activity_at=55,
                spawned_by=KEY,
            )
        ]

    def test_unknown_event_yields_nothing(self):
        assert translate_event(EventFrame(event="health", payload={"ok": True}), NOW) == []


# ─────────────────────────────────────────────────────────────────────────────
# Output accumulation
# ─────────────────────────────────────────────────────────────────────────────

def _chunk(text, n=0):
    return OutputChunk(id=f"e1:{n}", stream=OutputStream.STDOUT, text=text, timestamp=NOW)


class TestAccumulateOutput:
    def test_appends_under_cap(self):
        process = ExecProcess(id="e1", session_key=KEY, pid=1, command="ls")
        process = accumulate_output(process, _chunk("abc", 1), cap=10)
        process = accumulate_output(process, _chunk("defg", 2), cap=10)
        assert [c.text for c in process.outputs] == ["abc", "defg"]
        assert process.output_size == 7
        assert not process.output_truncated

    def test_exceeding_cap_sets_flag_and_drops_chunk(self):
        process = ExecProcess(id="e1", session_key=KEY, pid=1, command="ls")
        process = accumulate_output(process, _chunk("12345678", 1), cap=10)
        process = accumulate_output(process, _chunk("abc", 2), cap=10)
        assert process.output_truncated
        assert process.output_size == 8

    def test_flag_is_sticky(self):
        process = ExecProcess(id="e1", session_key=KEY, pid=1, command="ls", output_truncated=True)
        after = accumulate_output(process, _chunk("x"), cap=10)
        assert after.output_truncated
        assert after.outputs == []

    def test_does_not_mutate_input(self):
        process = ExecProcess(id="e1", session_key=KEY, pid=1, command="ls")
        accumulate_output(process, _chunk("abc"), cap=10)
        assert process.outputs == []
