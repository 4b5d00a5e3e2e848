"""
monitor/models.py — Monitor Domain Model

Sessions, timeline actions and traced exec processes reconstructed from
the gateway event stream, plus the delta types the translator emits.

All timestamps are integer milliseconds since the epoch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class SessionStatus(str, Enum):
    IDLE     = "idle"
    ACTIVE   = "active"
    THINKING = "thinking"


class ActionType(str, Enum):
    START       = "start"
    STREAMING   = "streaming"
    COMPLETE    = "complete"
    ABORTED     = "aborted"
    ERROR       = "error"
    TOOL_CALL   = "tool_call"
    TOOL_RESULT = "tool_result"


class ExecStatus(str, Enum):
    RUNNING   = "running"
    COMPLETED = "completed"
    FAILED    = "failed"


class OutputStream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


# ─────────────────────────────────────────────────────────────────────────────
# Entities
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Session:
    """
    A conversation between an agent and a recipient on one platform.

    `spawned_by` is a weak back-reference to the parent session key. The
    parent may be absent from the working set; it is never an ownership link.
    """
    key: str
    agent_id: str
    platform: str
    recipient: str
    is_group: bool = False
    status: SessionStatus = SessionStatus.IDLE
    last_activity_at: int = 0
    spawned_by: Optional[str] = None


@dataclass
class Action:
    """One timeline entry within a session."""
    id: str
    run_id: str
    session_key: str
    seq: int
    type: ActionType
    timestamp: int
    content: Optional[str] = None
    tool_name: Optional[str] = None
    tool_args: Any = None
    duration: Optional[int] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    stop_reason: Optional[str] = None


@dataclass
class OutputChunk:
    id: str
    stream: OutputStream
    text: str
    timestamp: int


@dataclass
class ExecProcess:
    """A traced command execution with its streamed output."""
    id: str
    session_key: str
    pid: Optional[int]
    command: str
    status: ExecStatus = ExecStatus.RUNNING
    started_at: int = 0
    completed_at: Optional[int] = None
    exit_code: Optional[int] = None
    outputs: list[OutputChunk] = field(default_factory=list)
    output_truncated: bool = False

    @property
    def output_size(self) -> int:
        return sum(len(chunk.text) for chunk in self.outputs)


# ─────────────────────────────────────────────────────────────────────────────
# Deltas — translator output, applied by MonitorStore
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SessionPatch:
    """Partial session update. None fields are left untouched."""
    key: str
    status: Optional[SessionStatus] = None
    last_activity_at: Optional[int] = None
    spawned_by: Optional[str] = None


@dataclass(frozen=True)
class ActionAppend:
    action: Action


@dataclass(frozen=True)
class ExecUpdate:
    """Start or finish of an exec process. None fields are left untouched."""
    exec_id: str
    session_key: str
    status: ExecStatus
    timestamp: int
    pid: Optional[int] = None
    command: Optional[str] = None
    exit_code: Optional[int] = None


@dataclass(frozen=True)
class OutputAppend:
    exec_id: str
    session_key: str
    chunk: OutputChunk


Delta = Union[SessionPatch, ActionAppend, ExecUpdate, OutputAppend]
