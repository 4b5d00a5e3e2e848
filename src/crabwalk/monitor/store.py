"""
monitor/store.py — In-Memory Monitor State

Materialises translator deltas into the current set of sessions, actions
and exec processes. Best-effort only: nothing is persisted, duplicates are
collapsed by id, and out-of-order deltas are applied as they arrive.

Not thread-safe; it is mutated from the event loop thread only (gateway
listeners run synchronously on that loop).
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import replace
from typing import Iterable, Optional

from crabwalk.monitor.models import (
    Action,
    ActionAppend,
    Delta,
    ExecProcess,
    ExecStatus,
    ExecUpdate,
    OutputAppend,
    Session,
    SessionPatch,
)
from crabwalk.monitor.translator import (
    DEFAULT_OUTPUT_CAP,
    accumulate_output,
    parse_session_key,
)
from crabwalk.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 1000


class MonitorStore:
    """Current monitor state keyed by session key, action id and exec id."""

    def __init__(
        self,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        output_cap: int = DEFAULT_OUTPUT_CAP,
    ):
        self._sessions: dict[str, Session] = {}
        self._actions: OrderedDict[str, Action] = OrderedDict()
        self._execs: dict[str, ExecProcess] = {}
        self._history_limit = history_limit
        self._output_cap = output_cap

    # ─────────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    @property
    def actions(self) -> list[Action]:
        return list(self._actions.values())

    @property
    def execs(self) -> list[ExecProcess]:
        return list(self._execs.values())

    def get_session(self, key: str) -> Optional[Session]:
        return self._sessions.get(key)

    def get_exec(self, exec_id: str) -> Optional[ExecProcess]:
        return self._execs.get(exec_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────────

    def upsert_session(self, session: Session) -> None:
        """Insert or replace a session reported by `sessions.list`."""
        existing = self._sessions.get(session.key)
        if existing is not None:
            if session.spawned_by is None and existing.spawned_by is not None:
                session = replace(session, spawned_by=existing.spawned_by)
            if existing.last_activity_at > session.last_activity_at:
                session = replace(session, last_activity_at=existing.last_activity_at)
        self._sessions[session.key] = session

    def clear(self) -> None:
        self._sessions.clear()
        self._actions.clear()
        self._execs.clear()
        log.info("monitor_store.cleared")

    def apply_all(self, deltas: Iterable[Delta]) -> None:
        for delta in deltas:
            self.apply(delta)

    def apply(self, delta: Delta) -> None:
        if isinstance(delta, SessionPatch):
            self._apply_session_patch(delta)
        elif isinstance(delta, ActionAppend):
            self._apply_action(delta.action)
        elif isinstance(delta, ExecUpdate):
            self._apply_exec_update(delta)
        elif isinstance(delta, OutputAppend):
            self._apply_output(delta)
        else:
            raise TypeError(f"Unknown delta type: {type(delta).__name__}")

    def _apply_session_patch(self, patch: SessionPatch) -> None:
        session = self._sessions.get(patch.key)
        if session is None:
            parts = parse_session_key(patch.key)
            session = Session(
                key=patch.key,
                agent_id=parts.agent_id,
                platform=parts.platform,
                recipient=parts.recipient,
                is_group=parts.is_group,
            )
            log.debug("monitor_store.session_discovered", session_key=patch.key)

        changes: dict = {}
        if patch.status is not None:
            changes["status"] = patch.status
        if patch.last_activity_at is not None and patch.last_activity_at > session.last_activity_at:
            changes["last_activity_at"] = patch.last_activity_at
        if patch.spawned_by is not None and patch.spawned_by != patch.key:
            changes["spawned_by"] = patch.spawned_by
        self._sessions[patch.key] = replace(session, **changes) if changes else session

    def _apply_action(self, action: Action) -> None:
        if action.id in self._actions:
            self._actions[action.id] = action
            return
        self._actions[action.id] = action
        while len(self._actions) > self._history_limit:
            self._actions.popitem(last=False)

    def _apply_exec_update(self, update: ExecUpdate) -> None:
        process = self._execs.get(update.exec_id)
        if process is None:
            process = ExecProcess(
                id=update.exec_id,
                session_key=update.session_key,
                pid=update.pid,
                command=update.command or "",
                started_at=update.timestamp,
            )

        changes: dict = {}
        # A late start must not reopen a finished process.
        if update.status is not ExecStatus.RUNNING or process.status is ExecStatus.RUNNING:
            changes["status"] = update.status
        if update.pid is not None:
            changes["pid"] = update.pid
        if update.command:
            changes["command"] = update.command
        if update.status is not ExecStatus.RUNNING:
            changes["completed_at"] = update.timestamp
            changes["exit_code"] = update.exit_code
        self._execs[update.exec_id] = replace(process, **changes)

    def _apply_output(self, delta: OutputAppend) -> None:
        process = self._execs.get(delta.exec_id)
        if process is None:
            process = ExecProcess(
                id=delta.exec_id,
                session_key=delta.session_key,
                pid=None,
                command="",
                started_at=delta.chunk.timestamp,
            )
        updated = accumulate_output(process, delta.chunk, self._output_cap)
        if updated.output_truncated and not process.output_truncated:
            log.info("monitor_store.output_truncated", exec_id=delta.exec_id, cap=self._output_cap)
        self._execs[delta.exec_id] = updated
