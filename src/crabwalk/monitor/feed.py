"""
monitor/feed.py — Live Monitor Feed

Wires a GatewayClient to a MonitorStore:

    gateway event ──► translate_event() ──► MonitorStore.apply()
    sessions.list (every poll_interval) ──► MonitorStore.upsert_session()

Optionally records raw events (log collection) so a session can be
exported as JSON, and logs every raw event when debug mode is on.

Usage:
    feed = MonitorFeed(client, store, active_minutes=60)
    await feed.start()
    ...
    await feed.stop()
    feed.export_events("events.json")
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from crabwalk.exceptions import GatewayError
from crabwalk.gateway.gateway_client import GatewayClient
from crabwalk.gateway.protocol import EventFrame
from crabwalk.monitor.store import MonitorStore
from crabwalk.monitor.translator import session_info_to_monitor, translate_event
from crabwalk.observability.logger import get_logger

log = get_logger(__name__)

ACTIVE_MINUTES = 60
HISTORICAL_MINUTES = 24 * 60
POLL_INTERVAL_SECONDS = 5.0
MAX_RECORDED_EVENTS = 10_000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RecordedEvent:
    received_at: int
    event: str
    payload: Any
    seq: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "receivedAt": self.received_at,
            "event": self.event,
            "payload": self.payload,
        }
        if self.seq is not None:
            d["seq"] = self.seq
        return d


class MonitorFeed:
    """Keeps a MonitorStore in sync with one gateway connection."""

    def __init__(
        self,
        client: GatewayClient,
        store: MonitorStore,
        active_minutes: int = ACTIVE_MINUTES,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        record: bool = False,
        debug: bool = False,
        max_recorded: int = MAX_RECORDED_EVENTS,
        clock: Callable[[], int] = _now_ms,
    ):
        """
        Args:
            client:          Connected (or about to be connected) gateway client.
            store:           State store that receives translated deltas.
            active_minutes:  `activeMinutes` filter for sessions.list.
            poll_interval:   Seconds between sessions.list refreshes.
            record:          Keep raw events for export_events().
            debug:           Log every raw event at debug level.
            max_recorded:    Oldest recorded events are dropped past this.
            clock:           Receive-time source in epoch milliseconds.
        """
        self._client = client
        self._store = store
        self._active_minutes = active_minutes
        self._poll_interval = poll_interval
        self._debug = debug
        self._max_recorded = max_recorded
        self._clock = clock

        self._recording = record
        self._recorded: list[RecordedEvent] = []
        self._events_seen = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._poller: Optional[asyncio.Task] = None

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    @property
    def events_seen(self) -> int:
        return self._events_seen

    @property
    def recording(self) -> bool:
        return self._recording

    @property
    def recorded_events(self) -> list[RecordedEvent]:
        return list(self._recorded)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Subscribe to events, load sessions once, and start polling."""
        if self.running:
            return
        self._unsubscribe = self._client.on_event(self.handle_event)
        log.info(
            "monitor_feed.starting",
            active_minutes=self._active_minutes,
            poll_interval=self._poll_interval,
        )
        await self.refresh_sessions()
        self._poller = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Unsubscribe and stop polling. The store keeps its contents."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._poller:
            self._poller.cancel()
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
            self._poller = None
        log.info("monitor_feed.stopped", events_seen=self._events_seen)

    # ── Events ────────────────────────────────────────────────────────────────

    def handle_event(self, frame: EventFrame) -> None:
        """Translate one event frame and apply it to the store."""
        received_at = self._clock()
        self._events_seen += 1

        if self._debug:
            log.debug("monitor_feed.event", gateway_event=frame.event, seq=frame.seq, payload=frame.payload)

        if self._recording:
            self._recorded.append(
                RecordedEvent(received_at=received_at, event=frame.event, payload=frame.payload, seq=frame.seq)
            )
            if len(self._recorded) > self._max_recorded:
                del self._recorded[: len(self._recorded) - self._max_recorded]

        self._store.apply_all(translate_event(frame, received_at))

    # ── Sessions ──────────────────────────────────────────────────────────────

    async def refresh_sessions(self) -> int:
        """
        Fetch sessions.list and upsert every entry. Returns the number of
        sessions received; gateway errors are logged and yield 0.
        """
        try:
            infos = await self._client.list_sessions(active_minutes=self._active_minutes)
        except GatewayError as e:
            log.warning("monitor_feed.poll_failed", error=str(e), error_type=type(e).__name__)
            return 0

        for info in infos:
            self._store.upsert_session(session_info_to_monitor(info))
        log.debug("monitor_feed.sessions_refreshed", count=len(infos))
        return len(infos)

    async def _poll_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._poll_interval)
                if self._client.connected:
                    await self.refresh_sessions()
            except asyncio.CancelledError:
                break

    # ── Log collection ────────────────────────────────────────────────────────

    def set_recording(self, enabled: bool) -> None:
        self._recording = enabled
        log.info("monitor_feed.recording", enabled=enabled, recorded=len(self._recorded))

    def clear_recorded(self) -> None:
        self._recorded.clear()

    def export_events(self, path: str | Path) -> Path:
        """Write recorded events to `path` as a JSON array."""
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            json.dump([e.to_dict() for e in self._recorded], f, indent=2, default=str)
        log.info("monitor_feed.exported", path=str(target), count=len(self._recorded))
        return target
