"""
tests/unit/test_feed.py — Monitor Feed Tests

MonitorFeed against a mocked GatewayClient: event application, session
polling, raw event recording and export, and the sessions.list → graph
path end to end.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from crabwalk.exceptions import RequestTimeout
from crabwalk.gateway.protocol import EventFrame, SessionInfo
from crabwalk.layout.graph_layout import NodeType, build_graph, layout_graph
from crabwalk.monitor.feed import MonitorFeed
from crabwalk.monitor.models import ActionType, SessionStatus
from crabwalk.monitor.store import MonitorStore

KEY = "agent:main:discord:channel:1"
NOW = 1_700_000_000_000


def _client(sessions=None):
    client = MagicMock()
    client.connected = True
    client.unsubscribe = MagicMock()
    client.on_event = MagicMock(return_value=client.unsubscribe)
    client.list_sessions = AsyncMock(return_value=sessions or [])
    return client


def _chat_delta(text="hello"):
    return EventFrame(
        event="chat",
        payload={"runId": "run-1", "sessionKey": KEY, "seq": 1, "state": "delta", "message": text},
        seq=10,
    )


class TestEvents:
    def test_event_applied_to_store(self):
        store = MonitorStore()
        feed = MonitorFeed(_client(), store, clock=lambda: NOW)
        feed.handle_event(_chat_delta())

        assert feed.events_seen == 1
        [action] = store.actions
        assert action.type is ActionType.STREAMING
        assert action.timestamp == NOW
        assert store.get_session(KEY).status is SessionStatus.THINKING

    def test_unknown_event_counted_but_ignored(self):
        store = MonitorStore()
        feed = MonitorFeed(_client(), store)
        feed.handle_event(EventFrame(event="health", payload={}))
        assert feed.events_seen == 1
        assert store.sessions == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_subscribes_and_loads_sessions(self):
        client = _client([SessionInfo(key=KEY, status="active", last_activity_at=NOW)])
        store = MonitorStore()
        feed = MonitorFeed(client, store, active_minutes=60)

        await feed.start()
        assert feed.running
        client.on_event.assert_called_once_with(feed.handle_event)
        client.list_sessions.assert_awaited_once_with(active_minutes=60)
        assert store.get_session(KEY).status is SessionStatus.ACTIVE

        await feed.stop()
        assert not feed.running
        client.unsubscribe.assert_called_once()

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self):
        client = _client()
        feed = MonitorFeed(client, MonitorStore())
        await feed.start()
        await feed.start()
        client.on_event.assert_called_once()
        await feed.stop()

    @pytest.mark.asyncio
    async def test_polls_sessions(self):
        client = _client([SessionInfo(key=KEY)])
        feed = MonitorFeed(client, MonitorStore(), poll_interval=0.01)
        await feed.start()
        await asyncio.sleep(0.1)
        await feed.stop()
        assert client.list_sessions.await_count >= 3

    @pytest.mark.asyncio
    async def test_poll_skipped_while_disconnected(self):
        client = _client()
        client.connected = False
        feed = MonitorFeed(client, MonitorStore(), poll_interval=0.01)
        await feed.start()
        await asyncio.sleep(0.05)
        await feed.stop()
        client.list_sessions.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_poll_failure_logged(self):
        client = _client()
        client.list_sessions.side_effect = RequestTimeout("sessions.list", "req-1", 30)
        feed = MonitorFeed(client, MonitorStore())
        assert await feed.refresh_sessions() == 0

    @pytest.mark.asyncio
    async def test_historical_window(self):
        client = _client()
        feed = MonitorFeed(client, MonitorStore(), active_minutes=1440)
        await feed.refresh_sessions()
        client.list_sessions.assert_awaited_once_with(active_minutes=1440)


class TestRecording:
    def test_not_recording_by_default(self):
        feed = MonitorFeed(_client(), MonitorStore())
        feed.handle_event(_chat_delta())
        assert feed.recorded_events == []

    def test_records_and_exports(self, tmp_path):
        feed = MonitorFeed(_client(), MonitorStore(), record=True, clock=lambda: NOW)
        feed.handle_event(_chat_delta("a"))
        feed.handle_event(_chat_delta("b"))

        path = feed.export_events(tmp_path / "out" / "events.json")
        data = json.loads(path.read_text())
        assert len(data) == 2
        assert data[0]["event"] == "chat"
        assert data[0]["receivedAt"] == NOW
        assert data[0]["seq"] == 10
        assert data[1]["payload"]["message"] == "b"

    def test_record_cap_drops_oldest(self):
        feed = MonitorFeed(_client(), MonitorStore(), record=True, max_recorded=2)
        for text in ["a", "b", "c"]:
            feed.handle_event(_chat_delta(text))
        assert [e.payload["message"] for e in feed.recorded_events] == ["b", "c"]

    def test_toggle_and_clear(self):
        feed = MonitorFeed(_client(), MonitorStore())
        feed.set_recording(True)
        feed.handle_event(_chat_delta())
        feed.set_recording(False)
        feed.handle_event(_chat_delta())
        assert len(feed.recorded_events) == 1
        feed.clear_recorded()
        assert feed.recorded_events == []


class TestSessionsListToGraph:
    @pytest.mark.asyncio
    async def test_sessions_appear_as_nodes_with_mapped_status(self):
        client = _client([
            SessionInfo(key="agent:main:discord:channel:1", status="thinking", last_activity_at=NOW),
            SessionInfo(key="agent:main:discord:channel:2", status="active", last_activity_at=NOW),
            SessionInfo(key="agent:main:slack:group:G", status=None, last_activity_at=NOW),
        ])
        store = MonitorStore()
        await MonitorFeed(client, store, active_minutes=60).refresh_sessions()
        client.list_sessions.assert_awaited_once_with(active_minutes=60)

        nodes, edges = build_graph(store.sessions, store.actions, store.execs)
        result = layout_graph(nodes, edges)
        sessions = {n.id: n.data for n in result.nodes if n.type is NodeType.SESSION}
        assert sessions["session-agent:main:discord:channel:1"].status is SessionStatus.THINKING
        assert sessions["session-agent:main:discord:channel:2"].status is SessionStatus.ACTIVE
        assert sessions["session-agent:main:slack:group:G"].status is SessionStatus.IDLE
