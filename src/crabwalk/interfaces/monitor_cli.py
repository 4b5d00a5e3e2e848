"""
interfaces/monitor_cli.py — Terminal Monitor

Rich rendering for the three CLI subcommands:

    watch     live dashboard of sessions, recent actions and exec processes
    sessions  one-shot session table
    layout    graph positions as JSON

Every subcommand constructs its own GatewayClient from settings and
closes it on exit.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any, Optional

from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from crabwalk.config.settings import Settings
from crabwalk.exceptions import GatewayError
from crabwalk.gateway.gateway_client import GatewayClient
from crabwalk.layout.graph_layout import (
    Direction,
    LayoutOptions,
    LayoutResult,
    build_graph,
    layout_graph,
)
from crabwalk.monitor.feed import MonitorFeed
from crabwalk.monitor.models import Action, ActionType, ExecProcess, ExecStatus, Session, SessionStatus
from crabwalk.monitor.store import MonitorStore
from crabwalk.observability.logger import bind_gateway, get_logger

log = get_logger(__name__)

REFRESH_PER_SECOND = 2
RECENT_ACTIONS = 15

_STATUS_STYLE = {
    SessionStatus.IDLE: "dim",
    SessionStatus.ACTIVE: "green",
    SessionStatus.THINKING: "bold yellow",
}

_ACTION_STYLE = {
    ActionType.START: "cyan",
    ActionType.STREAMING: "yellow",
    ActionType.COMPLETE: "green",
    ActionType.ABORTED: "magenta",
    ActionType.ERROR: "bold red",
    ActionType.TOOL_CALL: "blue",
    ActionType.TOOL_RESULT: "bright_blue",
}

_EXEC_STYLE = {
    ExecStatus.RUNNING: "yellow",
    ExecStatus.COMPLETED: "green",
    ExecStatus.FAILED: "bold red",
}


def _clock(ms: int) -> str:
    if not ms:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime("%H:%M:%S")


def _preview(text: Optional[str], width: int = 60) -> str:
    if not text:
        return ""
    flat = " ".join(text.split())
    return flat if len(flat) <= width else flat[: width - 1] + "…"


# ─────────────────────────────────────────────────────────────────────────────
# Renderables
# ─────────────────────────────────────────────────────────────────────────────

def sessions_table(sessions: list[Session]) -> Table:
    table = Table(title="Sessions", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Key", style="bold")
    table.add_column("Agent")
    table.add_column("Platform")
    table.add_column("Recipient")
    table.add_column("Status")
    table.add_column("Last activity", justify="right")
    table.add_column("Spawned by", style="dim")

    for s in sorted(sessions, key=lambda s: s.last_activity_at, reverse=True):
        recipient = f"{s.recipient} (group)" if s.is_group else s.recipient
        table.add_row(
            s.key,
            s.agent_id,
            s.platform,
            recipient,
            Text(s.status.value, style=_STATUS_STYLE[s.status]),
            _clock(s.last_activity_at),
            s.spawned_by or "",
        )
    return table


def actions_table(actions: list[Action], limit: int = RECENT_ACTIONS) -> Table:
    table = Table(title="Recent actions", box=box.SIMPLE, expand=True)
    table.add_column("Time", justify="right")
    table.add_column("Session")
    table.add_column("Type")
    table.add_column("Detail")

    recent = sorted(actions, key=lambda a: (a.timestamp, a.seq))[-limit:]
    for a in reversed(recent):
        if a.type in (ActionType.TOOL_CALL, ActionType.TOOL_RESULT):
            detail = f"{a.tool_name or '?'} {_preview(a.content)}".strip()
        else:
            detail = _preview(a.content)
        table.add_row(
            _clock(a.timestamp),
            a.session_key,
            Text(a.type.value, style=_ACTION_STYLE[a.type]),
            detail,
        )
    return table


def execs_table(execs: list[ExecProcess]) -> Table:
    table = Table(title="Exec processes", box=box.SIMPLE, expand=True)
    table.add_column("Started", justify="right")
    table.add_column("Session")
    table.add_column("Command")
    table.add_column("Status")
    table.add_column("Output", justify="right")

    for p in sorted(execs, key=lambda p: p.started_at, reverse=True):
        status = p.status.value if p.exit_code is None else f"{p.status.value} ({p.exit_code})"
        size = f"{p.output_size} chars" + (" [truncated]" if p.output_truncated else "")
        table.add_row(
            _clock(p.started_at),
            p.session_key,
            _preview(p.command, 40),
            Text(status, style=_EXEC_STYLE[p.status]),
            size,
        )
    return table


def dashboard(client: GatewayClient, store: MonitorStore, feed: MonitorFeed) -> Group:
    state = client.state.value
    header = Text.assemble(
        ("🦀 Crabwalk ", "bold cyan"),
        (f"{client.url} ", "dim"),
        (state, "green" if client.connected else "red"),
        (f"  events: {feed.events_seen}", "dim"),
    )
    if feed.recording:
        header.append(f"  ● rec {len(feed.recorded_events)}", style="bold red")
    parts: list[Any] = [Panel(header, box=box.ROUNDED), sessions_table(store.sessions)]
    parts.append(actions_table(store.actions))
    if store.execs:
        parts.append(execs_table(store.execs))
    return Group(*parts)


def layout_to_dict(result: LayoutResult) -> dict[str, Any]:
    return {
        "nodes": [
            {
                "id": node.id,
                "type": node.type.value,
                "position": {"x": node.position.x, "y": node.position.y},
            }
            for node in result.nodes
        ],
        "edges": [
            {"id": e.id, "source": e.source, "target": e.target, "kind": e.kind.value}
            for e in result.edges
        ],
    }


# ─────────────────────────────────────────────────────────────────────────────
# Subcommands
# ─────────────────────────────────────────────────────────────────────────────

def _make_client(settings: Settings) -> GatewayClient:
    return GatewayClient(
        settings.gateway_url,
        settings.gateway_token,
        connect_timeout=settings.gateway.connect_timeout_seconds,
        request_timeout=settings.gateway.request_timeout_seconds,
        reconnect_delay=settings.gateway.reconnect_delay_seconds,
    )


def _make_store(settings: Settings) -> MonitorStore:
    return MonitorStore(
        history_limit=settings.monitor.history_limit,
        output_cap=settings.monitor.max_output_chars,
    )


async def _load_store(
    client: GatewayClient, settings: Settings, historical: bool
) -> MonitorStore:
    store = _make_store(settings)
    feed = MonitorFeed(client, store, active_minutes=settings.session_window_minutes(historical))
    await feed.refresh_sessions()
    return store


async def run_watch(
    settings: Settings,
    historical: bool = False,
    record_path: Optional[str] = None,
    debug: bool = False,
    console: Optional[Console] = None,
) -> int:
    """Live dashboard until interrupted."""
    console = console or Console()
    store = _make_store(settings)
    bind_gateway(settings.gateway_url)

    try:
        async with _make_client(settings) as client:
            feed = MonitorFeed(
                client,
                store,
                active_minutes=settings.session_window_minutes(historical),
                poll_interval=settings.monitor.poll_interval_seconds,
                record=record_path is not None,
                debug=debug,
            )
            await feed.start()
            try:
                with Live(
                    dashboard(client, store, feed),
                    console=console,
                    refresh_per_second=REFRESH_PER_SECOND,
                ) as live:
                    while True:
                        await asyncio.sleep(1 / REFRESH_PER_SECOND)
                        live.update(dashboard(client, store, feed))
            except KeyboardInterrupt:
                log.info("monitor_cli.interrupted")
            except asyncio.CancelledError:
                log.info("monitor_cli.cancelled")
                raise
            finally:
                await feed.stop()
                if record_path is not None:
                    path = feed.export_events(record_path)
                    console.print(f"[dim]Recorded {len(feed.recorded_events)} events → {path}[/dim]")
    except GatewayError as e:
        log.error("monitor_cli.gateway_failed", error=str(e), error_type=type(e).__name__)
        console.print(f"[bold red]❌ {e}[/bold red]")
        return 1
    return 0


async def run_sessions(
    settings: Settings,
    historical: bool = False,
    console: Optional[Console] = None,
) -> int:
    """Print one session table and exit."""
    console = console or Console()
    bind_gateway(settings.gateway_url)
    try:
        async with _make_client(settings) as client:
            store = await _load_store(client, settings, historical)
    except GatewayError as e:
        log.error("monitor_cli.gateway_failed", error=str(e), error_type=type(e).__name__)
        console.print(f"[bold red]❌ {e}[/bold red]")
        return 1

    if not store.sessions:
        console.print("[dim]No sessions in the selected window.[/dim]")
        return 0
    console.print(sessions_table(store.sessions))
    return 0


async def run_layout(
    settings: Settings,
    historical: bool = False,
    direction: Optional[str] = None,
    console: Optional[Console] = None,
) -> int:
    """Print the laid-out session graph as JSON and exit."""
    console = console or Console()
    bind_gateway(settings.gateway_url)
    try:
        async with _make_client(settings) as client:
            store = await _load_store(client, settings, historical)
    except GatewayError as e:
        log.error("monitor_cli.gateway_failed", error=str(e), error_type=type(e).__name__)
        console.print(f"[bold red]❌ {e}[/bold red]")
        return 1

    nodes, edges = build_graph(
        store.sessions,
        store.actions,
        store.execs,
        max_actions=settings.monitor.max_actions,
    )
    options = LayoutOptions(direction=Direction(direction or settings.layout.direction))
    result = layout_graph(nodes, edges, options)
    console.print_json(json.dumps(layout_to_dict(result)))
    return 0
