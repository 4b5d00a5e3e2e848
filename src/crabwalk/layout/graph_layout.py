"""
layout/graph_layout.py — Session Graph Layout

Positions the monitor graph — one origin node, one node per session, action
and exec process — on a 2-D plane, timeline style:

  - every session owns a column; its session node sits on top and its
    actions and exec processes follow in chronological order below it
  - vertical mode (TB/BT): all roots share column 0, sub-agents move one
    column right per spawn depth
  - horizontal mode (LR/RL): each root tree owns its own horizontal band,
    sub-agents move right within the band
  - a sub-agent starts at the height of the point in its parent's timeline
    where it first became active
  - sessions sharing a column are pushed down until they no longer overlap
  - nodes that cannot be tied to a session go to an overflow lane

layout_graph() is pure and deterministic: same nodes, edges and options in,
same positions out. Pinned (user-dragged) positions are merged afterwards.

Usage:
    nodes, edges = build_graph(store.sessions, store.actions, store.execs)
    result = layout_graph(nodes, edges, LayoutOptions(direction=Direction.LR))
    for node in result.nodes:
        print(node.id, node.position.x, node.position.y)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from crabwalk.monitor.models import Action, ExecProcess, Session


ORIGIN_NODE_ID = "crab-origin"


class NodeType(str, Enum):
    ORIGIN  = "crab"
    SESSION = "session"
    ACTION  = "action"
    EXEC    = "exec"


class EdgeKind(str, Enum):
    ORIGIN   = "origin"
    SPAWN    = "spawn"
    TIMELINE = "timeline"
    EXEC     = "exec"


class Direction(str, Enum):
    TB = "TB"
    BT = "BT"
    LR = "LR"
    RL = "RL"

    @property
    def horizontal(self) -> bool:
        return self in (Direction.LR, Direction.RL)


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class NodeSize:
    width: int
    height: int


NODE_DIMENSIONS: dict[NodeType, NodeSize] = {
    NodeType.SESSION: NodeSize(280, 140),
    NodeType.EXEC:    NodeSize(300, 120),
    NodeType.ACTION:  NodeSize(220, 100),
    NodeType.ORIGIN:  NodeSize(64, 64),
}
FALLBACK_SIZE = NodeSize(180, 80)


@dataclass(frozen=True)
class Node:
    id: str
    type: NodeType
    data: Any = None
    position: Position = Position(0, 0)


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    kind: EdgeKind = EdgeKind.TIMELINE


@dataclass(frozen=True)
class LayoutOptions:
    direction: Direction = Direction.LR
    item_height: int = 100          # per-item height used for spawn/extent estimates
    row_gap: int = 80               # vertical gap between items in a column
    column_gap: int = 400           # horizontal distance between columns
    spawn_offset: int = 60          # extra drop for a sub-agent below its spawn point
    root_start_y: int = 200         # first root session, below the origin node
    min_session_gap: int = 120      # minimum gap between sessions in one column
    root_horizontal_gap: int = 0    # gap between root bands in horizontal mode
    origin_position: Position = Position(-120, -100)
    orphan_x: int = -200
    orphan_margin: int = 100        # orphan lane starts this far below the lowest column


@dataclass
class LayoutResult:
    nodes: list[Node]
    edges: list[Edge]

    def positions(self) -> dict[str, Position]:
        return {node.id: node.position for node in self.nodes}


def session_node_id(key: str) -> str:
    return f"session-{key}"


def action_node_id(action_id: str) -> str:
    return f"action-{action_id}"


def exec_node_id(exec_id: str) -> str:
    return f"exec-{exec_id}"


def _size(node_type: NodeType) -> NodeSize:
    return NODE_DIMENSIONS.get(node_type, FALLBACK_SIZE)


# ─────────────────────────────────────────────────────────────────────────────
# Hierarchy resolution
# ─────────────────────────────────────────────────────────────────────────────

def find_roots(sessions: Mapping[str, Session]) -> list[str]:
    """
    Root session keys sorted by key.

    A root has no parent, or a parent missing from the working set. Keys
    are used for ordering because activity timestamps change while a
    session streams and would make roots swap places.
    """
    return sorted(
        key
        for key, session in sessions.items()
        if not session.spawned_by or session.spawned_by not in sessions
    )


def _walk_to_root(key: str, sessions: Mapping[str, Session]) -> tuple[int, Optional[str]]:
    """Return (depth, root key); (0, None) when the chain loops."""
    visited: set[str] = set()
    depth = 0
    current = sessions.get(key)
    if current is None:
        return 0, None
    while True:
        if current.key in visited:
            return 0, None
        visited.add(current.key)
        parent = sessions.get(current.spawned_by) if current.spawned_by else None
        if parent is None:
            return depth, current.key
        depth += 1
        current = parent


def session_depth(key: str, sessions: Mapping[str, Session]) -> int:
    """Spawn distance from `key` to its root; 0 for roots, unknown keys and cycles."""
    return _walk_to_root(key, sessions)[0]


def root_index(key: str, sessions: Mapping[str, Session], roots: list[str]) -> int:
    """Index of the root of `key` within `roots`; 0 for unknown keys and cycles."""
    _, root = _walk_to_root(key, sessions)
    if root is None:
        return 0
    try:
        return roots.index(root)
    except ValueError:
        return 0


# ─────────────────────────────────────────────────────────────────────────────
# Graph construction
# ─────────────────────────────────────────────────────────────────────────────

def build_graph(
    sessions: Iterable[Session],
    actions: Iterable[Action],
    execs: Iterable[ExecProcess] = (),
    selected_session: Optional[str] = None,
    max_actions: Optional[int] = None,
) -> tuple[list[Node], list[Edge]]:
    """
    Build the unpositioned node and edge sets for the monitor graph.

    With `selected_session` only that session and its activity are kept;
    otherwise the newest `max_actions` actions (all when None) are shown.
    """
    all_sessions = list(sessions)
    all_actions = list(actions)

    if selected_session is not None:
        visible_sessions = [s for s in all_sessions if s.key == selected_session]
        visible_actions = [a for a in all_actions if a.session_key == selected_session]
        visible_execs = [e for e in execs if e.session_key == selected_session]
    else:
        visible_sessions = all_sessions
        visible_actions = sorted(all_actions, key=lambda a: (a.timestamp, a.seq, a.id))
        if max_actions is not None:
            visible_actions = visible_actions[-max_actions:] if max_actions > 0 else []
        visible_execs = list(execs)

    nodes: list[Node] = [
        Node(
            id=ORIGIN_NODE_ID,
            type=NodeType.ORIGIN,
            data={"active": bool(all_sessions or visible_actions)},
        )
    ]
    nodes.extend(Node(session_node_id(s.key), NodeType.SESSION, s) for s in visible_sessions)
    nodes.extend(Node(action_node_id(a.id), NodeType.ACTION, a) for a in visible_actions)
    nodes.extend(Node(exec_node_id(e.id), NodeType.EXEC, e) for e in visible_execs)

    edges: list[Edge] = []
    visible_keys = {s.key for s in visible_sessions}

    for session in visible_sessions:
        edges.append(
            Edge(f"e-crab-{session.key}", ORIGIN_NODE_ID, session_node_id(session.key), EdgeKind.ORIGIN)
        )
        if session.spawned_by in visible_keys and session.spawned_by != session.key:
            edges.append(
                Edge(
                    f"e-spawn-{session.spawned_by}-{session.key}",
                    session_node_id(session.spawned_by),
                    session_node_id(session.key),
                    EdgeKind.SPAWN,
                )
            )

    by_session: dict[str, list[Action]] = {}
    for action in visible_actions:
        if action.session_key:
            by_session.setdefault(action.session_key, []).append(action)

    for key, chain in by_session.items():
        chain = sorted(chain, key=lambda a: (a.timestamp, a.seq, a.id))
        for prev, action in zip([None, *chain], chain):
            if prev is None:
                if key in visible_keys:
                    edges.append(
                        Edge(f"e-session-{action.id}", session_node_id(key), action_node_id(action.id))
                    )
            else:
                edges.append(
                    Edge(f"e-{prev.id}-{action.id}", action_node_id(prev.id), action_node_id(action.id))
                )

    for process in visible_execs:
        if process.session_key in visible_keys:
            edges.append(
                Edge(
                    f"e-exec-{process.id}",
                    session_node_id(process.session_key),
                    exec_node_id(process.id),
                    EdgeKind.EXEC,
                )
            )

    return nodes, edges


# ─────────────────────────────────────────────────────────────────────────────
# Layout
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class _TimelineItem:
    node_id: str
    type: NodeType
    timestamp: int
    sort_key: tuple


@dataclass
class _Column:
    session: Session
    depth: int
    root_index: int
    is_root: bool
    spawn_y: float = 0.0        # desired top y before collision adjustment
    items: list[_TimelineItem] = field(default_factory=list)


def spawn_offset_for(count: int, options: LayoutOptions) -> float:
    """Vertical offset of a sub-agent spawned after `count` parent timeline items."""
    return count * (options.item_height + options.row_gap) + options.spawn_offset


def layout_graph(
    nodes: list[Node],
    edges: list[Edge],
    options: Optional[LayoutOptions] = None,
    pinned: Optional[Mapping[str, Position]] = None,
) -> LayoutResult:
    """
    Compute positions for every node.

    Returns the nodes in input order with positions filled in, and the
    edges unchanged. `pinned` positions override computed ones.
    """
    opts = options or LayoutOptions()
    horizontal = opts.direction.horizontal

    sessions: dict[str, Session] = {}
    actions: list[tuple[str, Action]] = []
    execs: list[tuple[str, ExecProcess]] = []
    for node in nodes:
        if node.type is NodeType.SESSION and isinstance(node.data, Session):
            sessions.setdefault(node.data.key, node.data)
        elif node.type is NodeType.ACTION and isinstance(node.data, Action):
            actions.append((node.id, node.data))
        elif node.type is NodeType.EXEC and isinstance(node.data, ExecProcess):
            execs.append((node.id, node.data))

    roots = find_roots(sessions)
    root_set = set(roots)

    # ── Columns ──────────────────────────────────────────────────────────────
    columns: dict[str, _Column] = {}
    for key, session in sessions.items():
        depth, root = _walk_to_root(key, sessions)
        columns[key] = _Column(
            session=session,
            depth=depth,
            root_index=roots.index(root) if root in root_set else 0,
            # a session caught in a spawn cycle is placed like a root
            is_root=key in root_set or root is None,
        )

    # ── Timelines ────────────────────────────────────────────────────────────
    first_action_at: dict[str, int] = {}
    for node_id, action in sorted(actions, key=lambda pair: (pair[1].timestamp, pair[1].seq, pair[0])):
        column = columns.get(action.session_key)
        if column is None:
            continue
        first_action_at.setdefault(action.session_key, action.timestamp)
        column.items.append(
            _TimelineItem(node_id, NodeType.ACTION, action.timestamp, (action.timestamp, 0, action.seq, node_id))
        )
    for node_id, process in execs:
        column = columns.get(process.session_key)
        if column is None:
            continue
        column.items.append(
            _TimelineItem(node_id, NodeType.EXEC, process.started_at, (process.started_at, 1, 0, node_id))
        )
    for key, column in columns.items():
        column.items.sort(key=lambda item: item.sort_key)
        column.items.insert(
            0,
            _TimelineItem(
                session_node_id(key), NodeType.SESSION, column.session.last_activity_at, ()
            ),
        )

    # ── Spawn points ─────────────────────────────────────────────────────────
    for key, column in columns.items():
        if column.is_root:
            column.spawn_y = opts.root_start_y
            continue
        parent = columns[column.session.spawned_by]
        spawned_at = first_action_at.get(key, column.session.last_activity_at)
        count = 1 + sum(1 for item in parent.items[1:] if item.timestamp <= spawned_at)
        column.spawn_y = spawn_offset_for(count, opts)

    # ── Placement ────────────────────────────────────────────────────────────
    max_depth = max((c.depth for c in columns.values()), default=0) + 1
    band_width = max_depth * opts.column_gap + opts.root_horizontal_gap

    def column_x(column: _Column) -> float:
        if horizontal:
            return column.root_index * band_width + column.depth * opts.column_gap
        return column.depth * opts.column_gap

    def column_key(column: _Column) -> tuple[int, int]:
        return (column.root_index if horizontal else 0, column.depth)

    occupied: dict[tuple[int, int], list[tuple[float, float]]] = {}

    def claim(column: _Column, desired_y: float) -> float:
        ranges = occupied.setdefault(column_key(column), [])
        extent = len(column.items) * (opts.item_height + opts.row_gap) + opts.min_session_gap
        y = desired_y
        moved = True
        while moved:
            moved = False
            for start, end in ranges:
                if y < end and y + extent > start:
                    y = end + opts.min_session_gap
                    moved = True
        ranges.append((y, y + extent))
        return y

    order = sorted(
        columns.values(),
        key=lambda c: (c.root_index if horizontal else 0, c.depth, c.spawn_y, c.session.key),
    )

    positions: dict[str, Position] = {}
    lowest = 0.0
    for column in order:
        top = claim(column, column.spawn_y)

        x = column_x(column)
        y = top
        for item in column.items:
            positions[item.node_id] = Position(x, y)
            y += _size(item.type).height + opts.row_gap
        lowest = max(lowest, y)

    for node in nodes:
        if node.type is NodeType.ORIGIN:
            positions[node.id] = opts.origin_position

    # ── Overflow lane ────────────────────────────────────────────────────────
    orphan_y = lowest + opts.orphan_margin
    for node in nodes:
        if node.id in positions:
            continue
        positions[node.id] = Position(opts.orphan_x, orphan_y)
        orphan_y += _size(node.type).height + opts.row_gap

    if pinned:
        positions.update({node_id: pos for node_id, pos in pinned.items() if node_id in positions})

    return LayoutResult(
        nodes=[replace(node, position=positions[node.id]) for node in nodes],
        edges=list(edges),
    )
