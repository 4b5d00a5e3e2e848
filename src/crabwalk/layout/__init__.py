"""
layout/ — Session Graph Layout

Builds the node/edge sets for the monitor graph and positions them.
"""

from crabwalk.layout.graph_layout import (
    Direction,
    Edge,
    LayoutOptions,
    LayoutResult,
    Node,
    NodeType,
    Position,
    build_graph,
    layout_graph,
)

__all__ = [
    "Direction",
    "Edge",
    "LayoutOptions",
    "LayoutResult",
    "Node",
    "NodeType",
    "Position",
    "build_graph",
    "layout_graph",
]
