"""
monitor/ — Event Translation and Monitor State

Turns gateway event frames into typed deltas (translator), materialises
them in memory (store), and keeps the store fed from a live client (feed).
"""

from crabwalk.monitor.feed import MonitorFeed
from crabwalk.monitor.store import MonitorStore
from crabwalk.monitor.translator import (
    accumulate_output,
    parse_session_key,
    session_info_to_monitor,
    translate_event,
)

__all__ = [
    "MonitorFeed",
    "MonitorStore",
    "accumulate_output",
    "parse_session_key",
    "session_info_to_monitor",
    "translate_event",
]
