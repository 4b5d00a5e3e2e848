"""
Crabwalk — real-time monitor for Clawdbot agent gateways.

Connects to a gateway over WebSocket, reconstructs sessions, sub-agent
spawns, actions and exec processes from the event stream, and lays them
out as a graph.
"""

__version__ = "0.1.0"
