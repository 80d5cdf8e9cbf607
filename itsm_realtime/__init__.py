"""
ITSM Realtime

Real-time notification layer for the ITSM backend:
- Process-wide notification hub (fan-out to connected sessions)
- WebSocket connection pumps with keepalive
- Per-user notification inbox pushed through the hub
"""

__version__ = "0.1.0"
