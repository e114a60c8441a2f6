"""Realtime delivery core.

Components:
    - ConnectionRegistry: user -> newest connection, privacy flags
    - RoomMembership: which connections view which chat
    - PresenceBroadcaster: privacy-filtered online snapshots
    - EventRouter: per-event fan-out legs
    - RealtimeHub: owns the above, serialises registry mutations
"""
from .hub import RealtimeHub, hub

__all__ = ["RealtimeHub", "hub"]
