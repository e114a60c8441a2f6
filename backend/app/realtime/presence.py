"""Presence broadcasting.

After every connect, disconnect and privacy change the full set of visible
online users is recomputed from the registry and sent to *every* attached
connection as a snapshot (never a delta).
"""
import asyncio
import logging
from typing import List

from .connections import ConnectionRegistry

logger = logging.getLogger(__name__)

PRESENCE_EVENT = "getOnlineUser"


class PresenceBroadcaster:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    def snapshot(self) -> List[str]:
        """Registered users that have not hidden their online status."""
        return [
            user_id
            for user_id in self._registry.registered_users()
            if self._registry.get_privacy(user_id).showOnlineStatus is not False
        ]

    async def broadcast_presence(self) -> List[str]:
        online = self.snapshot()
        connections = self._registry.all_connections()
        if connections:
            await asyncio.gather(
                *[conn.send(PRESENCE_EVENT, online) for conn in connections],
                return_exceptions=True,
            )
        logger.debug(f"[Presence] Broadcast {len(online)} online users to {len(connections)} connections")
        return online
