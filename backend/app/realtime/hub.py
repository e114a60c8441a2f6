"""RealtimeHub: the single owner of connection, room and presence state.

Registry mutations (connect, disconnect, privacy update) and the presence
broadcast that follows each of them run under one asyncio.Lock, so a
snapshot always reflects the mutation that triggered it and two concurrent
mutations cannot interleave their broadcasts out of order.

Thread Safety:
    Designed for a single event loop. Not safe to share across threads.
"""
import asyncio
import logging
from typing import List, Optional

from app.chat.schemas import PrivacySettings

from .connections import Connection, ConnectionRegistry
from .fanout import EventRouter
from .presence import PresenceBroadcaster
from .rooms import RoomMembership

logger = logging.getLogger(__name__)


class RealtimeHub:
    def __init__(self) -> None:
        self.registry = ConnectionRegistry()
        self.rooms = RoomMembership()
        self.presence = PresenceBroadcaster(self.registry)
        self.events = EventRouter(self.registry, self.rooms)
        self._lock = asyncio.Lock()

    async def connect(self, connection: Connection, privacy: Optional[PrivacySettings] = None) -> List[str]:
        """Register a freshly accepted connection and broadcast presence."""
        async with self._lock:
            self.registry.attach(connection)
            self.registry.register(connection.user_id, connection.id)
            self.registry.set_privacy(connection.user_id, privacy or PrivacySettings())
            logger.info(f"[Hub] User {connection.user_id} mapped to connection {connection.id}")
            return await self.presence.broadcast_presence()

    async def disconnect(self, connection: Connection) -> bool:
        """Forget a closed connection. Returns True if it was the user's current one."""
        async with self._lock:
            self.rooms.drop_connection(connection.id)
            self.registry.detach(connection.id)
            was_current = self.registry.unregister(connection.user_id, connection.id)
            logger.info(
                f"[Hub] Connection {connection.id} of user {connection.user_id} closed "
                f"(current={was_current})"
            )
            await self.presence.broadcast_presence()
            return was_current

    async def update_privacy(self, user_id: str, show_online_status: bool) -> List[str]:
        """Apply a client-initiated online-status change and broadcast presence."""
        async with self._lock:
            flags = self.registry.get_privacy(user_id).model_copy()
            flags.showOnlineStatus = show_online_status
            if self.registry.is_registered(user_id):
                self.registry.set_privacy(user_id, flags)
            return await self.presence.broadcast_presence()

    def join_chat(self, connection: Connection, chat_id: str) -> None:
        self.rooms.join(connection.id, chat_id)
        logger.info(f"[Hub] User {connection.user_id} joined chat room {chat_id}")

    def leave_chat(self, connection: Connection, chat_id: str) -> None:
        self.rooms.leave(connection.id, chat_id)
        logger.info(f"[Hub] User {connection.user_id} left chat room {chat_id}")

    def is_viewing(self, user_id: str, chat_id: str) -> bool:
        """Is the user's registered connection joined to the chat's room?"""
        connection_id = self.registry.lookup(user_id)
        return connection_id is not None and self.rooms.is_member(connection_id, chat_id)

    def is_online(self, user_id: str) -> bool:
        return self.registry.is_registered(user_id)

    def reset(self) -> None:
        """Drop all state (tests)."""
        self.registry.clear()
        self.rooms.clear()
        self._lock = asyncio.Lock()


# Global singleton shared by the WebSocket endpoint and ChatService
hub = RealtimeHub()
