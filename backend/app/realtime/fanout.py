"""Event fan-out: who receives which domain event, and in what order.

| Event           | Legs (in order)                                         |
|-----------------|---------------------------------------------------------|
| newMessage      | room, receiver direct, sender direct                    |
| messageUpdated  | room, receiver direct, sender direct                    |
| messagesSeen    | sender direct only                                      |
| messageReaction | room, then every participant direct                     |
| messageEdited   | room, then every participant direct                     |
| messageDeleted  | room only                                               |
| userTyping /    | room, excluding the typing connection                   |
| userStoppedTyping                                                         |

Direct legs back up the room leg for participants who have the app open
without having joined the chat's room, so a client may see the same event
twice and is expected to de-duplicate by message id. A user without a
registered connection simply has that leg skipped.

Every method returns the number of frames successfully sent.
"""
import asyncio
import logging
from typing import Any, Iterable, Optional

from .connections import Connection, ConnectionRegistry
from .rooms import RoomMembership

logger = logging.getLogger(__name__)


class EventRouter:
    def __init__(self, registry: ConnectionRegistry, rooms: RoomMembership) -> None:
        self._registry = registry
        self._rooms = rooms

    # -- delivery legs ------------------------------------------------------

    async def to_room(
        self,
        room_id: str,
        event: str,
        data: Any,
        exclude_connection_id: Optional[str] = None,
    ) -> int:
        """Send to every connection joined to the room, concurrently."""
        connections = [
            conn
            for conn_id in self._rooms.members(room_id)
            if conn_id != exclude_connection_id
            and (conn := self._registry.get_connection(conn_id)) is not None
        ]
        if not connections:
            return 0
        results = await asyncio.gather(
            *[conn.send(event, data) for conn in connections],
            return_exceptions=True,
        )
        return sum(1 for r in results if r is True)

    async def to_user(self, user_id: Optional[str], event: str, data: Any) -> int:
        """Send to the user's registered connection, if any."""
        if not user_id:
            return 0
        connection = self._registry.lookup_connection(user_id)
        if connection is None:
            return 0
        return 1 if await connection.send(event, data) else 0

    async def to_connection(self, connection: Connection, event: str, data: Any) -> int:
        return 1 if await connection.send(event, data) else 0

    async def _room_then_users(
        self, room_id: str, user_ids: Iterable[Optional[str]], event: str, data: Any
    ) -> int:
        delivered = await self.to_room(room_id, event, data)
        for user_id in user_ids:
            delivered += await self.to_user(user_id, event, data)
        return delivered

    # -- domain events ------------------------------------------------------

    async def new_message(self, message: dict, receiver_id: Optional[str], sender_id: str) -> int:
        delivered = await self._room_then_users(
            message["chatId"], [receiver_id, sender_id], "newMessage", message
        )
        logger.debug(f"[Fanout] newMessage {message['id']} delivered {delivered}x")
        return delivered

    async def message_updated(self, message: dict, receiver_id: Optional[str], sender_id: str) -> int:
        return await self._room_then_users(
            message["chatId"], [receiver_id, sender_id], "messageUpdated", message
        )

    async def messages_seen(self, sender_id: str, payload: dict) -> int:
        return await self.to_user(sender_id, "messagesSeen", payload)

    async def message_reaction(self, chat_id: str, participants: Iterable[str], payload: dict) -> int:
        return await self._room_then_users(chat_id, participants, "messageReaction", payload)

    async def message_edited(self, chat_id: str, participants: Iterable[str], payload: dict) -> int:
        return await self._room_then_users(chat_id, participants, "messageEdited", payload)

    async def message_deleted(self, chat_id: str, payload: dict) -> int:
        return await self.to_room(chat_id, "messageDeleted", payload)

    async def typing(
        self, chat_id: str, user_id: str, exclude_connection_id: Optional[str], stopped: bool = False
    ) -> int:
        event = "userStoppedTyping" if stopped else "userTyping"
        return await self.to_room(
            chat_id,
            event,
            {"chatId": chat_id, "userId": user_id},
            exclude_connection_id=exclude_connection_id,
        )
