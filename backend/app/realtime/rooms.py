"""Room membership: which connections have joined which chat rooms.

A room id is a chat id. Membership answers one question for the message
path: is the recipient's connection currently viewing this chat?
"""
from typing import Dict, Set


class RoomMembership:
    def __init__(self) -> None:
        # room_id -> connection ids
        self._members: Dict[str, Set[str]] = {}
        # connection_id -> room ids (for disconnect cleanup)
        self._rooms_by_connection: Dict[str, Set[str]] = {}

    def join(self, connection_id: str, room_id: str) -> None:
        self._members.setdefault(room_id, set()).add(connection_id)
        self._rooms_by_connection.setdefault(connection_id, set()).add(room_id)

    def leave(self, connection_id: str, room_id: str) -> None:
        members = self._members.get(room_id)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._members[room_id]
        rooms = self._rooms_by_connection.get(connection_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._rooms_by_connection[connection_id]

    def is_member(self, connection_id: str, room_id: str) -> bool:
        return connection_id in self._members.get(room_id, ())

    def members(self, room_id: str) -> Set[str]:
        return set(self._members.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return set(self._rooms_by_connection.get(connection_id, ()))

    def drop_connection(self, connection_id: str) -> None:
        """Leave every room the connection had joined."""
        for room_id in self.rooms_of(connection_id):
            self.leave(connection_id, room_id)

    def clear(self) -> None:
        self._members.clear()
        self._rooms_by_connection.clear()
