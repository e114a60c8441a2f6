"""Live connections and the user -> connection registry.

A user id maps to at most one registered connection (last connect wins).
An earlier connection for the same user is superseded, not closed: it stays
attached, keeps its room memberships and still receives room broadcasts,
but direct per-user delivery goes to the newest one only.

The registry also caches each user's privacy flags, refreshed on connect.

Thread Safety:
    Plain dicts, no awaits inside any method. RealtimeHub serialises
    mutations together with the presence recomputation that follows them.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

from app.chat.schemas import PrivacySettings

logger = logging.getLogger(__name__)


class Connection:
    """One accepted WebSocket bound to a verified user id."""

    def __init__(self, websocket, user_id: str, connection_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.user_id = user_id
        self.id = connection_id or uuid.uuid4().hex

    async def send(self, event: str, data: Any) -> bool:
        """Send one outbound frame. Returns False if the socket is gone."""
        try:
            await self.websocket.send_json({"type": event, "data": data})
            return True
        except Exception as e:
            logger.debug(f"Failed to send {event} to connection {self.id}: {e}")
            return False

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r})"


class ConnectionRegistry:
    """Maps user ids to their live connection and privacy flags."""

    def __init__(self) -> None:
        # connection_id -> Connection (every attached socket, superseded ones included)
        self._connections: Dict[str, Connection] = {}

        # user_id -> connection_id of the registered (newest) connection
        self._user_connections: Dict[str, str] = {}

        # user_id -> cached privacy flags
        self._privacy: Dict[str, PrivacySettings] = {}

    # -- connection table ---------------------------------------------------

    def attach(self, connection: Connection) -> None:
        self._connections[connection.id] = connection

    def detach(self, connection_id: str) -> Optional[Connection]:
        return self._connections.pop(connection_id, None)

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def all_connections(self) -> List[Connection]:
        return list(self._connections.values())

    # -- user registry ------------------------------------------------------

    def register(self, user_id: str, connection_id: str) -> Optional[str]:
        """Point user_id at connection_id, returning the superseded id if any."""
        previous = self._user_connections.get(user_id)
        self._user_connections[user_id] = connection_id
        if previous and previous != connection_id:
            logger.info(f"[Registry] User {user_id} superseded connection {previous} with {connection_id}")
        return previous if previous != connection_id else None

    def lookup(self, user_id: str) -> Optional[str]:
        return self._user_connections.get(user_id)

    def lookup_connection(self, user_id: str) -> Optional[Connection]:
        connection_id = self._user_connections.get(user_id)
        if connection_id is None:
            return None
        return self._connections.get(connection_id)

    def unregister(self, user_id: str, connection_id: Optional[str] = None) -> bool:
        """Drop the user's mapping and cached privacy flags.

        With connection_id given, only unregisters if that connection is still
        the registered one, so a superseded socket closing late leaves the
        newer mapping alone. Returns True if a mapping was removed.
        """
        current = self._user_connections.get(user_id)
        if current is None:
            return False
        if connection_id is not None and current != connection_id:
            return False
        del self._user_connections[user_id]
        self._privacy.pop(user_id, None)
        return True

    def registered_users(self) -> List[str]:
        """Registered user ids in registration order."""
        return list(self._user_connections)

    def is_registered(self, user_id: str) -> bool:
        return user_id in self._user_connections

    # -- privacy cache ------------------------------------------------------

    def set_privacy(self, user_id: str, flags: PrivacySettings) -> None:
        self._privacy[user_id] = flags

    def get_privacy(self, user_id: str) -> PrivacySettings:
        return self._privacy.get(user_id) or PrivacySettings()

    def clear(self) -> None:
        self._connections.clear()
        self._user_connections.clear()
        self._privacy.clear()
