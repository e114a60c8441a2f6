"""WebSocket endpoint for realtime delivery.

    WebSocket /ws?token=<jwt>

Protocol (inbound frames are flat JSON objects with a ``type`` field):
    - updatePrivacySettings {showOnlineStatus}: re-broadcast presence
    - typing / stopTyping {chatId}: userTyping / userStoppedTyping to the room
    - addReaction {messageId, emoji}: toggle a reaction (same as the HTTP route)
    - joinChat {chatId}: join the chat room, reply chatJoined {chatId, userId}
    - leaveChat {chatId}: leave the chat room

Outbound frames are ``{"type": <event>, "data": <payload>}``. A failed
inbound operation answers ``{"type": "error", "error": <message>}`` to the
sending connection only and keeps the socket open.
"""
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.auth import user_id_from_token
from app.chat.service import ChatService
from app.errors import ChatServiceError, ValidationError

from .connections import Connection
from .hub import hub

logger = logging.getLogger(__name__)

router = APIRouter()


async def _send_error(connection: Connection, message: str) -> None:
    try:
        await connection.websocket.send_json({"type": "error", "error": message})
    except Exception as exc:
        logger.debug(f"[WS] Could not deliver error frame to {connection.id}: {exc}")


def _text_field(data: dict, key: str):
    """A string field of an inbound frame, or None when absent."""
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    raise ValidationError(f"{key} must be a string")


async def _handle_frame(connection: Connection, service: ChatService, data: dict) -> None:
    message_type = data.get("type")
    user_id = connection.user_id

    if message_type == "updatePrivacySettings":
        show = data.get("showOnlineStatus")
        if not isinstance(show, bool):
            raise ValidationError("showOnlineStatus must be a boolean")
        await hub.update_privacy(user_id, show)

    elif message_type in ("typing", "stopTyping"):
        chat_id = _text_field(data, "chatId")
        if not chat_id:
            raise ValidationError("ChatId Required")
        await hub.events.typing(
            chat_id, user_id, exclude_connection_id=connection.id, stopped=message_type == "stopTyping"
        )

    elif message_type == "addReaction":
        await service.toggle_reaction(
            user_id, _text_field(data, "messageId"), _text_field(data, "emoji")
        )

    elif message_type == "joinChat":
        chat = service.ensure_participant(user_id, _text_field(data, "chatId"))
        hub.join_chat(connection, chat.id)
        await connection.send("chatJoined", {"chatId": chat.id, "userId": user_id})

    elif message_type == "leaveChat":
        chat_id = _text_field(data, "chatId")
        if not chat_id:
            raise ValidationError("ChatId Required")
        hub.leave_chat(connection, chat_id)

    else:
        raise ValidationError(f"Unknown message type: {message_type}")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Realtime channel for one authenticated user.

    The verified token subject is the connection's identity; any user id a
    client puts into a frame is ignored. A newer connection from the same
    user supersedes this one for direct delivery.
    """
    try:
        user_id = user_id_from_token(websocket.query_params.get("token"))
    except ChatServiceError as exc:
        logger.warning(f"[WS] Rejecting connection: {exc.message}")
        await websocket.close(code=1008)  # 1008 = Policy Violation
        return

    service = ChatService.get_instance()
    await websocket.accept()
    connection = Connection(websocket, user_id)

    privacy = await service.profiles.get_privacy_settings(user_id)
    online = await hub.connect(connection, privacy)
    logger.info(f"[WS] User {user_id} connected as {connection.id}, {len(online)} visible online")

    try:
        while True:
            try:
                data = json.loads(await websocket.receive_text())
            except json.JSONDecodeError:
                await _send_error(connection, "Invalid JSON")
                continue
            if not isinstance(data, dict):
                await _send_error(connection, "Frames must be JSON objects")
                continue
            logger.debug(f"[WS] {connection.id} received: type={data.get('type', '?')}")
            try:
                await _handle_frame(connection, service, data)
            except ChatServiceError as exc:
                await _send_error(connection, exc.message)
    except WebSocketDisconnect:
        pass
    finally:
        was_current = await hub.disconnect(connection)
        if was_current:
            await service.profiles.update_last_seen(user_id)
