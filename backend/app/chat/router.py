"""HTTP endpoints for chats and messages.

All routes need a bearer token; the verified ``sub`` is the acting user.

Endpoints:
    POST   /chat/new                    - Create (or fetch) the chat with another user
    GET    /chat/all                    - The caller's chats with unseen counts
    POST   /message                     - Send a message (multipart, optional image)
    GET    /message/{chat_id}           - Paginated history, marks page 1 as seen
    POST   /message/reaction            - Toggle a reaction
    GET    /message/details/{message_id} - A message and the message it replies to
    PATCH  /messages/{message_id}       - Edit text within the edit window
    DELETE /messages/{message_id}       - Soft delete
    GET    /link-preview                - Preview lookup for a URL
"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse

from app.auth import get_current_user_id
from app.integrations.images import ImageUpload

from .schemas import EditMessageRequest, NewChatRequest, ReactionRequest, SendMessageInput
from .service import ChatService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def get_chat_service() -> ChatService:
    return ChatService.get_instance()


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


@router.post("/chat/new")
async def create_new_chat(
    body: NewChatRequest,
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> JSONResponse:
    chat, created = await service.create_chat(user_id, body.otherUserId)
    if created:
        return JSONResponse({"message": "New Chat created", "chatId": chat.id}, status_code=201)
    return JSONResponse({"message": "Chat already exists", "chatId": chat.id})


@router.get("/chat/all")
async def get_all_chats(
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> dict:
    return {"chats": await service.list_chats(user_id)}


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.post("/message", status_code=201)
async def send_message(
    background_tasks: BackgroundTasks,
    chatId: str = Form(""),
    text: Optional[str] = Form(None),
    replyTo: Optional[str] = Form(None),
    forwardFrom: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> dict:
    """Send a text, image, reply or forwarded message.

    The response goes out as soon as the message is stored and fanned out.
    If the text carries a URL, its preview is fetched afterwards and
    delivered as a ``messageUpdated`` event.
    """
    upload = None
    if image is not None and image.filename:
        upload = ImageUpload(image.filename, await image.read(), image.content_type)

    message = await service.send_message(
        user_id,
        SendMessageInput(
            chatId=chatId,
            text=text,
            replyTo=replyTo or None,
            forwardFrom=forwardFrom or None,
        ),
        upload=upload,
    )
    if service.wants_link_preview(message):
        background_tasks.add_task(service.attach_link_preview, message)

    sender = await service.profiles.get_user_or_placeholder(user_id)
    return {"message": message.to_wire(), "sender": sender}


@router.post("/message/reaction")
async def add_reaction(
    body: ReactionRequest,
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> dict:
    reactions = await service.toggle_reaction(user_id, body.messageId, body.emoji)
    return {
        "message": "Reaction updated",
        "messageId": body.messageId,
        "reactions": [r.model_dump() for r in reactions],
    }


@router.get("/message/details/{message_id}")
async def get_message_details(
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> dict:
    return {"message": await service.get_message_details(user_id, message_id)}


@router.get("/message/{chat_id}")
async def get_messages_by_chat(
    chat_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> dict:
    return await service.get_messages(user_id, chat_id, page=page, limit=limit)


@router.patch("/messages/{message_id}")
async def edit_message(
    message_id: str,
    body: EditMessageRequest,
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> dict:
    payload = await service.edit_message(user_id, message_id, body.text)
    return {"message": "Message edited", "data": payload}


@router.delete("/messages/{message_id}")
async def delete_message(
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> dict:
    payload = await service.delete_message(user_id, message_id)
    return {"message": "Message deleted", "data": payload}


@router.get("/link-preview")
async def get_link_preview(
    url: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
) -> dict:
    preview = await service.get_link_preview(url)
    return {"preview": preview.model_dump()}
