"""Message lifecycle rules.

Pure functions deciding what a create/react/edit/delete transition does to a
message. Nothing here touches storage or sockets; ChatService applies the
results under the per-message lock.

States: text, image, reply, forward, deleted. ``deleted`` is terminal.
"""
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from app.errors import ForbiddenError, ValidationError

from .schemas import (
    DELETED_SUMMARY,
    IMAGE_SUMMARY,
    REPLY_PREFIX,
    ImageRef,
    LatestMessage,
    Message,
    MessageType,
    QuotedType,
    Reaction,
    RepliedMessage,
)

DEFAULT_EDIT_WINDOW = timedelta(minutes=15)


def resolve_message_type(
    has_image: bool, is_reply: bool, is_forward: bool = False
) -> MessageType:
    """Pick the stored type for a new message.

    Reply wins over forward; both win over the plain content type.
    """
    if is_reply:
        return MessageType.REPLY
    if is_forward:
        return MessageType.FORWARD
    return MessageType.IMAGE if has_image else MessageType.TEXT


def snapshot_for_reply(target: Message) -> RepliedMessage:
    """Freeze the quoted message at reply time."""
    if target.messageType == MessageType.IMAGE:
        quoted = QuotedType.IMAGE
    elif target.messageType == MessageType.DELETED:
        quoted = QuotedType.DELETED
    else:
        quoted = QuotedType.TEXT
    return RepliedMessage(
        id=target.id,
        text=target.text or "",
        sender=target.sender,
        messageType=quoted,
        image=target.image.model_copy() if target.image else None,
    )


def toggle_reaction(reactions: List[Reaction], user_id: str, emoji: str) -> List[Reaction]:
    """Apply one reaction toggle and return the full new reaction list.

    Same (user, emoji) again removes it; a different emoji replaces the
    user's previous reaction. A user never holds more than one reaction.
    """
    if any(r.userId == user_id and r.emoji == emoji for r in reactions):
        return [r for r in reactions if not (r.userId == user_id and r.emoji == emoji)]
    updated = [r for r in reactions if r.userId != user_id]
    updated.append(Reaction(userId=user_id, emoji=emoji))
    return updated


def check_can_react(message: Message) -> None:
    if message.messageType == MessageType.DELETED:
        raise ValidationError("Cannot react to a deleted message")


def check_can_edit(
    message: Message,
    requester_id: str,
    now: datetime,
    window: timedelta = DEFAULT_EDIT_WINDOW,
) -> None:
    """Raise unless requester may edit the message right now."""
    if message.sender != requester_id:
        raise ForbiddenError("You can only edit your own messages")
    if message.messageType == MessageType.DELETED:
        raise ValidationError("Cannot edit a deleted message")
    if message.image is not None and not message.text.strip():
        raise ValidationError("Cannot edit image-only messages")
    if now - message.createdAt > window:
        minutes = int(window.total_seconds() // 60)
        raise ValidationError(
            f"Messages can only be edited within {minutes} minutes of sending"
        )


def check_can_delete(message: Message, requester_id: str) -> None:
    if message.sender != requester_id:
        raise ForbiddenError("You can only delete your own messages")


def tombstone_fields(now: datetime) -> dict:
    """Field updates that turn a message into a deleted tombstone."""
    return {
        "messageType": MessageType.DELETED,
        "text": "",
        "image": None,
        "reactions": [],
        "linkPreview": None,
        "updatedAt": now,
    }


def summarize(message: Message) -> LatestMessage:
    """Text shown in the chat list for a message that is currently latest."""
    if message.messageType == MessageType.DELETED:
        text = DELETED_SUMMARY
    elif message.messageType == MessageType.REPLY:
        text = REPLY_PREFIX + (message.text or IMAGE_SUMMARY)
    elif message.image is not None:
        text = IMAGE_SUMMARY
    else:
        text = message.text
    return LatestMessage(text=text, sender=message.sender)


def split_content(
    text: Optional[str], image: Optional[ImageRef], has_upload: bool = False
) -> Tuple[str, Optional[ImageRef]]:
    """Validate and normalise the content of a new message.

    ``has_upload`` counts an image that will be stored once the message is
    accepted.
    """
    text = text or ""
    if not text.strip() and image is None and not has_upload:
        raise ValidationError("Either text or image is required")
    return text, image
