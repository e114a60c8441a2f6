"""Pydantic models for chats, messages and the request bodies that mutate them.

Wire field names are camelCase to match what clients already send and
receive. Timestamps are naive UTC datetimes and serialise as ISO strings.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Naive UTC now (DuckDB TIMESTAMP columns carry no zone)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


# Text stored in Chat.latestMessage when the latest message is deleted
DELETED_SUMMARY = "Message deleted"
IMAGE_SUMMARY = "📷 Image"
REPLY_PREFIX = "↩️ "


class MessageType(str, Enum):
    """Type of a persisted message.

    Attributes:
        TEXT: Plain text message.
        IMAGE: Image, optionally with a caption.
        REPLY: Text and/or image quoting an earlier message.
        FORWARD: Copy of a message from another (or the same) chat.
        DELETED: Tombstone left behind by a soft delete.
    """
    TEXT = "text"
    IMAGE = "image"
    REPLY = "reply"
    FORWARD = "forward"
    DELETED = "deleted"


class QuotedType(str, Enum):
    """Reduced type recorded in a reply snapshot."""
    TEXT = "text"
    IMAGE = "image"
    DELETED = "deleted"


class PrivacySettings(BaseModel):
    """Per-user visibility flags owned by the profile service."""
    showOnlineStatus: bool = True
    showReadReceipts: bool = True


class ImageRef(BaseModel):
    url: str
    publicId: str


class Reaction(BaseModel):
    userId: str
    emoji: str


class RepliedMessage(BaseModel):
    """Frozen snapshot of the message being replied to."""
    id: str
    text: str = ""
    sender: str
    messageType: QuotedType = QuotedType.TEXT
    image: Optional[ImageRef] = None


class LinkPreview(BaseModel):
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    siteName: Optional[str] = None
    favicon: Optional[str] = None


class Message(BaseModel):
    """Complete persisted message as stored and broadcast."""
    id: str = Field(default_factory=new_id, description="Unique message ID")
    chatId: str = Field(..., description="Chat this message belongs to")
    sender: str = Field(..., description="User ID of the sender")
    text: str = Field(default="", description="Message text (empty for image-only)")
    image: Optional[ImageRef] = None
    messageType: MessageType = MessageType.TEXT
    seen: bool = False
    seenAt: Optional[datetime] = None
    reactions: List[Reaction] = Field(default_factory=list)
    replyTo: Optional[str] = None
    repliedMessage: Optional[RepliedMessage] = None
    forwardedFrom: Optional[str] = None
    isEdited: bool = False
    editedAt: Optional[datetime] = None
    linkPreview: Optional[LinkPreview] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json")


class LatestMessage(BaseModel):
    text: str
    sender: str


class Chat(BaseModel):
    """A one-to-one conversation between exactly two users."""
    id: str = Field(default_factory=new_id)
    users: List[str] = Field(..., min_length=2, max_length=2)
    latestMessage: Optional[LatestMessage] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    def other_user(self, user_id: str) -> Optional[str]:
        return next((u for u in self.users if u != user_id), None)

    def has_user(self, user_id: str) -> bool:
        return user_id in self.users

    def to_wire(self) -> dict:
        return self.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class NewChatRequest(BaseModel):
    otherUserId: str = Field(default="", description="User to open a chat with")


class ReactionRequest(BaseModel):
    messageId: str = Field(default="")
    emoji: str = Field(default="")


class EditMessageRequest(BaseModel):
    text: str = Field(default="")


class SendMessageInput(BaseModel):
    """Everything needed to create a message, independent of transport."""
    chatId: str = ""
    text: Optional[str] = None
    replyTo: Optional[str] = None
    forwardFrom: Optional[str] = None
    image: Optional[ImageRef] = None
