"""ChatService: every chat/message operation, shared by HTTP and WebSocket.

Each public method validates its input and the actor's rights first
(raising ValidationError / UnauthorizedError / ForbiddenError /
NotFoundError with no side effects), then persists, then fans out through
the RealtimeHub.

Concurrency:
    - Per-message mutations (react, edit, delete, link preview) run under a
      keyed lock on the message id, fan-out included, so concurrent toggles
      never lose an update and clients receive reaction sets in commit order.
    - Chat creation runs under a keyed lock on the unordered user pair, so
      concurrent "open chat" requests produce exactly one chat.
    - Collaborator failures (profile, cache, link preview) are absorbed by
      the clients and never block persistence or fan-out.
"""
import asyncio
import logging
import math
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from app.config import AppSettings, get_config
from app.errors import ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from app.integrations.cache import build_cache, chats_cache_key, messages_cache_key
from app.integrations.images import ImageStore, ImageUpload
from app.integrations.link_preview import LinkPreviewFetcher, extract_first_url
from app.integrations.profile import ProfileClient
from app.realtime.hub import RealtimeHub, hub as default_hub

from . import lifecycle
from .locks import KeyedLock
from .receipts import ReadReceiptGate
from .schemas import (
    DELETED_SUMMARY,
    Chat,
    LatestMessage,
    LinkPreview,
    Message,
    MessageType,
    Reaction,
    SendMessageInput,
    utcnow,
)
from .store import ChatStore

logger = logging.getLogger(__name__)


class ChatService:
    """Message lifecycle, read receipts and delivery for one-to-one chats."""

    _instance: Optional["ChatService"] = None

    def __init__(
        self,
        store: ChatStore,
        profiles,
        cache,
        hub: RealtimeHub,
        link_previews: Optional[LinkPreviewFetcher] = None,
        images: Optional[ImageStore] = None,
        edit_window: timedelta = lifecycle.DEFAULT_EDIT_WINDOW,
        default_page_size: int = 50,
        max_page_size: int = 100,
        chats_ttl_seconds: int = 300,
    ) -> None:
        self.store = store
        self.profiles = profiles
        self.cache = cache
        self.hub = hub
        self.link_previews = link_previews
        self.images = images
        self.receipts = ReadReceiptGate(profiles)
        self.edit_window = edit_window
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.chats_ttl_seconds = chats_ttl_seconds
        self._message_locks = KeyedLock()
        self._pair_locks = KeyedLock()

    # -----------------------------------------------------------------------
    # Singleton wiring
    # -----------------------------------------------------------------------

    @classmethod
    def from_config(cls, config: AppSettings, hub: RealtimeHub = default_hub) -> "ChatService":
        fetcher = None
        if config.link_preview.enabled:
            fetcher = LinkPreviewFetcher(
                timeout_seconds=config.link_preview.timeout_seconds,
                user_agent=config.link_preview.user_agent,
                max_bytes=config.link_preview.max_bytes,
            )
        return cls(
            store=ChatStore.get_instance(config.storage.db_path),
            profiles=ProfileClient(
                config.profile_service.base_url,
                timeout_seconds=config.profile_service.timeout_seconds,
            ),
            cache=build_cache(config.cache.backend, config.redis_url),
            hub=hub,
            link_previews=fetcher,
            images=ImageStore(
                upload_dir=config.uploads.dir,
                public_base_url=config.uploads.public_base_url,
                max_bytes=config.uploads.max_bytes,
            ),
            edit_window=timedelta(minutes=config.messages.edit_window_minutes),
            default_page_size=config.messages.default_page_size,
            max_page_size=config.messages.max_page_size,
            chats_ttl_seconds=config.cache.chats_ttl_seconds,
        )

    @classmethod
    def get_instance(cls) -> "ChatService":
        if cls._instance is None:
            cls._instance = cls.from_config(get_config())
        return cls._instance

    @classmethod
    def set_instance(cls, service: "ChatService") -> None:
        cls._instance = service

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    async def aclose(self) -> None:
        """Close collaborator clients (application shutdown)."""
        for client in (self.profiles, self.link_previews, self.cache):
            closer = getattr(client, "aclose", None)
            if closer is not None:
                try:
                    await closer()
                except Exception as exc:
                    logger.warning(f"Error closing {type(client).__name__}: {exc}")

    # -----------------------------------------------------------------------
    # Guards
    # -----------------------------------------------------------------------

    @staticmethod
    def _require_actor(user_id: Optional[str]) -> str:
        if not user_id:
            raise UnauthorizedError("Unauthorized")
        return user_id

    def _get_chat_for(self, chat_id: str, user_id: str) -> Chat:
        chat = self.store.get_chat(chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        if not chat.has_user(user_id):
            raise ForbiddenError("You are not a participant of this chat")
        return chat

    def ensure_participant(self, user_id: Optional[str], chat_id: Optional[str]) -> Chat:
        """Chat the user may join as a room member."""
        user_id = self._require_actor(user_id)
        if not chat_id:
            raise ValidationError("ChatId Required")
        return self._get_chat_for(chat_id, user_id)

    def _get_message(self, message_id: str) -> Message:
        message = self.store.get_message(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        return message

    async def _invalidate_chat_lists(self, user_ids: List[str]) -> None:
        for uid in user_ids:
            await self.cache.invalidate(chats_cache_key(uid))

    async def _invalidate_message_pages(self, chat_id: str) -> None:
        await self.cache.invalidate_pattern(f"{messages_cache_key(chat_id)}*")

    # -----------------------------------------------------------------------
    # Chats
    # -----------------------------------------------------------------------

    async def create_chat(self, user_id: Optional[str], other_user_id: Optional[str]) -> Tuple[Chat, bool]:
        """Return the chat for {user, other}, creating it if needed.

        Returns (chat, created).
        """
        user_id = self._require_actor(user_id)
        if not other_user_id:
            raise ValidationError("Other userid is required")
        if other_user_id == user_id:
            raise ValidationError("Cannot open a chat with yourself")

        pair_key = ":".join(sorted([user_id, other_user_id]))
        async with self._pair_locks.hold(pair_key):
            existing = self.store.find_chat_by_users(user_id, other_user_id)
            if existing is not None:
                return existing, False
            chat = self.store.insert_chat(Chat(users=[user_id, other_user_id]))

        logger.info(f"[chat] Created chat {chat.id} for {user_id} and {other_user_id}")
        await self._invalidate_chat_lists([user_id, other_user_id])
        return chat, True

    async def list_chats(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        """The user's chats with the other participant's profile.

        Profile data comes from the cache when possible; latest message and
        unseen counts are always read fresh.
        """
        user_id = self._require_actor(user_id)
        cache_key = chats_cache_key(user_id)
        cached = await self.cache.get(cache_key)

        if cached:
            logger.info(f"Cache HIT for user {user_id} chats")
            results = []
            for item in cached:
                fresh = self.store.get_chat(item["chatId"])
                chat_data = fresh.to_wire() if fresh else dict(item["chat"])
                chat_data["unseenCount"] = self.store.count_unseen(item["chatId"], user_id)
                results.append({"user": item["user"], "chat": chat_data})
            return results

        logger.info(f"Cache MISS for user {user_id} chats - fetching from DB")
        chats = self.store.list_chats_for_user(user_id)
        users = await asyncio.gather(
            *[self.profiles.get_user_or_placeholder(c.other_user(user_id)) for c in chats]
        )

        results = []
        to_cache = []
        for chat, user_data in zip(chats, users):
            chat_data = chat.to_wire()
            to_cache.append({
                "chatId": chat.id,
                "otherUserId": chat.other_user(user_id),
                "user": user_data,
                "chat": dict(chat_data),
            })
            chat_data["unseenCount"] = self.store.count_unseen(chat.id, user_id)
            results.append({"user": user_data, "chat": chat_data})

        await self.cache.set(cache_key, to_cache, self.chats_ttl_seconds)
        return results

    # -----------------------------------------------------------------------
    # Messages: create
    # -----------------------------------------------------------------------

    async def send_message(
        self,
        sender_id: Optional[str],
        data: SendMessageInput,
        upload: Optional[ImageUpload] = None,
    ) -> Message:
        """Persist a new message and deliver it.

        An ``upload`` is written to the image store only after every check
        has passed, and removed again if the message cannot be stored.

        ``seen`` is decided right now from room membership: if the receiver's
        connection has joined this chat's room, the message is born seen.
        ``seenAt`` additionally needs both users' read-receipt permission.
        The link preview is not fetched here; see attach_link_preview.
        """
        sender_id = self._require_actor(sender_id)
        if not data.chatId:
            raise ValidationError("ChatId Required")

        text, image = data.text, data.image
        forwarded_from = None
        if upload is not None:
            if self.images is None:
                raise ValidationError("Image uploads are disabled")
            self.images.check(upload.content, upload.content_type)
        if data.forwardFrom and not data.replyTo:
            source = self._get_message(data.forwardFrom)
            self._get_chat_for(source.chatId, sender_id)
            if source.messageType == MessageType.DELETED:
                raise ValidationError("Cannot forward a deleted message")
            text, image = source.text, source.image
            forwarded_from = source.sender
            upload = None
        text, image = lifecycle.split_content(text, image, has_upload=upload is not None)

        chat = self._get_chat_for(data.chatId, sender_id)
        receiver_id = chat.other_user(sender_id)
        if receiver_id is None:
            raise ValidationError("No other user")

        replied = None
        if data.replyTo:
            target = self._get_message(data.replyTo)
            if target.chatId != chat.id:
                raise ValidationError("Can only reply to a message in the same chat")
            replied = lifecycle.snapshot_for_reply(target)

        receipts_allowed = await self.receipts.allows(sender_id, receiver_id)
        receiver_viewing = self.hub.is_viewing(receiver_id, chat.id)
        now = utcnow()
        if upload is not None:
            image = self.images.save(upload.filename, upload.content, upload.content_type)

        message = Message(
            chatId=chat.id,
            sender=sender_id,
            text=text,
            image=image,
            messageType=lifecycle.resolve_message_type(
                has_image=image is not None,
                is_reply=replied is not None,
                is_forward=forwarded_from is not None,
            ),
            seen=receiver_viewing,
            seenAt=now if receiver_viewing and receipts_allowed else None,
            replyTo=replied.id if replied else None,
            repliedMessage=replied,
            forwardedFrom=forwarded_from,
            createdAt=now,
            updatedAt=now,
        )
        try:
            self.store.insert_message(message)
        except Exception:
            if upload is not None:
                self.images.delete(image.publicId)
            raise
        self.store.update_latest_message(chat.id, lifecycle.summarize(message), updated_at=now)
        logger.info(
            f"[chat] Message {message.id} ({message.messageType.value}) in chat {chat.id} "
            f"from {sender_id}, seen={message.seen}"
        )

        await self._invalidate_chat_lists(chat.users)
        await self._invalidate_message_pages(chat.id)

        await self.hub.events.new_message(message.to_wire(), receiver_id, sender_id)
        if receiver_viewing and receipts_allowed:
            await self.hub.events.messages_seen(sender_id, {
                "chatId": chat.id,
                "seenBy": receiver_id,
                "messageIds": [message.id],
                "seenAt": now.isoformat(),
            })
        return message

    def wants_link_preview(self, message: Message) -> bool:
        return (
            self.link_previews is not None
            and message.image is None
            and extract_first_url(message.text) is not None
        )

    async def attach_link_preview(self, message: Message) -> Optional[Message]:
        """Fetch a preview for the message's first URL and broadcast the update.

        Meant to run after the send response has gone out. Never raises:
        every failure is logged and results in no update.
        """
        if not self.wants_link_preview(message):
            return None
        url = extract_first_url(message.text)
        try:
            preview = await self.link_previews.fetch(url)
            if preview is None:
                return None
            async with self._message_locks.hold(message.id):
                current = self.store.get_message(message.id)
                if current is None or current.messageType == MessageType.DELETED:
                    return None
                updated = self.store.update_message(message.id, linkPreview=preview)
                chat = self.store.get_chat(updated.chatId)
                receiver_id = chat.other_user(updated.sender) if chat else None
                await self.hub.events.message_updated(updated.to_wire(), receiver_id, updated.sender)
            logger.info(f"[chat] Link preview attached to message {message.id}")
            return updated
        except Exception as exc:
            logger.warning(f"Link preview for message {message.id} failed (non-critical): {exc}")
            return None

    async def get_link_preview(self, url: Optional[str]) -> LinkPreview:
        if not url:
            raise ValidationError("URL is required")
        preview = await self.link_previews.fetch(url) if self.link_previews else None
        if preview is None:
            raise NotFoundError("Could not fetch preview for this URL")
        return preview

    # -----------------------------------------------------------------------
    # Messages: read
    # -----------------------------------------------------------------------

    async def get_messages(
        self,
        user_id: Optional[str],
        chat_id: Optional[str],
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """One page of history, marking the viewer's unseen messages as seen.

        The mark-seen batch runs for the first page only and notifies the
        other participant once for the whole batch.
        """
        user_id = self._require_actor(user_id)
        if not chat_id:
            raise ValidationError("ChatId Required")
        chat = self._get_chat_for(chat_id, user_id)
        other_id = chat.other_user(user_id)

        page = max(page or 1, 1)
        limit = min(max(limit or self.default_page_size, 1), self.max_page_size)

        if page == 1:
            await self._mark_seen(chat, user_id, other_id)

        total = self.store.count_messages(chat.id)
        total_pages = math.ceil(total / limit) if total else 0
        messages = list(reversed(self.store.list_messages(chat.id, (page - 1) * limit, limit)))
        user_data = await self.profiles.get_public_profile_or_placeholder(other_id)

        return {
            "messages": [m.to_wire() for m in messages],
            "user": user_data,
            "pagination": {
                "page": page,
                "limit": limit,
                "totalMessages": total,
                "totalPages": total_pages,
                "hasMore": page < total_pages,
            },
        }

    async def _mark_seen(self, chat: Chat, viewer_id: str, other_id: Optional[str]) -> List[str]:
        allowed = await self.receipts.allows(viewer_id, other_id) if other_id else False
        now = utcnow()
        seen_ids = self.store.mark_seen(chat.id, viewer_id, now if allowed else None)
        if seen_ids:
            logger.info(f"[chat] {viewer_id} saw {len(seen_ids)} messages in chat {chat.id}")
        if seen_ids and allowed:
            await self.hub.events.messages_seen(other_id, {
                "chatId": chat.id,
                "seenBy": viewer_id,
                "messageIds": seen_ids,
                "seenAt": now.isoformat(),
            })
        return seen_ids

    async def get_message_details(self, user_id: Optional[str], message_id: str) -> Dict[str, Any]:
        """A message plus the current state of the message it replies to."""
        user_id = self._require_actor(user_id)
        message = self._get_message(message_id)
        self._get_chat_for(message.chatId, user_id)

        reply_target = None
        if message.replyTo:
            target = self.store.get_message(message.replyTo)
            if target is not None:
                reply_target = target.model_dump(
                    mode="json",
                    include={"id", "text", "sender", "createdAt", "messageType", "image"},
                )
        data = message.to_wire()
        data["replyToMessage"] = reply_target
        return data

    # -----------------------------------------------------------------------
    # Messages: mutate
    # -----------------------------------------------------------------------

    async def toggle_reaction(
        self, user_id: Optional[str], message_id: Optional[str], emoji: Optional[str]
    ) -> List[Reaction]:
        """Toggle user's reaction and broadcast the full resulting set."""
        user_id = self._require_actor(user_id)
        if not message_id or not emoji:
            raise ValidationError("User ID, message ID, and emoji are required")

        async with self._message_locks.hold(message_id):
            message = self._get_message(message_id)
            chat = self._get_chat_for(message.chatId, user_id)
            lifecycle.check_can_react(message)

            reactions = lifecycle.toggle_reaction(message.reactions, user_id, emoji)
            self.store.update_message(message_id, reactions=reactions, updatedAt=utcnow())
            await self.hub.events.message_reaction(chat.id, chat.users, {
                "messageId": message_id,
                "reactions": [r.model_dump() for r in reactions],
            })

        logger.info(f"[chat] Reaction updated for message {message_id} by user {user_id}")
        return reactions

    async def edit_message(
        self, user_id: Optional[str], message_id: Optional[str], text: Optional[str]
    ) -> Dict[str, Any]:
        user_id = self._require_actor(user_id)
        if not message_id:
            raise ValidationError("Message ID is required")
        if not text or not text.strip():
            raise ValidationError("Message text is required")

        async with self._message_locks.hold(message_id):
            message = self._get_message(message_id)
            now = utcnow()
            lifecycle.check_can_edit(message, user_id, now, self.edit_window)

            updated = self.store.update_message(
                message_id, text=text.strip(), isEdited=True, editedAt=now, updatedAt=now
            )
            chat = self.store.get_chat(updated.chatId)
            participants = chat.users if chat else [updated.sender]
            payload = {"messageId": updated.id, **updated.to_wire()}
            await self.hub.events.message_edited(updated.chatId, participants, payload)
            await self._invalidate_message_pages(updated.chatId)

            if self.store.latest_message_id(updated.chatId) == updated.id:
                self.store.update_latest_message(updated.chatId, lifecycle.summarize(updated))
                await self._invalidate_chat_lists(participants)

        logger.info(f"[chat] Message {message_id} edited by {user_id}")
        return payload

    async def delete_message(self, user_id: Optional[str], message_id: Optional[str]) -> Dict[str, Any]:
        """Soft-delete: the row stays, its content and reactions are cleared."""
        user_id = self._require_actor(user_id)
        if not message_id:
            raise ValidationError("Message ID is required")

        async with self._message_locks.hold(message_id):
            message = self._get_message(message_id)
            lifecycle.check_can_delete(message, user_id)

            updated = self.store.update_message(message_id, **lifecycle.tombstone_fields(utcnow()))
            payload = {"messageId": updated.id, **updated.to_wire()}
            await self.hub.events.message_deleted(updated.chatId, payload)
            await self._invalidate_message_pages(updated.chatId)

            if self.store.latest_message_id(updated.chatId) == updated.id:
                self.store.update_latest_message(
                    updated.chatId, LatestMessage(text=DELETED_SUMMARY, sender=user_id)
                )
                chat = self.store.get_chat(updated.chatId)
                await self._invalidate_chat_lists(chat.users if chat else [user_id])

        logger.info(f"[chat] Message {message_id} deleted by {user_id}")
        return payload
