"""Tests for message lifecycle rules, the read-receipt gate and keyed locks."""
import asyncio
from datetime import timedelta

import pytest

from app.chat import lifecycle
from app.chat.locks import KeyedLock
from app.chat.receipts import ReadReceiptGate
from app.chat.schemas import (
    ImageRef,
    Message,
    MessageType,
    PrivacySettings,
    QuotedType,
    Reaction,
    utcnow,
)
from app.errors import ForbiddenError, ValidationError

IMAGE = ImageRef(url="/uploads/a.png", publicId="a.png")


def _message(**overrides):
    fields = {"chatId": "chat-1", "sender": "alice", "text": "hello"}
    fields.update(overrides)
    return Message(**fields)


class TestResolveMessageType:
    def test_plain_text(self):
        assert lifecycle.resolve_message_type(False, False) == MessageType.TEXT

    def test_image(self):
        assert lifecycle.resolve_message_type(True, False) == MessageType.IMAGE

    def test_reply_wins_over_image(self):
        assert lifecycle.resolve_message_type(True, True) == MessageType.REPLY

    def test_reply_wins_over_forward(self):
        assert lifecycle.resolve_message_type(False, True, True) == MessageType.REPLY
        assert lifecycle.resolve_message_type(True, False, True) == MessageType.FORWARD


class TestReplySnapshot:
    def test_snapshot_copies_content(self):
        target = _message(image=IMAGE, messageType=MessageType.IMAGE, text="")
        snap = lifecycle.snapshot_for_reply(target)
        assert snap.id == target.id
        assert snap.messageType == QuotedType.IMAGE
        assert snap.image == IMAGE

    def test_snapshot_of_deleted(self):
        snap = lifecycle.snapshot_for_reply(_message(messageType=MessageType.DELETED, text=""))
        assert snap.messageType == QuotedType.DELETED

    def test_reply_quoted_as_text(self):
        snap = lifecycle.snapshot_for_reply(_message(messageType=MessageType.REPLY))
        assert snap.messageType == QuotedType.TEXT


class TestToggleReaction:
    def test_add(self):
        result = lifecycle.toggle_reaction([], "bob", "👍")
        assert result == [Reaction(userId="bob", emoji="👍")]

    def test_same_emoji_removes(self):
        result = lifecycle.toggle_reaction([Reaction(userId="bob", emoji="👍")], "bob", "👍")
        assert result == []

    def test_different_emoji_replaces(self):
        start = [Reaction(userId="bob", emoji="👍"), Reaction(userId="alice", emoji="😂")]
        result = lifecycle.toggle_reaction(start, "bob", "❤️")
        assert result == [Reaction(userId="alice", emoji="😂"), Reaction(userId="bob", emoji="❤️")]

    def test_one_reaction_per_user(self):
        reactions = []
        for emoji in ["👍", "❤️", "😂", "❤️", "🎉"]:
            reactions = lifecycle.toggle_reaction(reactions, "bob", emoji)
        assert [r.emoji for r in reactions if r.userId == "bob"] == ["🎉"]

    def test_cannot_react_to_deleted(self):
        with pytest.raises(ValidationError):
            lifecycle.check_can_react(_message(messageType=MessageType.DELETED))


class TestEditRules:
    def test_sender_within_window(self):
        message = _message()
        lifecycle.check_can_edit(message, "alice", message.createdAt + timedelta(minutes=14))

    def test_not_sender(self):
        with pytest.raises(ForbiddenError):
            lifecycle.check_can_edit(_message(), "bob", utcnow())

    def test_not_sender_checked_before_window(self):
        message = _message(createdAt=utcnow() - timedelta(hours=1))
        with pytest.raises(ForbiddenError):
            lifecycle.check_can_edit(message, "bob", utcnow())

    def test_window_expired(self):
        message = _message()
        with pytest.raises(ValidationError, match="15 minutes"):
            lifecycle.check_can_edit(message, "alice", message.createdAt + timedelta(minutes=16))

    def test_deleted(self):
        with pytest.raises(ValidationError):
            lifecycle.check_can_edit(_message(messageType=MessageType.DELETED, text=""), "alice", utcnow())

    def test_image_only(self):
        message = _message(messageType=MessageType.IMAGE, image=IMAGE, text="")
        with pytest.raises(ValidationError):
            lifecycle.check_can_edit(message, "alice", utcnow())

    def test_image_only_forward(self):
        message = _message(messageType=MessageType.FORWARD, image=IMAGE, text="", forwardedFrom="bob")
        with pytest.raises(ValidationError, match="image-only"):
            lifecycle.check_can_edit(message, "alice", message.createdAt)

    def test_image_with_caption_is_editable(self):
        message = _message(messageType=MessageType.IMAGE, image=IMAGE, text="caption")
        lifecycle.check_can_edit(message, "alice", message.createdAt)

    def test_delete_requires_sender(self):
        with pytest.raises(ForbiddenError):
            lifecycle.check_can_delete(_message(), "bob")


class TestSummaries:
    def test_text(self):
        assert lifecycle.summarize(_message(text="hey")).text == "hey"

    def test_image(self):
        message = _message(messageType=MessageType.IMAGE, image=IMAGE, text="")
        assert lifecycle.summarize(message).text == "📷 Image"

    def test_reply(self):
        assert lifecycle.summarize(_message(messageType=MessageType.REPLY, text="ok")).text == "↩️ ok"

    def test_deleted(self):
        summary = lifecycle.summarize(_message(messageType=MessageType.DELETED, text=""))
        assert summary.text == "Message deleted"
        assert summary.sender == "alice"

    def test_tombstone_clears_content(self):
        fields = lifecycle.tombstone_fields(utcnow())
        assert fields["messageType"] == MessageType.DELETED
        assert fields["text"] == ""
        assert fields["image"] is None
        assert fields["reactions"] == []

    def test_content_required(self):
        with pytest.raises(ValidationError, match="Either text or image"):
            lifecycle.split_content("   ", None)
        assert lifecycle.split_content(None, IMAGE) == ("", IMAGE)
        assert lifecycle.split_content(None, None, has_upload=True) == ("", None)


class _Profiles:
    def __init__(self, flags):
        self.flags = flags

    async def get_privacy_settings(self, user_id):
        return self.flags.get(user_id, PrivacySettings())


class TestReadReceiptGate:
    @pytest.mark.asyncio
    async def test_both_allow(self):
        assert await ReadReceiptGate(_Profiles({})).allows("alice", "bob") is True

    @pytest.mark.asyncio
    async def test_either_disables(self):
        off = PrivacySettings(showReadReceipts=False)
        assert await ReadReceiptGate(_Profiles({"alice": off})).allows("alice", "bob") is False
        assert await ReadReceiptGate(_Profiles({"bob": off})).allows("alice", "bob") is False

    @pytest.mark.asyncio
    async def test_flags_read_fresh_every_time(self):
        flags = {}
        gate = ReadReceiptGate(_Profiles(flags))
        assert await gate.allows("alice", "bob") is True
        flags["bob"] = PrivacySettings(showReadReceipts=False)
        assert await gate.allows("alice", "bob") is False


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialised(self):
        lock = KeyedLock()
        order = []

        async def worker(name):
            async with lock.hold("m1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(lock) == 0

    @pytest.mark.asyncio
    async def test_entry_released_on_error(self):
        lock = KeyedLock()
        with pytest.raises(RuntimeError):
            async with lock.hold("m1"):
                raise RuntimeError("boom")
        assert len(lock) == 0
