"""Tests for per-event fan-out legs and the RealtimeHub lifecycle."""
import asyncio

import pytest

from app.chat.schemas import PrivacySettings
from app.realtime.connections import Connection

from conftest import FakeWebSocket


def _payloads(connection, event_type):
    return [f["data"] for f in connection.websocket.events(event_type)]


class TestHubLifecycle:
    @pytest.mark.asyncio
    async def test_connect_broadcasts_presence_to_all(self, hub, connect):
        alice = await connect("alice")
        bob = await connect("bob")

        assert _payloads(alice, "getOnlineUser") == [["alice"], ["alice", "bob"]]
        assert _payloads(bob, "getOnlineUser") == [["alice", "bob"]]

    @pytest.mark.asyncio
    async def test_hidden_user_not_in_snapshot(self, hub, connect):
        alice = await connect("alice")
        await connect("bob", PrivacySettings(showOnlineStatus=False))

        assert _payloads(alice, "getOnlineUser")[-1] == ["alice"]
        assert hub.is_online("bob")

    @pytest.mark.asyncio
    async def test_update_privacy_rebroadcasts(self, hub, connect):
        alice = await connect("alice")
        await connect("bob")
        alice.websocket.clear()

        await hub.update_privacy("bob", False)
        await hub.update_privacy("bob", True)

        assert _payloads(alice, "getOnlineUser") == [["alice"], ["alice", "bob"]]

    @pytest.mark.asyncio
    async def test_disconnect_current_connection(self, hub, connect):
        alice = await connect("alice")
        bob = await connect("bob")
        hub.join_chat(bob, "chat-1")

        assert await hub.disconnect(bob) is True

        assert not hub.is_online("bob")
        assert hub.rooms.members("chat-1") == set()
        assert _payloads(alice, "getOnlineUser")[-1] == ["alice"]

    @pytest.mark.asyncio
    async def test_superseded_disconnect_keeps_user_online(self, hub, connect):
        """Closing the older of two connections leaves the newer one registered."""
        first = await connect("alice")
        second = await connect("alice")

        assert await hub.disconnect(first) is False

        assert hub.registry.lookup("alice") == second.id
        assert _payloads(second, "getOnlineUser")[-1] == ["alice"]

    @pytest.mark.asyncio
    async def test_concurrent_connects_see_consistent_snapshots(self, hub):
        connections = [Connection(FakeWebSocket(), f"user-{i}") for i in range(5)]

        await asyncio.gather(*[hub.connect(c) for c in connections])

        final = sorted(f"user-{i}" for i in range(5))
        for conn in connections:
            assert sorted(_payloads(conn, "getOnlineUser")[-1]) == final

    @pytest.mark.asyncio
    async def test_is_viewing_follows_registered_connection(self, hub, connect):
        old = await connect("alice")
        hub.join_chat(old, "chat-1")
        assert hub.is_viewing("alice", "chat-1")

        await connect("alice")
        assert not hub.is_viewing("alice", "chat-1")


class TestEventRouter:
    @pytest.mark.asyncio
    async def test_new_message_room_then_direct(self, hub, connect):
        alice = await connect("alice")
        bob = await connect("bob")
        hub.join_chat(bob, "chat-1")
        alice.websocket.clear()
        bob.websocket.clear()

        message = {"id": "m1", "chatId": "chat-1", "text": "hi"}
        delivered = await hub.events.new_message(message, "bob", "alice")

        # bob: room leg + direct leg, alice: direct leg
        assert delivered == 3
        assert _payloads(bob, "newMessage") == [message, message]
        assert _payloads(alice, "newMessage") == [message]

    @pytest.mark.asyncio
    async def test_new_message_offline_receiver(self, hub, connect):
        alice = await connect("alice")
        alice.websocket.clear()

        delivered = await hub.events.new_message({"id": "m1", "chatId": "chat-1"}, "bob", "alice")

        assert delivered == 1

    @pytest.mark.asyncio
    async def test_messages_seen_goes_to_sender_only(self, hub, connect):
        alice = await connect("alice")
        bob = await connect("bob")
        hub.join_chat(bob, "chat-1")
        hub.join_chat(alice, "chat-1")
        alice.websocket.clear()
        bob.websocket.clear()

        await hub.events.messages_seen("alice", {"chatId": "chat-1", "messageIds": ["m1"]})

        assert len(_payloads(alice, "messagesSeen")) == 1
        assert bob.websocket.sent == []

    @pytest.mark.asyncio
    async def test_reaction_reaches_participant_outside_room(self, hub, connect):
        alice = await connect("alice")
        bob = await connect("bob")
        hub.join_chat(alice, "chat-1")
        alice.websocket.clear()
        bob.websocket.clear()

        payload = {"messageId": "m1", "reactions": []}
        await hub.events.message_reaction("chat-1", ["alice", "bob"], payload)

        assert _payloads(alice, "messageReaction") == [payload, payload]
        assert _payloads(bob, "messageReaction") == [payload]

    @pytest.mark.asyncio
    async def test_deleted_is_room_only(self, hub, connect):
        alice = await connect("alice")
        bob = await connect("bob")
        hub.join_chat(alice, "chat-1")
        alice.websocket.clear()
        bob.websocket.clear()

        await hub.events.message_deleted("chat-1", {"messageId": "m1"})

        assert len(_payloads(alice, "messageDeleted")) == 1
        assert bob.websocket.sent == []

    @pytest.mark.asyncio
    async def test_typing_excludes_sender_connection(self, hub, connect):
        alice = await connect("alice")
        bob = await connect("bob")
        hub.join_chat(alice, "chat-1")
        hub.join_chat(bob, "chat-1")
        alice.websocket.clear()
        bob.websocket.clear()

        await hub.events.typing("chat-1", "alice", exclude_connection_id=alice.id)
        await hub.events.typing("chat-1", "alice", exclude_connection_id=alice.id, stopped=True)

        assert alice.websocket.sent == []
        assert [f["type"] for f in bob.websocket.sent] == ["userTyping", "userStoppedTyping"]
        assert bob.websocket.sent[0]["data"] == {"chatId": "chat-1", "userId": "alice"}

    @pytest.mark.asyncio
    async def test_superseded_connection_still_gets_room_events(self, hub, connect):
        old = await connect("bob")
        hub.join_chat(old, "chat-1")
        new = await connect("bob")
        old.websocket.clear()
        new.websocket.clear()

        await hub.events.new_message({"id": "m1", "chatId": "chat-1"}, "bob", "alice")

        assert len(_payloads(old, "newMessage")) == 1
        assert len(_payloads(new, "newMessage")) == 1
