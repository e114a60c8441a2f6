"""Tests for the chat/message HTTP endpoints."""
import pytest
from fastapi.testclient import TestClient

from app.chat.schemas import LinkPreview
from app.main import app

from conftest import auth_headers

API = "/api/v1"

client = TestClient(app)


@pytest.fixture
def chat_id(app_service):
    response = client.post(f"{API}/chat/new", json={"otherUserId": "bob"}, headers=auth_headers("alice"))
    assert response.status_code == 201
    return response.json()["chatId"]


def _send_text(chat_id, text, user="alice"):
    response = client.post(f"{API}/message", data={"chatId": chat_id, "text": text}, headers=auth_headers(user))
    assert response.status_code == 201, response.text
    return response.json()["message"]


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestAuth:
    def test_missing_token(self, app_service):
        response = client.get(f"{API}/chat/all")
        assert response.status_code == 401
        assert response.json() == {"message": "Not authenticated"}

    def test_invalid_token(self, app_service):
        response = client.get(f"{API}/chat/all", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token"


class TestChatEndpoints:
    def test_create_existing_returns_200(self, chat_id):
        response = client.post(f"{API}/chat/new", json={"otherUserId": "alice"}, headers=auth_headers("bob"))
        assert response.status_code == 200
        assert response.json() == {"message": "Chat already exists", "chatId": chat_id}

    def test_create_requires_other_user(self, app_service):
        response = client.post(f"{API}/chat/new", json={}, headers=auth_headers("alice"))
        assert response.status_code == 400
        assert response.json()["message"] == "Other userid is required"

    def test_list_chats(self, chat_id):
        _send_text(chat_id, "hello")
        response = client.get(f"{API}/chat/all", headers=auth_headers("bob"))
        assert response.status_code == 200
        chats = response.json()["chats"]
        assert chats[0]["chat"]["id"] == chat_id
        assert chats[0]["chat"]["latestMessage"]["text"] == "hello"
        assert chats[0]["chat"]["unseenCount"] == 1


class TestMessageEndpoints:
    def test_send_text(self, chat_id):
        response = client.post(
            f"{API}/message", data={"chatId": chat_id, "text": "hi"}, headers=auth_headers("alice")
        )
        assert response.status_code == 201
        body = response.json()
        assert body["message"]["text"] == "hi"
        assert body["message"]["messageType"] == "text"
        assert body["sender"]["_id"] == "alice"

    def test_send_requires_content(self, chat_id):
        response = client.post(f"{API}/message", data={"chatId": chat_id}, headers=auth_headers("alice"))
        assert response.status_code == 400
        assert response.json()["message"] == "Either text or image is required"

    def test_send_to_foreign_chat(self, chat_id):
        response = client.post(
            f"{API}/message", data={"chatId": chat_id, "text": "hi"}, headers=auth_headers("mallory")
        )
        assert response.status_code == 403

    def test_send_image(self, chat_id, app_service):
        response = client.post(
            f"{API}/message",
            data={"chatId": chat_id},
            files={"image": ("cat.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 201, response.text
        message = response.json()["message"]
        assert message["messageType"] == "image"
        assert (app_service.images.upload_dir / message["image"]["publicId"]).exists()

    def test_send_image_to_foreign_chat_stores_nothing(self, app_service):
        response = client.post(f"{API}/chat/new", json={"otherUserId": "carol"}, headers=auth_headers("bob"))
        foreign_chat = response.json()["chatId"]

        response = client.post(
            f"{API}/message",
            data={"chatId": foreign_chat},
            files={"image": ("cat.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
            headers=auth_headers("alice"),
        )

        assert response.status_code == 403
        assert list(app_service.images.upload_dir.iterdir()) == []

    def test_send_non_image_file(self, chat_id):
        response = client.post(
            f"{API}/message",
            data={"chatId": chat_id},
            files={"image": ("notes.txt", b"hello", "text/plain")},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 400

    def test_link_preview_attached_after_response(self, chat_id, app_service, link_previews):
        link_previews.preview = LinkPreview(url="https://example.com", title="Example")

        message = _send_text(chat_id, "check https://example.com out")

        assert message["linkPreview"] is None
        stored = app_service.store.get_message(message["id"])
        assert stored.linkPreview.title == "Example"

    def test_get_messages(self, chat_id):
        _send_text(chat_id, "one")
        _send_text(chat_id, "two")
        response = client.get(f"{API}/message/{chat_id}?page=1&limit=10", headers=auth_headers("bob"))
        assert response.status_code == 200
        body = response.json()
        assert [m["text"] for m in body["messages"]] == ["one", "two"]
        assert body["user"]["_id"] == "alice"
        assert body["pagination"]["totalMessages"] == 2

    def test_get_messages_unknown_chat(self, app_service):
        response = client.get(f"{API}/message/nope", headers=auth_headers("alice"))
        assert response.status_code == 404
        assert response.json()["message"] == "Chat not found"

    def test_reaction(self, chat_id):
        message = _send_text(chat_id, "hi")
        response = client.post(
            f"{API}/message/reaction",
            json={"messageId": message["id"], "emoji": "👍"},
            headers=auth_headers("bob"),
        )
        assert response.status_code == 200
        assert response.json()["reactions"] == [{"userId": "bob", "emoji": "👍"}]

    def test_details(self, chat_id):
        original = _send_text(chat_id, "question", user="bob")
        response = client.post(
            f"{API}/message",
            data={"chatId": chat_id, "text": "answer", "replyTo": original["id"]},
            headers=auth_headers("alice"),
        )
        reply = response.json()["message"]
        response = client.get(f"{API}/message/details/{reply['id']}", headers=auth_headers("bob"))
        assert response.status_code == 200
        details = response.json()["message"]
        assert details["messageType"] == "reply"
        assert details["replyToMessage"]["id"] == original["id"]

    def test_edit_and_delete(self, chat_id):
        message = _send_text(chat_id, "typo")

        response = client.patch(
            f"{API}/messages/{message['id']}", json={"text": "fixed"}, headers=auth_headers("alice")
        )
        assert response.status_code == 200
        assert response.json()["data"]["isEdited"] is True

        response = client.delete(f"{API}/messages/{message['id']}", headers=auth_headers("bob"))
        assert response.status_code == 403

        response = client.delete(f"{API}/messages/{message['id']}", headers=auth_headers("alice"))
        assert response.status_code == 200
        assert response.json()["data"]["messageType"] == "deleted"

    def test_link_preview_lookup(self, app_service, link_previews):
        response = client.get(f"{API}/link-preview?url=https://example.com", headers=auth_headers("alice"))
        assert response.status_code == 404

        link_previews.preview = LinkPreview(url="https://example.com", title="Example")
        response = client.get(f"{API}/link-preview?url=https://example.com", headers=auth_headers("alice"))
        assert response.status_code == 200
        assert response.json()["preview"]["title"] == "Example"
