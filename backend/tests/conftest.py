"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from app.auth import create_access_token
from app.chat.schemas import PrivacySettings
from app.chat.service import ChatService
from app.chat.store import ChatStore
from app.integrations.cache import InMemoryCache
from app.integrations.images import ImageStore
from app.integrations.profile import unknown_user
from app.main import app
from app.realtime.connections import Connection
from app.realtime.hub import RealtimeHub, hub as global_hub


class FakeWebSocket:
    """Records outbound frames; ``broken`` simulates a dead socket."""

    def __init__(self, broken: bool = False):
        self.sent = []
        self.broken = broken

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def events(self, event_type=None):
        return [f for f in self.sent if event_type is None or f["type"] == event_type]

    def clear(self):
        self.sent.clear()


class FakeProfiles:
    """In-process stand-in for ProfileClient."""

    def __init__(self):
        self.privacy = {}
        self.users = {}
        self.last_seen = []

    async def get_privacy_settings(self, user_id):
        return self.privacy.get(user_id, PrivacySettings()).model_copy()

    async def get_public_profile_or_placeholder(self, user_id):
        return self.users.get(user_id) or unknown_user(user_id)

    async def get_user_or_placeholder(self, user_id):
        return self.users.get(user_id) or unknown_user(user_id)

    async def update_last_seen(self, user_id):
        self.last_seen.append(user_id)

    async def aclose(self):
        pass


class FakeLinkPreviews:
    def __init__(self, preview=None):
        self.preview = preview
        self.urls = []

    async def fetch(self, url):
        self.urls.append(url)
        return self.preview

    async def aclose(self):
        pass


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app.

    Named api_client (not client) to avoid shadowing the module-level
    `client = TestClient(app)` pattern used in existing test files.
    """
    return TestClient(app)


@pytest.fixture
def store():
    chat_store = ChatStore(":memory:")
    yield chat_store
    chat_store.close()


@pytest.fixture
def profiles():
    return FakeProfiles()


@pytest.fixture
def link_previews():
    return FakeLinkPreviews()


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.fixture
def service(store, profiles, hub, link_previews, tmp_path):
    return ChatService(
        store=store,
        profiles=profiles,
        cache=InMemoryCache(),
        hub=hub,
        link_previews=link_previews,
        images=ImageStore(upload_dir=str(tmp_path / "uploads")),
    )


@pytest.fixture
def connect(hub):
    """Attach a fake connection for a user and return it."""
    async def _connect(user_id, privacy=None):
        connection = Connection(FakeWebSocket(), user_id)
        await hub.connect(connection, privacy)
        return connection
    return _connect


@pytest.fixture
def app_service(store, profiles, link_previews, tmp_path):
    """ChatService wired to the process-wide hub, installed as the app's instance."""
    global_hub.reset()
    chat_service = ChatService(
        store=store,
        profiles=profiles,
        cache=InMemoryCache(),
        hub=global_hub,
        link_previews=link_previews,
        images=ImageStore(upload_dir=str(tmp_path / "uploads")),
    )
    ChatService.set_instance(chat_service)
    yield chat_service
    ChatService.reset_instance()
    global_hub.reset()


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
