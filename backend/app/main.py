"""Pulse Chat Backend Application.

This is the main entry point for the Pulse chat service: one-to-one chats
with persisted history and realtime delivery of messages, typing, reactions,
edits, deletions, read receipts and presence.

Modules:
    - chat: chat/message HTTP API and the ChatService behind it
    - realtime: WebSocket endpoint, connection registry, rooms, presence, fan-out
    - integrations: profile service, cache, link previews, image storage
    - auth: bearer-token verification
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.chat.router import router as chat_router
from app.chat.service import ChatService
from app.chat.store import ChatStore
from app.config import get_config
from app.errors import register_exception_handlers
from app.realtime.router import router as realtime_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# httpx/httpcore log every TCP connection, one per profile lookup.
for _noisy in (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "redis",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in pulse.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    service = ChatService.get_instance()
    logger.info(
        "Chat service ready: storage=%s, cache=%s, profiles=%s, link_preview=%s",
        config.storage.db_path,
        config.cache.backend,
        config.profile_service.base_url,
        "on" if service.link_previews else "off",
    )

    yield  # Application runs here

    # Shutdown
    await service.aclose()
    ChatService.reset_instance()
    ChatStore.reset_instance()
    logger.info("Application shutdown complete")


config = get_config()

app = FastAPI(
    title="Pulse Chat API",
    description="Realtime one-to-one chat backend",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(chat_router, prefix=config.server.api_prefix)
app.include_router(realtime_router)
app.mount(
    config.uploads.public_base_url,
    StaticFiles(directory=config.uploads.dir, check_dir=False),
    name="uploads",
)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
