"""Error taxonomy shared by the HTTP and WebSocket entry points.

Every operation raises one of these before performing side effects; the
FastAPI handler registered here turns them into ``{"message": ...}`` JSON
responses. ``CollaboratorUnavailable`` is the exception: collaborator clients
raise it internally and their callers always degrade to a safe default.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ChatServiceError(Exception):
    """Base class for errors reported back to the caller."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatServiceError):
    """A required field is missing or a transition is not allowed."""
    status_code = 400


class UnauthorizedError(ChatServiceError):
    """No verified actor identity."""
    status_code = 401


class ForbiddenError(ChatServiceError):
    """Actor is not a chat participant, or not the message's sender."""
    status_code = 403


class NotFoundError(ChatServiceError):
    status_code = 404


class CollaboratorUnavailable(ChatServiceError):
    """Profile, cache or preview service failure. Never surfaced to clients."""
    status_code = 503


async def _chat_service_error_handler(request: Request, exc: ChatServiceError) -> JSONResponse:
    logger.info(
        "%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message
    )
    return JSONResponse({"message": exc.message}, status_code=exc.status_code)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ChatServiceError, _chat_service_error_handler)
