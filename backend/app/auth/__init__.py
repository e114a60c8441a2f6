"""Authentication module.

Verifies the HS256 bearer tokens issued by the upstream auth service.

Helpers:
    - get_current_user_id: FastAPI dependency for HTTP routes.
    - user_id_from_token: used by the WebSocket endpoint (``?token=``).
"""
from .service import create_access_token, decode_token, get_current_user_id, user_id_from_token

__all__ = ["create_access_token", "decode_token", "get_current_user_id", "user_id_from_token"]
