"""Client for the external user-profile service.

Endpoints consumed:
    GET  {base}/user/{id}/public   -> public profile incl. privacySettings
    GET  {base}/user/{id}          -> full user record (chat list)
    POST {base}/update-last-seen   -> fire-and-forget last-seen ping

Transport and HTTP failures are raised as CollaboratorUnavailable by the raw
fetchers; the convenience methods used on the hot path degrade to permissive
defaults and an "Unknown User" placeholder instead.
"""
import logging
from typing import Optional

import httpx

from app.chat.schemas import PrivacySettings
from app.errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)

UNKNOWN_USER_NAME = "Unknown User"


def unknown_user(user_id: Optional[str]) -> dict:
    return {"_id": user_id, "name": UNKNOWN_USER_NAME}


class ProfileClient:
    """Async HTTP client for the profile service."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str) -> dict:
        try:
            resp = await self._client.get(path)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CollaboratorUnavailable(f"Profile service GET {path} failed: {exc}") from exc

    async def get_public_profile(self, user_id: str) -> dict:
        return await self._get_json(f"/user/{user_id}/public")

    async def get_user(self, user_id: str) -> dict:
        return await self._get_json(f"/user/{user_id}")

    async def get_privacy_settings(self, user_id: str) -> PrivacySettings:
        """Current privacy flags, or permissive defaults if unavailable."""
        try:
            data = await self.get_public_profile(user_id)
        except CollaboratorUnavailable as exc:
            logger.warning("[profile] Privacy lookup for %s failed, using defaults: %s", user_id, exc)
            return PrivacySettings()
        raw = data.get("privacySettings") or {}
        flags = PrivacySettings()
        if raw.get("showOnlineStatus") is False:
            flags.showOnlineStatus = False
        if raw.get("showReadReceipts") is False:
            flags.showReadReceipts = False
        return flags

    async def get_public_profile_or_placeholder(self, user_id: Optional[str]) -> dict:
        if not user_id:
            return unknown_user(user_id)
        try:
            return await self.get_public_profile(user_id)
        except CollaboratorUnavailable as exc:
            logger.warning("[profile] Public profile for %s unavailable: %s", user_id, exc)
            return unknown_user(user_id)

    async def get_user_or_placeholder(self, user_id: Optional[str]) -> dict:
        if not user_id:
            return unknown_user(user_id)
        try:
            return await self.get_user(user_id)
        except CollaboratorUnavailable as exc:
            logger.warning("[profile] User %s unavailable: %s", user_id, exc)
            return unknown_user(user_id)

    async def update_last_seen(self, user_id: str) -> None:
        """Tell the profile service the user was just active. Failures are ignored."""
        try:
            resp = await self._client.post("/update-last-seen", json={"userId": user_id})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.info("[profile] update-last-seen for %s failed (ignored): %s", user_id, exc)
