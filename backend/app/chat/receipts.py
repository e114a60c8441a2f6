"""Read-receipt gate.

``seenAt`` may be recorded or broadcast only when *both* participants allow
read receipts. The flags are fetched fresh from the profile service for every
evaluation; they change independently of presence so the in-process privacy
cache is never consulted here. ``seen`` itself is never gated.
"""
import asyncio
import logging

logger = logging.getLogger(__name__)


class ReadReceiptGate:
    """Decides whether a read receipt may be written for a pair of users."""

    def __init__(self, profiles) -> None:
        self._profiles = profiles

    async def allows(self, user_a: str, user_b: str) -> bool:
        """True iff both users currently have showReadReceipts enabled.

        Lookup failures count as "enabled" (the profile client degrades to
        permissive defaults).
        """
        first, second = await asyncio.gather(
            self._profiles.get_privacy_settings(user_a),
            self._profiles.get_privacy_settings(user_b),
        )
        allowed = first.showReadReceipts and second.showReadReceipts
        logger.debug("[receipts] %s/%s read receipts allowed=%s", user_a, user_b, allowed)
        return allowed
