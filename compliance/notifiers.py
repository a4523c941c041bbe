"""
Grant Notifiers.

============================================================
PURPOSE
============================================================
Deliver compliance messages to the holder of a verified grant
and strip platform access on revocation.

PRINCIPLES:
- Best effort: every failure is logged and reported as False
- A notifier only acts on grants carrying its identity
- Notification-only, NO command handling

============================================================
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import aiohttp

from storage.models.verification import VerifiedGrant


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 15.0


# ============================================================
# NOTIFIER INTERFACE
# ============================================================

class GrantNotifier(ABC):
    """Channel that can reach the holder of a grant."""

    name: str = "notifier"

    @abstractmethod
    async def send(self, grant: VerifiedGrant, message: str) -> bool:
        """Send a message. Returns True when delivered."""
        pass

    async def revoke_access(self, grant: VerifiedGrant, config: Any) -> bool:
        """Remove platform access for a revoked grant. No-op by default."""
        return False

    async def close(self) -> None:
        return None


class _HttpNotifier(GrantNotifier):
    """Shared aiohttp session handling."""

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self._timeout = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
        return self._session

    async def close(self) -> None:
        """Close the notifier."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Any]:
        """Perform a request, returning (status, decoded JSON or text)."""
        session = await self._get_session()
        async with session.request(method, url, headers=headers, json=payload) as response:
            if response.content_type == "application/json":
                body = await response.json()
            else:
                body = await response.text()
            return response.status, body


# ============================================================
# TELEGRAM
# ============================================================

class TelegramGrantNotifier(_HttpNotifier):
    """
    Sends compliance messages through the Telegram Bot API.

    Telegram has no role to strip, so revoke_access is a no-op.
    """

    name = "telegram"
    BASE_URL = "https://api.telegram.org/bot"

    def __init__(self, bot_token: Optional[str] = None, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        super().__init__(timeout_seconds)
        self._bot_token = bot_token or os.getenv("TELEGRAM_BOT_TOKEN", "")
        self._enabled = bool(self._bot_token)

        if not self._enabled:
            logger.warning("TelegramGrantNotifier NOT configured - check TELEGRAM_BOT_TOKEN")

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def send(self, grant: VerifiedGrant, message: str) -> bool:
        if not self._enabled or not grant.telegram_id:
            return False

        url = f"{self.BASE_URL}{self._bot_token}/sendMessage"
        payload = {
            "chat_id": str(grant.telegram_id),
            "text": message,
            "disable_web_page_preview": True,
        }

        try:
            status, body = await self._request("POST", url, payload=payload)
        except Exception as e:
            logger.warning(f"Failed to send Telegram message to {grant.telegram_id}: {e}")
            return False

        if status != 200:
            logger.warning(f"Telegram API error for {grant.telegram_id}: {status} - {body}")
            return False

        logger.info(f"Sent Telegram message to user {grant.telegram_id} for influencer {grant.influencer}.")
        return True


# ============================================================
# DISCORD
# ============================================================

class DiscordGrantNotifier(_HttpNotifier):
    """
    Direct messages and role removal through the Discord REST API.

    The verified role per guild comes from the guild_roles map of
    the verification config.
    """

    name = "discord"
    BASE_URL = "https://discord.com/api/v10"

    def __init__(self, bot_token: Optional[str] = None, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        super().__init__(timeout_seconds)
        self._bot_token = bot_token or os.getenv("DISCORD_BOT_TOKEN", "")
        self._enabled = bool(self._bot_token)

        if not self._enabled:
            logger.warning("DiscordGrantNotifier NOT configured - check DISCORD_BOT_TOKEN")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bot {self._bot_token}"}

    async def send(self, grant: VerifiedGrant, message: str) -> bool:
        if not self._enabled or not grant.discord_user_id:
            return False

        user_id = str(grant.discord_user_id)
        try:
            status, channel = await self._request(
                "POST",
                f"{self.BASE_URL}/users/@me/channels",
                headers=self._headers(),
                payload={"recipient_id": user_id},
            )
            if status != 200 or not isinstance(channel, dict) or not channel.get("id"):
                logger.warning(f"Discord user {user_id} could not be reached (status {status}).")
                return False

            status, body = await self._request(
                "POST",
                f"{self.BASE_URL}/channels/{channel['id']}/messages",
                headers=self._headers(),
                payload={"content": message},
            )
        except Exception as e:
            logger.warning(f"Failed to send Discord DM to {user_id}: {e}")
            return False

        if status != 200:
            logger.warning(f"Discord API error for {user_id}: {status} - {body}")
            return False

        logger.info(f"Sent Discord DM to user {user_id} for influencer {grant.influencer}.")
        return True

    async def revoke_access(self, grant: VerifiedGrant, config: Any) -> bool:
        if not self._enabled or not grant.discord_user_id or not grant.guild_id:
            return False

        guild_id = str(grant.guild_id)
        role_id = (getattr(config, "guild_roles", None) or {}).get(guild_id)
        if not role_id:
            logger.debug(f"No verified role configured for guild {guild_id}. Skipping role removal.")
            return False

        user_id = str(grant.discord_user_id)
        try:
            status, body = await self._request(
                "DELETE",
                f"{self.BASE_URL}/guilds/{guild_id}/members/{user_id}/roles/{role_id}",
                headers=self._headers(),
            )
        except Exception as e:
            logger.warning(f"Failed to remove verified role from {user_id} in guild {guild_id}: {e}")
            return False

        if status not in (200, 204):
            logger.warning(f"Role removal for {user_id} in guild {guild_id} failed: {status} - {body}")
            return False

        logger.info(f"Removed verified role from Discord user {user_id} in guild {guild_id}.")
        return True
