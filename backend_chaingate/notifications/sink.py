"""
Role/notification sink: grant platform roles, DM users, announce in channels.

grant_role reports OK / NOT_FOUND / FORBIDDEN; other platform failures raise
SinkError. notify_direct and announce are best-effort and return False instead
of raising. None of these ever roll back a stored verification.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

import httpx

from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.core.exceptions import SinkError
from backend_chaingate.notifications.messages import Notification

logger = get_logger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"
DEFAULT_TIMEOUT_SEC = 10.0


class GrantResult(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


class RoleNotificationSink(ABC):
    """Platform side effects triggered by a new verification."""

    @abstractmethod
    def grant_role(self, identity_id: str, role_id: str) -> GrantResult:
        ...

    @abstractmethod
    def notify_direct(self, identity_id: str, payload: Notification) -> bool:
        ...

    @abstractmethod
    def announce(self, channel_id: str, payload: Notification) -> bool:
        ...


class DiscordRoleSink(RoleNotificationSink):
    """Discord REST implementation (bot token, single guild)."""

    def __init__(
        self,
        token: str,
        guild_id: str,
        *,
        base_url: str = DISCORD_API_BASE,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("token must be non-empty")
        self._guild_id = guild_id
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_sec,
            transport=transport,
            headers={"Authorization": f"Bot {token}"},
        )

    def close(self) -> None:
        self._client.close()

    def grant_role(self, identity_id: str, role_id: str) -> GrantResult:
        path = f"/guilds/{self._guild_id}/members/{identity_id}/roles/{role_id}"
        try:
            resp = self._client.put(path)
        except httpx.HTTPError as e:
            raise SinkError(f"grant_role transport error: {e}") from e
        if resp.status_code in (200, 204):
            logger.info("sink_role_granted", identity_id=identity_id, role_id=role_id)
            return GrantResult.OK
        if resp.status_code == 404:
            logger.warning("sink_role_member_or_role_missing", identity_id=identity_id, role_id=role_id)
            return GrantResult.NOT_FOUND
        if resp.status_code == 403:
            logger.warning("sink_role_forbidden", identity_id=identity_id, role_id=role_id)
            return GrantResult.FORBIDDEN
        raise SinkError(f"grant_role HTTP {resp.status_code}: {resp.text[:200]}")

    def _send_message(self, channel_id: str, payload: Notification) -> None:
        resp = self._client.post(f"/channels/{channel_id}/messages", json={"embeds": [payload.to_embed()]})
        resp.raise_for_status()

    def notify_direct(self, identity_id: str, payload: Notification) -> bool:
        try:
            resp = self._client.post("/users/@me/channels", json={"recipient_id": identity_id})
            resp.raise_for_status()
            self._send_message(resp.json()["id"], payload)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("sink_dm_failed", identity_id=identity_id, error=str(e))
            return False
        return True

    def announce(self, channel_id: str, payload: Notification) -> bool:
        try:
            self._send_message(channel_id, payload)
        except httpx.HTTPError as e:
            logger.warning("sink_announce_failed", channel_id=channel_id, error=str(e))
            return False
        return True
