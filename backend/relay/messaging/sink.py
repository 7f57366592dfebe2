"""Notification sinks: where challenge outcomes get announced."""

from __future__ import annotations

from abc import ABC, abstractmethod
from http import HTTPStatus

import httpx
import structlog

DEFAULT_DISCORD_API_URL = "https://discord.com/api/v10"
_DISCORD_TIMEOUT_SECONDS = 10.0

logger = structlog.get_logger()


class NotificationError(Exception):
    """The chat layer refused or failed to publish a notification."""


class NotificationSink(ABC):
    """Receives outcome announcements addressed to a chat destination."""

    @abstractmethod
    async def notify(self, identity: str, destination: str, text: str) -> None: ...

    async def aclose(self) -> None:  # noqa: B027
        """Release any resources held by the sink."""


class LoggingNotificationSink(NotificationSink):
    """Log notifications instead of publishing them. Used when no chat credentials are configured."""

    async def notify(self, identity: str, destination: str, text: str) -> None:
        logger.info("challenge outcome", identity=identity, destination=destination, text=text)


class DiscordNotificationSink(NotificationSink):
    """Post outcome messages to a Discord channel through the REST API, mentioning the player."""

    def __init__(
        self,
        bot_token: str,
        api_url: str = DEFAULT_DISCORD_API_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._headers = {"Authorization": f"Bot {bot_token}"}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=_DISCORD_TIMEOUT_SECONDS)

    async def notify(self, identity: str, destination: str, text: str) -> None:
        body = {
            "content": f"<@{identity}> {text}",
            "allowed_mentions": {"users": [identity]},
        }
        try:
            response = await self._client.post(
                f"{self._api_url}/channels/{destination}/messages",
                json=body,
                headers=self._headers,
            )
        except httpx.RequestError as e:
            raise NotificationError(f"Failed to reach Discord: {e}") from e

        if response.status_code == HTTPStatus.NOT_FOUND:
            raise NotificationError(f"Channel not found: {destination}")
        if response.is_error:
            raise NotificationError(f"Discord returned {response.status_code}: {response.text}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
