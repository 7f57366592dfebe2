"""Abstract connection protocol for JSON text-frame communication."""

import json
from abc import ABC, abstractmethod
from typing import Any


class ConnectionProtocol(ABC):
    """
    Abstract interface for a client connection.

    This abstraction allows the gateway, registry and router to be tested
    without real WebSocket connections. Frames are text; structured
    payloads are JSON objects.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique identifier for this connection."""
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the transport can still carry outbound frames."""
        ...

    @abstractmethod
    async def send_text(self, data: str) -> None:
        """
        Send a raw text frame to the client.
        """
        ...

    @abstractmethod
    async def receive_text(self) -> str:
        """
        Receive a raw text frame from the client.
        """
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """
        Close the connection.
        """
        ...

    async def send_message(self, data: dict[str, Any]) -> None:
        """
        Send a JSON object to the client.
        """
        await self.send_text(json.dumps(data, ensure_ascii=False))
