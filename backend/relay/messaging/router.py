from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from relay.messaging.sink import NotificationError
from relay.messaging.types import (
    GameOutcome,
    GameResultMessage,
    MalformedFrameError,
    PingMessage,
    parse_client_frame,
    pong_frame,
)

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol
    from relay.messaging.sink import NotificationSink
    from relay.session.registry import SessionRegistry

logger = logging.getLogger(__name__)

OUTCOME_TEXT = {
    GameOutcome.SUCCESS: "venceu o desafio de reflexo! 🎉",
    GameOutcome.FAILURE: "falhou no desafio de reflexo. 💥",
}


class EventRouter:
    """
    Routes application frames from authenticated connections.

    Every failure is contained to the frame that caused it: nothing raised
    here reaches the connection loop.
    """

    def __init__(self, registry: SessionRegistry, sink: NotificationSink) -> None:
        self._registry = registry
        self._sink = sink

    async def handle_message(self, connection: ConnectionProtocol, raw: str) -> None:
        try:
            message = parse_client_frame(raw)
        except MalformedFrameError as e:
            logger.warning("malformed frame from %s: %s", connection.connection_id, e)
            return

        if message is None:
            logger.debug("ignoring frame with unknown action from %s", connection.connection_id)
        elif isinstance(message, GameResultMessage):
            await self._handle_game_result(connection, message)
        elif isinstance(message, PingMessage):
            await self._handle_ping(connection)

    async def _handle_game_result(self, connection: ConnectionProtocol, message: GameResultMessage) -> None:
        """Consume the sender's challenge session and announce the outcome."""
        identity = self._registry.identity_for(connection)
        if identity is None:
            logger.debug("game result from unauthenticated connection %s", connection.connection_id)
            return

        session = self._registry.take_session(identity)
        if session is None:
            logger.debug("no active challenge for %s, dropping result", identity)
            return

        text = OUTCOME_TEXT[message.result]
        try:
            await self._sink.notify(identity, session.destination, text)
        except (NotificationError, httpx.HTTPError) as e:
            logger.error("failed to announce result for %s in %s: %s", identity, session.destination, e)  # noqa: TRY400
            return
        except Exception:
            logger.exception("unexpected error announcing result for %s", identity)
            return
        logger.info("challenge result routed for %s: %s", identity, message.result.value)

    async def _handle_ping(self, connection: ConnectionProtocol) -> None:
        try:
            await connection.send_message(pong_frame())
        except (ConnectionError, RuntimeError) as e:
            logger.debug("pong to %s failed: %s", connection.connection_id, e)
