"""Entry points used by the chat layer to credential players and start challenges."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from relay.messaging.types import start_game_frame
from relay.session.models import ChallengeSession

if TYPE_CHECKING:
    from relay.auth.tokens import TokenIssuer
    from relay.messaging.types import ChallengeParams
    from relay.session.registry import SessionRegistry

logger = structlog.get_logger()


class ChallengeService:
    def __init__(self, tokens: TokenIssuer, registry: SessionRegistry) -> None:
        self._tokens = tokens
        self._registry = registry

    def issue_token(self, identity: str) -> str:
        """Mint a one-time token the player pastes into the browser client."""
        return self._tokens.issue(identity)

    async def push_to_identity(self, identity: str, message: dict[str, Any]) -> bool:
        """Forward ``message`` verbatim to the identity's connection. Return whether it was delivered.

        Does not touch challenge sessions; callers pushing a start event must
        record the session themselves (or use start_challenge).
        """
        return await self._registry.send_to_identity(identity, message)

    async def start_challenge(self, identity: str, destination: str, params: ChallengeParams) -> bool:
        """Open a challenge for ``identity`` and push START_GAME to their client.

        The session is stored before the push so a fast result cannot beat it.
        If the push is not delivered the session is withdrawn again.
        """
        frame = start_game_frame(params)
        session = ChallengeSession(destination=destination, params=frame)
        self._registry.start_session(identity, session)

        delivered = await self._registry.send_to_identity(identity, frame)
        if not delivered:
            # Only withdraw our own session; a concurrent start may have replaced it.
            if self._registry.peek_session(identity) is session:
                self._registry.take_session(identity)
            logger.info("challenge not delivered, client not connected", identity=identity)
            return False

        logger.info("challenge started", identity=identity, destination=destination)
        return True
