"""Per-identity connection binding and challenge session bookkeeping."""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol
    from relay.session.models import ChallengeSession

DEFAULT_CLEANUP_INTERVAL_SECONDS = 300

logger = structlog.get_logger()


class SessionRegistry:
    """Track which connection speaks for which identity, and each identity's challenge.

    Every method reads and writes its maps without awaiting in between, so on
    the event loop each single-key update is atomic with respect to other
    connection handlers.
    """

    def __init__(
        self,
        session_ttl_seconds: float | None = None,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
    ) -> None:
        self._connections: dict[str, ConnectionProtocol] = {}  # identity -> connection
        self._identities: dict[str, str] = {}  # connection_id -> identity (reverse index)
        self._sessions: dict[str, ChallengeSession] = {}  # identity -> session
        self._session_ttl_seconds = session_ttl_seconds
        self._cleanup_interval = cleanup_interval
        self._cleanup_task: asyncio.Task[None] | None = None

    @property
    def bound_count(self) -> int:
        return len(self._connections)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # --- connection binding ---

    def bind_connection(self, identity: str, connection: ConnectionProtocol) -> None:
        """Bind ``connection`` to ``identity``, replacing any previous binding.

        The replaced connection is left open but is no longer authenticated.
        """
        previous_identity = self._identities.pop(connection.connection_id, None)
        if previous_identity is not None and previous_identity != identity:
            self._drop_forward(previous_identity, connection)

        replaced = self._connections.get(identity)
        if replaced is not None and replaced.connection_id != connection.connection_id:
            self._identities.pop(replaced.connection_id, None)
            logger.info(
                "identity rebound to new connection",
                identity=identity,
                replaced_connection_id=replaced.connection_id,
            )

        self._connections[identity] = connection
        self._identities[connection.connection_id] = identity

    def unbind_by_connection(self, connection: ConnectionProtocol) -> str | None:
        """Remove the binding held by ``connection``. Return its identity, or None."""
        identity = self._identities.pop(connection.connection_id, None)
        if identity is None:
            return None
        self._drop_forward(identity, connection)
        return identity

    def _drop_forward(self, identity: str, connection: ConnectionProtocol) -> None:
        # Only remove the forward entry if it still points at this connection.
        current = self._connections.get(identity)
        if current is not None and current.connection_id == connection.connection_id:
            del self._connections[identity]

    def identity_for(self, connection: ConnectionProtocol) -> str | None:
        return self._identities.get(connection.connection_id)

    def is_bound(self, connection: ConnectionProtocol) -> bool:
        return connection.connection_id in self._identities

    async def send_to_identity(self, identity: str, payload: dict[str, Any]) -> bool:
        """Send a JSON payload to the identity's bound connection.

        Return False if nothing open is bound to the identity or the transport
        fails mid-send; True once the frame has been handed to the transport.
        """
        connection = self._connections.get(identity)
        if connection is None or not connection.is_open:
            return False
        try:
            await connection.send_text(json.dumps(payload, ensure_ascii=False))
        except (ConnectionError, RuntimeError) as e:
            logger.warning("push to identity failed", identity=identity, error=str(e))
            return False
        return True

    # --- challenge sessions ---

    def start_session(self, identity: str, session: ChallengeSession) -> None:
        """Store the challenge session for ``identity``, overwriting any existing one."""
        now = time.monotonic()
        session.started_at = now
        session.expires_at = now + self._session_ttl_seconds if self._session_ttl_seconds is not None else None
        if identity in self._sessions:
            logger.info("challenge session overwritten", identity=identity)
        self._sessions[identity] = session

    def take_session(self, identity: str) -> ChallengeSession | None:
        """Remove and return the identity's session, or None if there is none."""
        session = self._sessions.pop(identity, None)
        if session is None:
            return None
        if session.expires_at is not None and time.monotonic() > session.expires_at:
            logger.debug("challenge session expired", identity=identity)
            return None
        return session

    def peek_session(self, identity: str) -> ChallengeSession | None:
        return self._sessions.get(identity)

    # --- expiry ---

    def cleanup_expired(self) -> int:
        """Drop expired challenge sessions. Return how many were removed."""
        now = time.monotonic()
        expired = [
            identity
            for identity, session in self._sessions.items()
            if session.expires_at is not None and now > session.expires_at
        ]
        for identity in expired:
            self._sessions.pop(identity, None)
        if expired:
            logger.info("cleaned up expired challenge sessions", count=len(expired))
        return len(expired)

    def start_cleanup(self) -> None:
        """Start the periodic cleanup task. No-op when sessions never expire."""
        if self._session_ttl_seconds is None:
            return
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.cleanup_expired()
