"""One-time connection tokens binding a future WebSocket to a chat identity.

The chat layer issues a token for a user and hands it over out-of-band (an
ephemeral Discord reply). The browser client presents it once in an
``AUTH:<token>`` frame; the gateway consumes it and binds the connection.
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass
from uuid import uuid4

import structlog

DEFAULT_CLEANUP_INTERVAL_SECONDS = 300

logger = structlog.get_logger()


class TokenNotFound(KeyError):  # noqa: N818
    """Token is unknown, already consumed, or expired."""


@dataclass
class PendingToken:
    identity: str
    issued_at: float
    expires_at: float | None  # None = never expires


class TokenIssuer:
    """In-memory store of outstanding one-time tokens.

    Tokens live until consumed or until process restart. Pass ``ttl_seconds``
    to make them expire; an expired token is indistinguishable from an
    unknown one.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
    ) -> None:
        self._tokens: dict[str, PendingToken] = {}  # token -> PendingToken
        self._ttl_seconds = ttl_seconds
        self._cleanup_interval = cleanup_interval
        self._cleanup_task: asyncio.Task[None] | None = None

    @property
    def pending_count(self) -> int:
        return len(self._tokens)

    def issue(self, identity: str) -> str:
        """Mint a fresh token for ``identity`` and return it."""
        now = time.monotonic()
        token = str(uuid4())
        expires_at = now + self._ttl_seconds if self._ttl_seconds is not None else None
        self._tokens[token] = PendingToken(identity=identity, issued_at=now, expires_at=expires_at)
        logger.debug("connection token issued", identity=identity)
        return token

    def consume(self, token: str) -> str:
        """Remove the token and return its identity.

        Raises TokenNotFound if the token is unknown, already consumed or expired.
        The lookup and removal happen in a single ``dict.pop`` so at most one
        caller can ever consume a given token.
        """
        pending = self._tokens.pop(token, None)
        if pending is None:
            raise TokenNotFound(token)
        if pending.expires_at is not None and time.monotonic() > pending.expires_at:
            logger.debug("connection token expired", identity=pending.identity)
            raise TokenNotFound(token)
        return pending.identity

    def cleanup_expired(self) -> int:
        """Drop expired tokens. Return how many were removed."""
        now = time.monotonic()
        expired = [
            token
            for token, pending in self._tokens.items()
            if pending.expires_at is not None and now > pending.expires_at
        ]
        for token in expired:
            self._tokens.pop(token, None)
        if expired:
            logger.info("cleaned up expired connection tokens", count=len(expired))
        return len(expired)

    def start_cleanup(self) -> None:
        """Start the periodic cleanup task. No-op when tokens never expire."""
        if self._ttl_seconds is None:
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
