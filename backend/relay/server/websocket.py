from __future__ import annotations

import contextlib
from enum import StrEnum
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from relay.auth.tokens import TokenNotFound
from relay.messaging.protocol import ConnectionProtocol
from relay.messaging.types import AuthStatus, auth_status_frame, is_auth_frame, parse_auth_token

logger = structlog.get_logger()

if TYPE_CHECKING:
    from relay.auth.tokens import TokenIssuer
    from relay.messaging.router import EventRouter
    from relay.session.registry import SessionRegistry

AUTH_FAILED_CLOSE_CODE = 4001
FORBIDDEN_ORIGIN_CLOSE_CODE = 4003


class ConnectionState(StrEnum):
    CONNECTING = "connecting"
    OPEN_UNAUTHENTICATED = "open_unauthenticated"
    OPEN_AUTHENTICATED = "open_authenticated"
    CLOSED = "closed"


class WebSocketConnection(ConnectionProtocol):
    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self._websocket = websocket
        self._connection_id = connection_id or str(uuid4())

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def remote(self) -> str:
        client = self._websocket.client
        return f"{client.host}:{client.port}" if client is not None else "unknown"

    @property
    def is_open(self) -> bool:
        return (
            self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        try:
            await self._websocket.send_text(data)
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None

    async def receive_text(self) -> str:
        """Receive the next frame as text. Binary frames are decoded as UTF-8."""
        message = await self._websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise ConnectionError("WebSocket already disconnected")
        text = message.get("text")
        if text is None:
            text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
        return text

    async def close(self, code: int = 1000, reason: str = "") -> None:
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await self._websocket.close(code=code, reason=reason)


class ConnectionGateway:
    """
    Owns the lifecycle of client connections and the token handshake.

    Identity binding is delegated to the SessionRegistry; application frames
    from authenticated connections go to the EventRouter.
    """

    def __init__(self, tokens: TokenIssuer, registry: SessionRegistry, router: EventRouter) -> None:
        self._tokens = tokens
        self._registry = registry
        self._router = router
        self._connecting: dict[str, ConnectionProtocol] = {}  # handshake not yet accepted
        self._open: dict[str, ConnectionProtocol] = {}  # connection_id -> connection

    @property
    def open_count(self) -> int:
        return len(self._open)

    def state_of(self, connection: ConnectionProtocol) -> ConnectionState:
        if connection.connection_id in self._connecting:
            return ConnectionState.CONNECTING
        if connection.connection_id not in self._open:
            return ConnectionState.CLOSED
        if self._registry.is_bound(connection):
            return ConnectionState.OPEN_AUTHENTICATED
        return ConnectionState.OPEN_UNAUTHENTICATED

    def handle_opening(self, connection: ConnectionProtocol) -> None:
        """Track a connection whose transport handshake is still in progress."""
        self._connecting[connection.connection_id] = connection

    def handle_connect(self, connection: ConnectionProtocol) -> None:
        self._connecting.pop(connection.connection_id, None)
        self._open[connection.connection_id] = connection
        logger.debug("connection awaiting auth", connection_id=connection.connection_id)

    async def handle_frame(self, connection: ConnectionProtocol, raw: str) -> None:
        if is_auth_frame(raw):
            await self._authenticate(connection, parse_auth_token(raw))
            return

        if not self._registry.is_bound(connection):
            logger.debug("ignoring frame from unauthenticated connection", connection_id=connection.connection_id)
            return

        await self._router.handle_message(connection, raw)

    async def _authenticate(self, connection: ConnectionProtocol, token: str) -> None:
        try:
            identity = self._tokens.consume(token)
        except TokenNotFound:
            logger.info("authentication failed", connection_id=connection.connection_id)
            with contextlib.suppress(ConnectionError, RuntimeError):
                await connection.send_message(auth_status_frame(AuthStatus.AUTH_FAILED))
            await connection.close(code=AUTH_FAILED_CLOSE_CODE, reason=AuthStatus.AUTH_FAILED.value)
            await self.handle_disconnect(connection)
            return

        self._registry.bind_connection(identity, connection)
        structlog.contextvars.bind_contextvars(identity=identity)
        logger.info("connection authenticated", connection_id=connection.connection_id, identity=identity)
        await connection.send_message(auth_status_frame(AuthStatus.AUTHENTICATED))

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        """Release everything held by the connection. Safe to call more than once."""
        self._connecting.pop(connection.connection_id, None)
        if self._open.pop(connection.connection_id, None) is None:
            return
        identity = self._registry.unbind_by_connection(connection)
        if identity is not None:
            logger.info("identity disconnected", identity=identity, connection_id=connection.connection_id)


async def serve_connection(gateway: ConnectionGateway, connection: ConnectionProtocol) -> None:
    """Feed frames from an accepted connection to the gateway until either side closes it."""
    gateway.handle_connect(connection)
    try:
        while gateway.state_of(connection) != ConnectionState.CLOSED:
            raw = await connection.receive_text()
            await gateway.handle_frame(connection, raw)
    except (WebSocketDisconnect, RuntimeError, ConnectionError):  # fmt: skip
        pass
    except Exception:  # pragma: no cover
        logger.exception("unexpected error in websocket loop")
    finally:
        logger.info("websocket disconnected")
        await gateway.handle_disconnect(connection)


def _check_origin(websocket: WebSocket, allowed_origins: list[str]) -> bool:
    if not allowed_origins:
        return True
    return websocket.headers.get("origin", "") in allowed_origins


async def websocket_endpoint(
    websocket: WebSocket,
    gateway: ConnectionGateway,
    allowed_origins: list[str] | None = None,
) -> None:
    connection = WebSocketConnection(websocket)
    structlog.contextvars.bind_contextvars(connection_id=connection.connection_id)
    gateway.handle_opening(connection)

    try:
        if not _check_origin(websocket, allowed_origins or []):
            logger.info("websocket rejected, origin not allowed", origin=websocket.headers.get("origin"))
            await websocket.close(code=FORBIDDEN_ORIGIN_CLOSE_CODE, reason="forbidden_origin")
            return

        await websocket.accept()
        logger.info("websocket connected", remote=connection.remote)
        await serve_connection(gateway, connection)
    finally:
        await gateway.handle_disconnect(connection)
        structlog.contextvars.clear_contextvars()
