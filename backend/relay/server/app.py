from __future__ import annotations

import contextlib
import hmac
import json
from http import HTTPStatus
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ValidationError
from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from relay.auth.tokens import TokenIssuer
from relay.challenges.service import ChallengeService
from relay.messaging.router import EventRouter
from relay.messaging.sink import DiscordNotificationSink, LoggingNotificationSink
from relay.server.settings import RelayServerSettings
from relay.server.types import IssueTokenRequest, StartChallengeRequest
from relay.server.websocket import ConnectionGateway, websocket_endpoint
from relay.session.registry import SessionRegistry
from shared.build_info import APP_VERSION, GIT_COMMIT
from shared.logging import setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request
    from starlette.websockets import WebSocket

    from relay.messaging.sink import NotificationSink

_MAX_REQUEST_BODY_SIZE = 4096


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "version": APP_VERSION, "commit": GIT_COMMIT})


def _unauthorized(request: Request) -> JSONResponse | None:
    """Return a 401 response unless the request carries the configured API key."""
    settings: RelayServerSettings = request.app.state.settings
    provided = request.headers.get("x-api-key", "")
    if hmac.compare_digest(provided.encode(), settings.api_key.encode()):
        return None
    return JSONResponse({"error": "Invalid API key"}, status_code=HTTPStatus.UNAUTHORIZED)


async def _read_model(request: Request, model: type[BaseModel]) -> BaseModel | JSONResponse:
    """Parse the JSON body into ``model``, or return the 400/413 response to send instead."""
    raw_body = await request.body()
    if len(raw_body) > _MAX_REQUEST_BODY_SIZE:
        return JSONResponse({"error": "Request body too large"}, status_code=HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
    try:
        body = json.loads(raw_body)
        return model(**body)
    except (ValueError, TypeError, json.JSONDecodeError, UnicodeDecodeError, ValidationError):  # fmt: skip
        return JSONResponse({"error": "Invalid request body"}, status_code=HTTPStatus.BAD_REQUEST)


async def status(request: Request) -> JSONResponse:
    denied = _unauthorized(request)
    if denied is not None:
        return denied
    registry: SessionRegistry = request.app.state.registry
    tokens: TokenIssuer = request.app.state.tokens
    gateway: ConnectionGateway = request.app.state.gateway
    return JSONResponse(
        {
            "status": "ok",
            "version": APP_VERSION,
            "commit": GIT_COMMIT,
            "open_connections": gateway.open_count,
            "bound_identities": registry.bound_count,
            "pending_tokens": tokens.pending_count,
            "active_challenges": registry.session_count,
        },
    )


async def issue_token(request: Request) -> JSONResponse:
    denied = _unauthorized(request)
    if denied is not None:
        return denied
    parsed = await _read_model(request, IssueTokenRequest)
    if not isinstance(parsed, IssueTokenRequest):
        return parsed

    service: ChallengeService = request.app.state.challenge_service
    settings: RelayServerSettings = request.app.state.settings
    token = service.issue_token(parsed.identity)
    return JSONResponse({"token": token, "app_url": settings.app_url}, status_code=HTTPStatus.CREATED)


async def start_challenge(request: Request) -> JSONResponse:
    denied = _unauthorized(request)
    if denied is not None:
        return denied
    parsed = await _read_model(request, StartChallengeRequest)
    if not isinstance(parsed, StartChallengeRequest):
        return parsed

    service: ChallengeService = request.app.state.challenge_service
    delivered = await service.start_challenge(parsed.identity, parsed.destination, parsed.params)
    if not delivered:
        return JSONResponse({"error": "not_connected", "delivered": False}, status_code=HTTPStatus.CONFLICT)
    return JSONResponse({"delivered": True}, status_code=HTTPStatus.CREATED)


def _default_sink(settings: RelayServerSettings) -> NotificationSink:
    if settings.discord_bot_token:
        return DiscordNotificationSink(settings.discord_bot_token, api_url=settings.discord_api_url)
    logger.warning("no discord bot token configured, challenge outcomes will only be logged")
    return LoggingNotificationSink()


def create_app(
    settings: RelayServerSettings | None = None,
    tokens: TokenIssuer | None = None,
    registry: SessionRegistry | None = None,
    sink: NotificationSink | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = RelayServerSettings()  # ty: ignore[missing-argument]

    if tokens is None:
        tokens = TokenIssuer(
            ttl_seconds=settings.token_ttl_seconds,
            cleanup_interval=settings.cleanup_interval_seconds,
        )
    if registry is None:
        registry = SessionRegistry(
            session_ttl_seconds=settings.challenge_ttl_seconds,
            cleanup_interval=settings.cleanup_interval_seconds,
        )
    if sink is None:
        sink = _default_sink(settings)

    router = EventRouter(registry, sink)
    gateway = ConnectionGateway(tokens, registry, router)
    challenge_service = ChallengeService(tokens, registry)
    allowed_origins = settings.allowed_origins

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(websocket, gateway, allowed_origins)

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/status", status, methods=["GET"]),
        Route("/tokens", issue_token, methods=["POST"]),
        Route("/challenges", start_challenge, methods=["POST"]),
        WebSocketRoute("/ws", ws_endpoint),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        tokens.start_cleanup()
        registry.start_cleanup()
        logger.info("relay server started", port=settings.port)
        yield
        await tokens.stop_cleanup()
        await registry.stop_cleanup()
        await sink.aclose()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.settings = settings
    app.state.tokens = tokens
    app.state.registry = registry
    app.state.gateway = gateway
    app.state.challenge_service = challenge_service

    logger.info("relay server ready")
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    settings = RelayServerSettings()  # ty: ignore[missing-argument]
    setup_logging(log_dir=settings.log_dir)
    return create_app(settings=settings)
