"""Wire formats for the reflex relay WebSocket.

Inbound frames are either ``AUTH:<token>`` or a JSON object tagged by its
``action`` field. Outbound frames are JSON objects.
"""

import json
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_serializer, field_validator

AUTH_PREFIX = "AUTH:"
MAX_FRAME_SIZE = 4096


class ClientAction(StrEnum):
    GAME_RESULT = "GAME_RESULT"
    PING = "PING"


class ServerAction(StrEnum):
    START_GAME = "START_GAME"
    PONG = "PONG"


class AuthStatus(StrEnum):
    AUTHENTICATED = "authenticated"
    AUTH_FAILED = "auth_failed"


class GameOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class ChallengeMode(StrEnum):
    NORMAL = "normal"  # progressive bars
    WHITE_ONLY = "branco"  # white bars only


class MalformedFrameError(ValueError):
    """Inbound frame could not be parsed into a known message shape."""


class GameResultMessage(BaseModel):
    action: Literal["GAME_RESULT"]
    # Only an explicit "success" wins; a missing or unrecognised result is a failure.
    result: GameOutcome = GameOutcome.FAILURE

    @field_validator("result", mode="before")
    @classmethod
    def _anything_but_success_is_failure(cls, value: object) -> GameOutcome:
        return GameOutcome.SUCCESS if value == GameOutcome.SUCCESS.value else GameOutcome.FAILURE


class PingMessage(BaseModel):
    action: Literal["PING"]


ClientMessage = Annotated[GameResultMessage | PingMessage, Field(discriminator="action")]

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)
_CLIENT_ACTIONS = frozenset(ClientAction)


class ChallengeParams(BaseModel):
    """Tunables of a reflex challenge, serialized with the browser client's key names."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    required_score: int = Field(ge=1, alias="pontuacaoNecessaria")
    allowed_errors: int = Field(ge=1, alias="errosPermitidos")
    defense: int = Field(ge=0, alias="defesa")
    mode: ChallengeMode = Field(default=ChallengeMode.NORMAL, alias="modo")
    initial_speed: float = Field(default=2.5, gt=0, alias="velocidadeInicial")
    time_limit: float = Field(default=-1.0, alias="tempoLimite")  # seconds, -1 = unlimited

    @field_serializer("initial_speed", "time_limit")
    def _round_floats(self, value: float) -> float:
        return round(value, 2)


def auth_status_frame(status: AuthStatus) -> dict[str, Any]:
    return {"status": status.value}


def start_game_frame(params: ChallengeParams) -> dict[str, Any]:
    """Build the START_GAME frame pushed to the player's client."""
    return {"action": ServerAction.START_GAME.value, **params.model_dump(mode="json", by_alias=True)}


def pong_frame() -> dict[str, Any]:
    return {"action": ServerAction.PONG.value}


def is_auth_frame(raw: str) -> bool:
    return raw.startswith(AUTH_PREFIX)


def parse_auth_token(raw: str) -> str:
    """Return the token carried by an ``AUTH:<token>`` frame."""
    return raw[len(AUTH_PREFIX) :].strip()


def parse_client_frame(raw: str) -> GameResultMessage | PingMessage | None:
    """Parse an application frame.

    Return None for a well-formed frame whose ``action`` is not one we handle.
    Raise MalformedFrameError for anything that is not a valid tagged JSON object.
    """
    byte_len = len(raw.encode("utf-8"))
    if byte_len > MAX_FRAME_SIZE:
        raise MalformedFrameError(f"frame too large ({byte_len} bytes, max {MAX_FRAME_SIZE})")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedFrameError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedFrameError(f"expected JSON object, got {type(data).__name__}")

    action = data.get("action")
    if not isinstance(action, str) or action not in _CLIENT_ACTIONS:
        return None
    try:
        return _client_message_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedFrameError(str(e)) from e
