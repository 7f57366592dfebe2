"""Relay server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from relay.messaging.sink import DEFAULT_DISCORD_API_URL
from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class RelayServerSettings(BaseSettings):
    model_config = {"env_prefix": "RELAY_"}

    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(default=8887, ge=1, le=65535)

    # Shared secret the chat layer presents in X-API-Key -- required, no default.
    api_key: str = Field(min_length=1)

    # Browser game client; returned alongside each token so the bot can link to it.
    app_url: str = "http://localhost:5173"
    # Empty list disables the WebSocket Origin check.
    allowed_origins: list[str] = []

    # None keeps tokens and challenge sessions until consumed or restart.
    token_ttl_seconds: int | None = Field(default=None, ge=1)
    challenge_ttl_seconds: int | None = Field(default=None, ge=1)
    cleanup_interval_seconds: int = Field(default=300, ge=1)

    log_dir: str | None = None

    # When unset, outcomes are only logged.
    discord_bot_token: str | None = None
    discord_api_url: str = Field(default=DEFAULT_DISCORD_API_URL, min_length=1)

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def validate_allowed_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v, allow_empty=True)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings)
