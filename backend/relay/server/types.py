from pydantic import BaseModel, ConfigDict, Field

from relay.messaging.types import ChallengeParams

# Discord snowflakes are numeric, but any opaque key is accepted as an identity.
_KEY_FIELD = Field(min_length=1, max_length=100)


class IssueTokenRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    identity: str = _KEY_FIELD


class StartChallengeRequest(BaseModel):
    """Start a reflex challenge for ``identity``; the outcome is announced in ``destination``."""

    model_config = ConfigDict(extra="forbid")

    identity: str = _KEY_FIELD
    destination: str = _KEY_FIELD
    params: ChallengeParams
