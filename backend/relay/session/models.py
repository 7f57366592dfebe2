from dataclasses import dataclass, field
from typing import Any


@dataclass
class ChallengeSession:
    """An in-flight challenge awaiting its result.

    ``destination`` is where the outcome gets announced (a chat channel id);
    ``params`` are the start parameters pushed to the client, kept for logging.
    """

    destination: str
    params: dict[str, Any] = field(default_factory=dict)
    started_at: float = 0.0
    expires_at: float | None = None  # None = never expires
