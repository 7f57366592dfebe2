"""Run the relay server: ``python -m relay.server.run``."""

import uvicorn

from relay.server.settings import RelayServerSettings


def main() -> None:  # pragma: no cover
    settings = RelayServerSettings()  # ty: ignore[missing-argument]
    # Logging is configured by get_app; keep uvicorn from installing its own handlers.
    uvicorn.run(
        "relay.server.app:get_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover
    main()
