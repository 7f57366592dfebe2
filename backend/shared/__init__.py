"""Infrastructure shared by the relay server: logging, settings helpers, build info."""
