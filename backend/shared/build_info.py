"""Build metadata reported by /health and /status.

Deploys set APP_VERSION and GIT_COMMIT. Otherwise the version comes from
the installed distribution and the commit from the local checkout.
"""

import os
import subprocess
from importlib.metadata import PackageNotFoundError, version

DISTRIBUTION_NAME = "reflex-relay"


def _installed_version() -> str:
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return "dev"


def _git_short_sha() -> str:
    try:
        return subprocess.check_output(
            ["git", "rev-parse", "--short", "HEAD"],  # noqa: S607
            text=True,
            stderr=subprocess.DEVNULL,
        ).strip()
    except (FileNotFoundError, subprocess.CalledProcessError):
        return "dev"


APP_VERSION: str = os.environ.get("APP_VERSION") or _installed_version()
GIT_COMMIT: str = os.environ.get("GIT_COMMIT") or _git_short_sha()
