"""Centralized path constants for simdeploy."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[1]

# User-specific state (allows running from read-only installs)
_USER_STATE_ENV = os.environ.get("SIMDEPLOY_STATE_DIR")
USER_STATE_DIR = Path(_USER_STATE_ENV).expanduser() if _USER_STATE_ENV else (Path.home() / ".simdeploy")

CONFIG_PATH = USER_STATE_DIR / "config.txt"
LOGS_DIR = USER_STATE_DIR / "logs"
MAIN_LOG_FILE = LOGS_DIR / "simdeploy.log"

# Build artifacts live under the system temp directory; per-project folders
# hold derived data, in-flight runs and the quarantined failures.
DEFAULT_WORK_ROOT = Path(tempfile.gettempdir()) / "simdeploy-ios"


def ensure_directories() -> None:
    """Create the user state directories if they don't exist."""

    USER_STATE_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)


__all__ = [
    "PACKAGE_ROOT",
    "USER_STATE_DIR",
    "CONFIG_PATH",
    "LOGS_DIR",
    "MAIN_LOG_FILE",
    "DEFAULT_WORK_ROOT",
    "ensure_directories",
]
