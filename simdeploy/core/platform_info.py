"""
Platform detection for simdeploy.

The simulator toolchain only exists on macOS. Detection runs once and is
cached; every public operation consults it before touching an external tool.
"""

import platform
import sys
from dataclasses import dataclass
from typing import Optional

from simdeploy.core.logging_utils import get_module_logger

logger = get_module_logger("PlatformInfo")

SUPPORTED_PLATFORM = "darwin"
UNSUPPORTED_MESSAGE = "iOS Simulator is only available on macOS."


@dataclass(frozen=True)
class PlatformInfo:
    """Immutable platform information.

    Attributes:
        platform: System platform ('linux', 'darwin', 'win32')
        architecture: CPU architecture ('x86_64', 'arm64')
        os_release: OS release version string
    """

    platform: str
    architecture: str
    os_release: str

    @property
    def is_supported(self) -> bool:
        return self.platform == SUPPORTED_PLATFORM

    def __str__(self) -> str:
        return f"{self.platform} {self.os_release} ({self.architecture})"


def detect_platform(platform_name: Optional[str] = None) -> PlatformInfo:
    """Detect current platform information, optionally forcing the platform name."""
    info = PlatformInfo(
        platform=platform_name or sys.platform,
        architecture=platform.machine(),
        os_release=platform.release(),
    )
    logger.debug("Platform detected: %s", info)
    return info


_platform_info: Optional[PlatformInfo] = None


def get_platform_info() -> PlatformInfo:
    """Get cached platform information (singleton)."""
    global _platform_info
    if _platform_info is None:
        _platform_info = detect_platform()
    return _platform_info


def reset_platform_info() -> None:
    """Reset the cached platform info (for testing only)."""
    global _platform_info
    _platform_info = None


__all__ = [
    "PlatformInfo",
    "SUPPORTED_PLATFORM",
    "UNSUPPORTED_MESSAGE",
    "detect_platform",
    "get_platform_info",
    "reset_platform_info",
]
