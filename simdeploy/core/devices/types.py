"""
Core type definitions for the simulator device inventory.

Devices and runtimes are derived from the toolchain's JSON listing on every
query and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from simdeploy.core.results import ResultMixin

PLATFORM_KEYWORD = "ios"
PHONE_FAMILY_KEYWORD = "iphone"


class DeviceState(Enum):
    """Simulator state as reported by the device-listing command."""
    UNKNOWN = "Unknown"
    SHUTDOWN = "Shutdown"
    BOOTING = "Booting"
    BOOTED = "Booted"
    SHUTTING_DOWN = "Shutting Down"
    CREATING = "Creating"

    @classmethod
    def parse(cls, raw: Any) -> "DeviceState":
        for state in cls:
            if state.value == raw:
                return state
        return cls.UNKNOWN


@dataclass(frozen=True)
class Runtime(ResultMixin):
    """OS image a device runs."""
    identifier: str
    name: str
    platform: Optional[str] = None
    version: Optional[str] = None
    is_available: Optional[bool] = None

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "Runtime":
        return cls(
            identifier=str(payload.get("identifier", "")),
            name=str(payload.get("name", "")),
            platform=payload.get("platform"),
            version=payload.get("version"),
            is_available=payload.get("isAvailable"),
        )

    @property
    def is_relevant(self) -> bool:
        return (
            (self.platform or "").lower() == PLATFORM_KEYWORD
            or self.name.lower().startswith(PLATFORM_KEYWORD)
            or PLATFORM_KEYWORD in self.identifier.lower()
        )


@dataclass(frozen=True)
class Device(ResultMixin):
    name: str
    udid: str
    state: DeviceState
    is_available: bool
    runtime: Runtime
    is_phone_family: bool
    model_number: int

    @property
    def is_booted(self) -> bool:
        return self.state is DeviceState.BOOTED


__all__ = [
    "Device",
    "DeviceState",
    "PHONE_FAMILY_KEYWORD",
    "PLATFORM_KEYWORD",
    "Runtime",
]
