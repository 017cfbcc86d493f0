"""Simulator device inventory and boot control."""

from .boot import BootController, is_already_booted_error
from .inventory import (
    DeviceInventory,
    extract_json,
    parse_device_catalog,
    rank_devices,
    score_device,
)
from .poller import SimulatorCache, SimulatorPoller
from .types import Device, DeviceState, Runtime

__all__ = [
    "BootController",
    "Device",
    "DeviceInventory",
    "DeviceState",
    "Runtime",
    "SimulatorCache",
    "SimulatorPoller",
    "extract_json",
    "is_already_booted_error",
    "parse_device_catalog",
    "rank_devices",
    "score_device",
]
