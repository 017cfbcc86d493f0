"""
Simulator boot controller.

``boot`` is idempotent: a device that is already booted is a success.
``wait_until_booted`` polls the live device state (never the cached
inventory) until it reports Booted, the timeout expires, or the active task
is cancelled.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

from simdeploy.core.logging_utils import get_module_logger
from simdeploy.core.process_runner import ProcessRunner
from simdeploy.core.results import CANCELLED_MESSAGE, OperationResult, Stage

from .inventory import SIMCTL, extract_json
from .types import DeviceState

logger = get_module_logger("BootController")

# Known fragility: this is the wording simctl uses today for booting a device
# that is already running. Matched literally, case-insensitively.
ALREADY_BOOTED_MARKERS = ("unable to boot device in current state", "booted")

DEFAULT_WAIT_TIMEOUT = 10.0
DEFAULT_POLL_INTERVAL = 0.5


def is_already_booted_error(output: str) -> bool:
    lowered = output.lower()
    return all(marker in lowered for marker in ALREADY_BOOTED_MARKERS)


def find_device_state(payload: Any, udid: str) -> DeviceState:
    devices = payload.get("devices") if isinstance(payload, dict) else None
    if not isinstance(devices, dict):
        return DeviceState.UNKNOWN
    for entries in devices.values():
        for entry in entries if isinstance(entries, list) else []:
            if isinstance(entry, dict) and entry.get("udid") == udid:
                return DeviceState.parse(entry.get("state"))
    return DeviceState.UNKNOWN


class BootController:

    def __init__(self, runner: ProcessRunner, *, command_timeout: Optional[float] = 60.0) -> None:
        self.runner = runner
        self.tracker = runner.tracker
        self.command_timeout = command_timeout

    async def boot(self, udid: str, task_id: Optional[str] = None) -> OperationResult:
        result = await self.runner.run(
            SIMCTL,
            ["simctl", "boot", udid],
            timeout=self.command_timeout,
            task_id=task_id,
        )
        if result.ok:
            logger.info("Booted simulator %s", udid)
            return OperationResult(ok=True)
        if result.cancelled and result.error == CANCELLED_MESSAGE:
            return OperationResult(ok=False, cancelled=True, error=CANCELLED_MESSAGE, stage=Stage.CANCELLED)
        if is_already_booted_error(result.combined_output):
            logger.debug("Simulator %s already booted", udid)
            return OperationResult(ok=True)
        return OperationResult(
            ok=False,
            cancelled=result.cancelled or None,
            error=result.failure_message("Failed to boot simulator."),
            stage=Stage.BOOT,
        )

    async def device_state(self, udid: str) -> DeviceState:
        result = await self.runner.run(SIMCTL, ["simctl", "list", "-j", "devices"])
        if not result.ok:
            return DeviceState.UNKNOWN
        return find_device_state(extract_json(result.stdout, result.stderr), udid)

    async def wait_until_booted(
        self,
        udid: str,
        timeout: float = DEFAULT_WAIT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        task_id: Optional[str] = None,
    ) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            if self.tracker.is_cancelled(task_id):
                logger.debug("Boot wait for %s cancelled", udid)
                return False
            if await self.device_state(udid) is DeviceState.BOOTED:
                return True
            if time.monotonic() + poll_interval > deadline:
                logger.warning("Simulator %s did not boot within %.1fs", udid, timeout)
                return False
            await asyncio.sleep(poll_interval)
            if self.tracker.is_cancelled(task_id):
                logger.debug("Boot wait for %s cancelled", udid)
                return False


__all__ = [
    "ALREADY_BOOTED_MARKERS",
    "BootController",
    "find_device_state",
    "is_already_booted_error",
]
