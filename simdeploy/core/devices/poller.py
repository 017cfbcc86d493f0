"""
Background refresh of the simulator inventory for UI pickers.

Reference counted: each ``start()`` must be paired with a ``stop()``; the
loop runs while at least one consumer is subscribed.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import List, Optional

from simdeploy.core.asyncio_utils import create_logged_task
from simdeploy.core.logging_utils import get_module_logger
from simdeploy.core.results import ResultMixin, Stage

from .inventory import DeviceInventory
from .types import Device

logger = get_module_logger("SimulatorPoller")

NO_SIMULATORS_MESSAGE = "No iOS simulators are available."


@dataclass(frozen=True)
class SimulatorCache(ResultMixin):
    """Last known inventory snapshot; status is idle, loading, ready or error."""
    status: str = "idle"
    devices: List[Device] = field(default_factory=list)
    booted: List[Device] = field(default_factory=list)
    best_udid: Optional[str] = None
    error: Optional[str] = None
    stage: Optional[Stage] = None
    last_updated: float = 0.0


class SimulatorPoller:

    DEFAULT_POLL_INTERVAL = 15.0
    DEFAULT_MIN_REFRESH = 3.0

    def __init__(
        self,
        inventory: DeviceInventory,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        min_refresh: float = DEFAULT_MIN_REFRESH,
    ) -> None:
        self.inventory = inventory
        self._poll_interval = poll_interval
        self._min_refresh = min_refresh
        self._cache = SimulatorCache()
        self._ref_count = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def cache(self) -> SimulatorCache:
        return self._cache

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def ref_count(self) -> int:
        return self._ref_count

    async def refresh(self, force: bool = False) -> SimulatorCache:
        if not force and time.monotonic() - self._cache.last_updated < self._min_refresh:
            return self._cache

        self._cache = replace(self._cache, status="loading")
        listing = await self.inventory.list_devices(force=force)
        now = time.monotonic()

        if not listing.ok:
            self._cache = replace(
                self._cache,
                status="error",
                error=listing.error or "Failed to load simulators.",
                stage=listing.stage,
                last_updated=now,
            )
        elif not listing.devices:
            self._cache = SimulatorCache(
                status="error",
                error=NO_SIMULATORS_MESSAGE,
                stage=Stage.SIMCTL,
                last_updated=now,
            )
        else:
            self._cache = SimulatorCache(
                status="ready",
                devices=list(listing.devices),
                booted=[device for device in listing.devices if device.is_booted],
                best_udid=listing.best_udid,
                last_updated=now,
            )
        return self._cache

    def start(self) -> None:
        self._ref_count += 1
        if self.is_running:
            return
        self._task = create_logged_task(self._loop(), logger=logger, context="simulator-poller")
        logger.info("Simulator polling started")

    async def stop(self) -> None:
        self._ref_count = max(0, self._ref_count - 1)
        if self._ref_count > 0 or self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Simulator polling stopped")

    async def _loop(self) -> None:
        await self.refresh(force=True)
        while True:
            await asyncio.sleep(self._poll_interval)
            await self.refresh()


__all__ = ["NO_SIMULATORS_MESSAGE", "SimulatorCache", "SimulatorPoller"]
