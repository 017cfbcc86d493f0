"""
Public facade over the simulator orchestrator.

``SimulatorService`` wires the runner, caches and components around one
``OrchestratorState`` and exposes each operation as a coroutine returning a
result dataclass. Nothing raises past this class: unsupported platforms get
an immediate ``platform`` failure and unexpected exceptions are logged and
converted to the operation's fallback stage.
"""

from __future__ import annotations

import asyncio
import functools
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Type, TypeVar

from .devices import BootController, DeviceInventory, SimulatorCache, SimulatorPoller
from .logging_utils import get_module_logger
from .pipeline import BuildRunPipeline
from .platform_info import UNSUPPORTED_MESSAGE, PlatformInfo, get_platform_info
from .process_runner import ProcessRunner
from .results import (
    CANCELLED_MESSAGE,
    ContainerResult,
    DeviceListResult,
    OperationResult,
    PipelineResult,
    ProjectDetectResult,
    SchemeListResult,
    SnapshotResult,
    Stage,
)
from .settings import SimulatorSettings, load_settings
from .state import OrchestratorState
from .xcode import ContainerDiscovery, ProjectDetector, SchemeResolver
from .xcode.schemes import NO_CONTAINER_MESSAGE, XCODEBUILD

logger = get_module_logger("SimulatorService")

OPEN_COMMAND = "open"
SIMULATOR_APP = "Simulator"
XCODE_MISSING_MESSAGE = "Xcode is not installed or xcode-select points at the wrong directory."

R = TypeVar("R")


def guarded(result_type: Type[Any], fallback_stage: Stage) -> Callable:
    """Platform gate plus last-resort exception conversion for a facade coroutine."""

    def decorator(func: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(self: "SimulatorService", *args, **kwargs):
            if not self.platform.is_supported:
                return result_type(ok=False, error=UNSUPPORTED_MESSAGE, stage=Stage.PLATFORM)
            try:
                return await func(self, *args, **kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("%s failed unexpectedly", func.__name__)
                return result_type(
                    ok=False,
                    error=str(exc) or type(exc).__name__,
                    stage=fallback_stage,
                )
        return wrapper

    return decorator


class SimulatorService:
    """Entry point for UI and CLI callers."""

    def __init__(
        self,
        settings: Optional[SimulatorSettings] = None,
        *,
        state: Optional[OrchestratorState] = None,
        runner: Optional[ProcessRunner] = None,
        platform: Optional[PlatformInfo] = None,
    ) -> None:
        self.settings = settings or SimulatorSettings()
        self.state = state or OrchestratorState.from_settings(self.settings)
        self.platform = platform or get_platform_info()
        self.runner = runner or ProcessRunner(self.state.tracker, output_limit=self.settings.output_limit)

        self.inventory = DeviceInventory(self.runner, self.state)
        self.boot = BootController(self.runner, command_timeout=self.settings.boot_command_timeout)
        self.discovery = ContainerDiscovery(self.state, max_depth=self.settings.container_max_depth)
        self.schemes = SchemeResolver(
            self.runner,
            self.discovery,
            self.state,
            list_timeout=self.settings.scheme_list_timeout,
        )
        self.detector = ProjectDetector(
            self.runner,
            self.discovery,
            self.schemes,
            self.state,
            settings_timeout=self.settings.build_settings_timeout,
        )
        self.pipeline = BuildRunPipeline(
            self.runner, self.discovery, self.schemes, self.boot, self.settings
        )
        self.poller = SimulatorPoller(
            self.inventory,
            poll_interval=self.settings.poll_interval,
            min_refresh=self.settings.poll_min_refresh,
        )

    @classmethod
    async def from_config(cls, config_path: Optional[Path] = None, **kwargs) -> "SimulatorService":
        settings = await load_settings(config_path)
        return cls(settings, **kwargs)

    @property
    def tracker(self):
        return self.state.tracker

    # ------------------------------------------------------------------
    # Inventory

    @guarded(DeviceListResult, Stage.SIMCTL)
    async def list_devices(self, force: bool = False) -> DeviceListResult:
        return await self.inventory.list_devices(force=force)

    @guarded(DeviceListResult, Stage.SIMCTL)
    async def list_booted(self, force: bool = False) -> DeviceListResult:
        return await self.inventory.list_booted(force=force)

    def start_polling(self) -> bool:
        if not self.platform.is_supported:
            return False
        self.poller.start()
        return True

    async def stop_polling(self) -> None:
        await self.poller.stop()

    @property
    def simulator_cache(self) -> SimulatorCache:
        return self.poller.cache

    # ------------------------------------------------------------------
    # Project discovery

    @guarded(ContainerResult, Stage.CONTAINER)
    async def detect_container(self, root_path: str) -> ContainerResult:
        root_path = (root_path or "").strip()
        if not root_path:
            return ContainerResult(ok=False, error="Project path is required.", stage=Stage.VALIDATION)
        container = await self.discovery.find(root_path)
        if container is None:
            return ContainerResult(ok=False, error=NO_CONTAINER_MESSAGE, stage=Stage.CONTAINER)
        return ContainerResult(ok=True, container=container)

    @guarded(ProjectDetectResult, Stage.CONTAINER)
    async def detect_project(self, root_path: str) -> ProjectDetectResult:
        root_path = (root_path or "").strip()
        if not root_path:
            return ProjectDetectResult(ok=False, error="Project path is required.", stage=Stage.VALIDATION)
        if not await asyncio.to_thread(os.path.isdir, root_path):
            return ProjectDetectResult(ok=False, error="Project path is not a directory.", stage=Stage.VALIDATION)
        return await self.state.coalesce(f"detect:{root_path}", lambda: self.detector.detect(root_path))

    @guarded(SchemeListResult, Stage.SCHEMES)
    async def list_schemes(self, root_path: str) -> SchemeListResult:
        root_path = (root_path or "").strip()
        if not root_path:
            return SchemeListResult(ok=False, error="Project path is required.", stage=Stage.VALIDATION)
        return await self.schemes.list_schemes(root_path)

    @guarded(SnapshotResult, Stage.SCHEMES)
    async def snapshot(self, root_path: str) -> SnapshotResult:
        """Devices and schemes for ``root_path`` in one round trip."""
        root_path = (root_path or "").strip()
        if not root_path:
            return SnapshotResult(ok=False, error="Project path is required.", stage=Stage.VALIDATION)
        return await self.state.coalesce(f"snapshot:{root_path}", lambda: self._snapshot(root_path))

    async def _snapshot(self, root_path: str) -> SnapshotResult:
        devices, schemes = await asyncio.gather(
            self.inventory.list_devices(),
            self.schemes.list_schemes(root_path),
        )
        failed = next((result for result in (devices, schemes) if not result.ok), None)
        return SnapshotResult(
            ok=failed is None,
            container=schemes.container,
            devices=list(devices.devices) if devices.ok else None,
            booted=[device for device in devices.devices if device.is_booted] if devices.ok else None,
            best_udid=devices.best_udid,
            schemes=list(schemes.schemes) if schemes.ok else None,
            default_scheme=schemes.default_scheme,
            error=failed.error if failed is not None else None,
            stage=failed.stage if failed is not None else None,
            details=schemes.details,
        )

    # ------------------------------------------------------------------
    # Orchestrated tasks

    @guarded(OperationResult, Stage.BOOT)
    async def boot_and_focus(self, udid: str) -> OperationResult:
        udid = (udid or "").strip()
        if not udid:
            return OperationResult.failure(Stage.VALIDATION, "Simulator UDID is required.")

        task_id = self.tracker.start_task()
        try:
            booted = await self.boot.boot(udid, task_id)
            if not booted.ok:
                return booted

            ready = await self.boot.wait_until_booted(
                udid,
                timeout=self.settings.boot_wait_timeout,
                poll_interval=self.settings.boot_poll_interval,
                task_id=task_id,
            )
            if not ready:
                if self.tracker.is_cancelled(task_id):
                    return OperationResult(ok=False, error=CANCELLED_MESSAGE, stage=Stage.CANCELLED, cancelled=True)
                return OperationResult.failure(Stage.BOOTSTATUS, "Simulator did not finish booting.")

            focus = await self.runner.run(
                OPEN_COMMAND,
                ["-a", SIMULATOR_APP, "--args", "-CurrentDeviceUDID", udid],
                task_id=task_id,
            )
            if not focus.ok:
                if focus.cancelled and focus.error == CANCELLED_MESSAGE:
                    return OperationResult(ok=False, error=CANCELLED_MESSAGE, stage=Stage.CANCELLED, cancelled=True)
                return OperationResult.failure(Stage.LAUNCH, focus.failure_message("Failed to open Simulator."))
            return OperationResult(ok=True)
        finally:
            self.tracker.finish_task(task_id)

    @guarded(PipelineResult, Stage.BUILD)
    async def build_and_run(self, root_path: str, udid: str, scheme: Optional[str] = None) -> PipelineResult:
        return await self.pipeline.run(root_path, udid, scheme)

    def cancel_active_task(self) -> OperationResult:
        """Flag the active task as cancelled and kill its running command."""
        if not self.platform.is_supported:
            return OperationResult.failure(Stage.PLATFORM, UNSUPPORTED_MESSAGE)
        return OperationResult(ok=True, cancelled=self.tracker.cancel())

    @guarded(OperationResult, Stage.XCODE)
    async def check_toolchain(self) -> OperationResult:
        result = await self.runner.run(XCODEBUILD, ["-version"], timeout=self.settings.build_settings_timeout)
        if result.ok:
            version = result.stdout.strip().splitlines()
            logger.info("Toolchain: %s", version[0] if version else "unknown")
            return OperationResult(ok=True)
        if "xcode-select" in result.stderr:
            return OperationResult.failure(Stage.XCODE, XCODE_MISSING_MESSAGE)
        return OperationResult.failure(Stage.XCODE, result.failure_message("Failed to run xcodebuild."))


__all__ = ["OPEN_COMMAND", "SimulatorService", "XCODE_MISSING_MESSAGE", "guarded"]
