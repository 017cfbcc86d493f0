"""
Build, install and launch an app on a simulator.

Stages run in order ``validation -> container/schemes -> build -> app ->
boot -> bootstatus -> bundle-id -> install -> launch``. The boot command is
dispatched alongside the build, but its completion is only awaited once the
built app has been located. Any failure after the run directory exists is
quarantined together with the build log.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import aiofiles

from simdeploy.core.asyncio_utils import create_logged_task
from simdeploy.core.devices.boot import BootController
from simdeploy.core.devices.inventory import SIMCTL
from simdeploy.core.logging_utils import get_module_logger
from simdeploy.core.process_runner import ProcessRunner
from simdeploy.core.results import (
    CANCELLED_MESSAGE,
    CommandResult,
    Container,
    FailureDetails,
    PipelineResult,
    Stage,
)
from simdeploy.core.settings import SimulatorSettings
from simdeploy.core.xcode.container import ContainerDiscovery
from simdeploy.core.xcode.schemes import NO_CONTAINER_MESSAGE, XCODEBUILD, SchemeResolver

from .quarantine import quarantine_run
from .workspace import BUILD_LOG_NAME, ProjectWorkspace, new_run_id

logger = get_module_logger("BuildRunPipeline")

PLIST_BUDDY = "/usr/libexec/PlistBuddy"
PRODUCT_DIRECTORIES = ("Debug-iphonesimulator", "Release-iphonesimulator")
APP_SUFFIX = ".app"


class StageTimer:
    """Durations between consecutive stage marks."""

    def __init__(self) -> None:
        self._start = time.monotonic()
        self._last = self._start
        self.marks: List[Tuple[str, float]] = []

    def mark(self, stage: str) -> None:
        now = time.monotonic()
        self.marks.append((stage, now - self._last))
        self._last = now

    def summary(self) -> str:
        parts = [f"{stage}={duration:.2f}s" for stage, duration in self.marks]
        parts.append(f"total={time.monotonic() - self._start:.2f}s")
        return " ".join(parts)


def find_built_app(derived_data_dir: Path, scheme: str) -> Optional[Path]:
    """``<scheme>.app`` from the simulator product directories, else the first bundle found."""
    products = Path(derived_data_dir) / "Build" / "Products"
    for directory in PRODUCT_DIRECTORIES:
        try:
            apps = sorted(
                entry.name
                for entry in os.scandir(products / directory)
                if entry.is_dir() and entry.name.endswith(APP_SUFFIX)
            )
        except OSError:
            continue
        if not apps:
            continue
        exact = f"{scheme}{APP_SUFFIX}"
        return products / directory / (exact if exact in apps else apps[0])
    return None


def copy_artifact(app_path: Path, run_dir: Path) -> bool:
    try:
        shutil.copytree(app_path, run_dir / app_path.name, symlinks=True)
        return True
    except (OSError, shutil.Error) as exc:
        logger.debug("Could not copy %s into %s: %s", app_path, run_dir, exc)
        return False


def replace_executable(source: Path, target: Path) -> bool:
    """Swap ``target`` for ``source`` atomically; False if anything fails."""
    staging = target.with_name(f".{target.name}.simdeploy")
    try:
        shutil.copy2(source, staging)
        os.replace(staging, target)
        return True
    except OSError as exc:
        logger.debug("Executable copy %s -> %s failed: %s", source, target, exc)
        staging.unlink(missing_ok=True)
        return False


def remove_tree(path: Path) -> bool:
    try:
        shutil.rmtree(path)
        return True
    except OSError as exc:
        logger.debug("Could not remove %s: %s", path, exc)
        return False


def build_arguments(
    container: Container,
    scheme: str,
    udid: str,
    derived_data_dir: Path,
    configuration: str = "Debug",
) -> List[str]:
    return [
        container.build_flag,
        container.path,
        "-scheme",
        scheme,
        "-configuration",
        configuration,
        "-destination",
        f"platform=iOS Simulator,id={udid}",
        "-derivedDataPath",
        str(derived_data_dir),
        "CODE_SIGNING_ALLOWED=NO",
        "CODE_SIGNING_REQUIRED=NO",
        "COMPILER_INDEX_STORE_ENABLE=NO",
        "build",
    ]


def format_build_log(args: Sequence[str], result: CommandResult) -> str:
    header = [
        f"$ {XCODEBUILD} {' '.join(args)}",
        f"exit code: {result.exit_code}",
    ]
    if result.error:
        header.append(f"error: {result.error}")
    return "\n".join(header + ["", "=== stdout ===", result.stdout, "=== stderr ===", result.stderr, ""])


@dataclass
class _Run:
    """Per-invocation bookkeeping shared by the failure path."""
    task_id: str
    udid: str
    scheme: str
    workspace: ProjectWorkspace
    run_id: str
    boot_task: Optional[asyncio.Task] = None

    @property
    def run_dir(self) -> Path:
        return self.workspace.run_dir(self.run_id)


class BuildRunPipeline:

    def __init__(
        self,
        runner: ProcessRunner,
        discovery: ContainerDiscovery,
        schemes: SchemeResolver,
        boot: BootController,
        settings: SimulatorSettings,
    ) -> None:
        self.runner = runner
        self.tracker = runner.tracker
        self.discovery = discovery
        self.schemes = schemes
        self.boot = boot
        self.settings = settings

    async def run(self, root_path: str, udid: str, scheme: Optional[str] = None) -> PipelineResult:
        root_path = (root_path or "").strip()
        udid = (udid or "").strip()
        if not root_path or not udid:
            return PipelineResult.failure(Stage.VALIDATION, "Project path and simulator UDID are required.")

        task_id = self.tracker.start_task()
        timer = StageTimer()
        result: Optional[PipelineResult] = None
        try:
            result = await self._run(task_id, root_path, udid, (scheme or "").strip(), timer)
            return result
        finally:
            self.tracker.finish_task(task_id)
            outcome = "ok" if result is not None and result.ok else (
                result.stage.value if result is not None and result.stage else "aborted"
            )
            logger.info("build-and-run %s [%s]: %s", root_path, outcome, timer.summary())

    async def _run(
        self,
        task_id: str,
        root_path: str,
        udid: str,
        requested_scheme: str,
        timer: StageTimer,
    ) -> PipelineResult:
        if not await asyncio.to_thread(os.path.isdir, root_path):
            return PipelineResult.failure(Stage.VALIDATION, "Project path is not a directory.")
        timer.mark("validation")

        if requested_scheme:
            container = await self.discovery.find(root_path)
            if container is None:
                return PipelineResult.failure(Stage.CONTAINER, NO_CONTAINER_MESSAGE)
            selected = requested_scheme
            timer.mark("container")
        else:
            listing = await self.schemes.list_schemes(root_path)
            timer.mark("schemes")
            if not listing.ok or listing.container is None:
                return PipelineResult.failure(
                    listing.stage or Stage.SCHEMES,
                    listing.error or "Failed to resolve Xcode schemes.",
                    details=listing.details,
                )
            if not listing.default_scheme:
                return PipelineResult.failure(Stage.SCHEMES, "Select a scheme to build and run.")
            container = listing.container
            selected = listing.default_scheme

        workspace = ProjectWorkspace.for_project(self.settings.work_root, root_path)
        run = _Run(task_id=task_id, udid=udid, scheme=selected, workspace=workspace, run_id=new_run_id())
        try:
            await asyncio.to_thread(workspace.derived_data_dir.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(run.run_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to prepare build directories under %s: %s", workspace.base_dir, exc)
            return PipelineResult.failure(
                Stage.BUILD,
                "Failed to prepare build directory.",
                scheme=selected,
                derived_data_path=str(workspace.derived_data_dir),
            )
        timer.mark("prepare")

        run.boot_task = create_logged_task(
            self.boot.boot(udid, task_id), logger=logger, context=f"boot {udid}"
        )

        args = build_arguments(
            container, selected, udid, workspace.derived_data_dir, self.settings.build_configuration
        )
        logger.info("Building scheme %s for %s", selected, udid)
        build = await self.runner.run(XCODEBUILD, args, cwd=root_path, task_id=task_id)
        # Best effort: the result carries stdout/stderr even if the log is missing.
        await self._write_build_log(run.run_dir / BUILD_LOG_NAME, args, build)
        timer.mark("build")
        if not build.ok:
            return await self._fail_command(run, build, Stage.BUILD, "Build failed.")

        app_path = await asyncio.to_thread(find_built_app, workspace.derived_data_dir, selected)
        if app_path is None:
            return await self._fail(run, Stage.APP, "Unable to locate built app.")
        # Best effort: a missing copy only affects post-mortem inspection.
        await asyncio.to_thread(copy_artifact, app_path, run.run_dir)
        timer.mark("app")

        booted = await run.boot_task
        timer.mark("boot")
        if not booted.ok:
            cancelled = booted.stage is Stage.CANCELLED or self.tracker.is_cancelled(task_id)
            stage = Stage.CANCELLED if cancelled else Stage.BOOT
            return await self._fail(run, stage, booted.error or "Failed to boot simulator.")

        ready = await self.boot.wait_until_booted(
            udid,
            timeout=self.settings.boot_wait_timeout,
            poll_interval=self.settings.boot_poll_interval,
            task_id=task_id,
        )
        timer.mark("bootstatus")
        if not ready:
            if self.tracker.is_cancelled(task_id):
                return await self._fail(run, Stage.CANCELLED, CANCELLED_MESSAGE)
            return await self._fail(run, Stage.BOOTSTATUS, "Simulator did not finish booting.")

        bundle_id, bundle_res = await self._plist_value(app_path, "CFBundleIdentifier", task_id)
        executable, exec_res = await self._plist_value(app_path, "CFBundleExecutable", task_id)
        timer.mark("bundle-id")
        checks = (
            (bundle_id, bundle_res, "bundle identifier"),
            (executable, exec_res, "executable name"),
        )
        for value, res, label in checks:
            if not value:
                return await self._fail_command(run, res, Stage.BUNDLE_ID, f"Unable to read {label}.")

        failure = await self._install_or_patch(run, app_path, bundle_id, executable)
        timer.mark("install")
        if failure is not None:
            return failure

        launch = await self.runner.run(
            SIMCTL,
            ["simctl", "launch", "--terminate-running-process", udid, bundle_id],
            task_id=task_id,
        )
        timer.mark("launch")
        if not launch.ok:
            return await self._fail_command(run, launch, Stage.LAUNCH, "Failed to launch app.")

        # Best effort: a leftover run directory is harmless.
        await asyncio.to_thread(remove_tree, run.run_dir)
        logger.info("Launched %s (%s) on %s", bundle_id, selected, udid)
        return PipelineResult(ok=True, scheme=selected, bundle_id=bundle_id, app_path=str(app_path))

    async def _install_or_patch(
        self,
        run: _Run,
        app_path: Path,
        bundle_id: str,
        executable: str,
    ) -> Optional[PipelineResult]:
        container = await self.runner.run(
            SIMCTL,
            ["simctl", "get_app_container", run.udid, bundle_id, "app"],
            task_id=run.task_id,
        )
        if self._stage_for(container, Stage.INSTALL) is Stage.CANCELLED:
            return await self._fail(run, Stage.CANCELLED, CANCELLED_MESSAGE)

        lines = container.stdout.strip().splitlines() if container.ok else []
        installed = lines[-1].strip() if lines else ""
        if installed:
            target = Path(installed) / executable
            if await asyncio.to_thread(target.is_file):
                if await asyncio.to_thread(replace_executable, app_path / executable, target):
                    logger.info("Patched %s in place", target)
                    return None
                logger.info("In-place patch failed for %s, installing instead", bundle_id)

        install = await self.runner.run(
            SIMCTL, ["simctl", "install", run.udid, str(app_path)], task_id=run.task_id
        )
        if not install.ok:
            return await self._fail_command(run, install, Stage.INSTALL, "Failed to install app.")
        return None

    async def _plist_value(self, app_path: Path, key: str, task_id: str) -> Tuple[Optional[str], CommandResult]:
        result = await self.runner.run(
            PLIST_BUDDY, ["-c", f"Print :{key}", str(app_path / "Info.plist")], task_id=task_id
        )
        lines = result.stdout.strip().splitlines() if result.ok else []
        value = lines[-1].strip() if lines else None
        return value or None, result

    @staticmethod
    def _stage_for(result: CommandResult, stage: Stage) -> Stage:
        return Stage.CANCELLED if result.cancelled and result.error == CANCELLED_MESSAGE else stage

    async def _write_build_log(self, path: Path, args: Sequence[str], result: CommandResult) -> bool:
        try:
            async with aiofiles.open(path, "w", encoding="utf-8") as handle:
                await handle.write(format_build_log(args, result))
            return True
        except OSError as exc:
            logger.warning("Failed to write build log %s: %s", path, exc)
            return False

    async def _fail_command(
        self,
        run: _Run,
        result: CommandResult,
        stage: Stage,
        fallback: str,
    ) -> PipelineResult:
        stage = self._stage_for(result, stage)
        error = CANCELLED_MESSAGE if stage is Stage.CANCELLED else result.failure_message(fallback)
        return await self._fail(run, stage, error, FailureDetails.from_command(result))

    async def _fail(
        self,
        run: _Run,
        stage: Stage,
        error: str,
        details: Optional[FailureDetails] = None,
    ) -> PipelineResult:
        if run.boot_task is not None and not run.boot_task.done():
            # Join rather than orphan the boot; its outcome no longer matters.
            await asyncio.wait({run.boot_task})

        location = await quarantine_run(
            run.run_dir,
            run.workspace.failures_dir,
            run.run_id,
            self.settings.failure_retention,
        )
        details = details or FailureDetails()
        details.log_path = str(location / BUILD_LOG_NAME)
        logger.warning("build-and-run failed at %s: %s", stage.value, error)
        return PipelineResult.failure(
            stage,
            error,
            details=details,
            scheme=run.scheme,
            derived_data_path=str(run.workspace.derived_data_dir),
        )


__all__ = [
    "BuildRunPipeline",
    "PLIST_BUDDY",
    "StageTimer",
    "build_arguments",
    "copy_artifact",
    "find_built_app",
    "format_build_log",
    "replace_executable",
]
