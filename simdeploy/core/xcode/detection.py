"""
iOS project detection.

Decides whether a discovered container actually targets iOS by scanning the
project file(s) for SDK hints; if none are found, falls back to asking the
build tool for the first non-test scheme's build settings.
"""

from __future__ import annotations

import asyncio
import os
from typing import Optional

import aiofiles

from simdeploy.core.logging_utils import get_module_logger
from simdeploy.core.process_runner import ProcessRunner
from simdeploy.core.results import Container, ContainerType, ProjectDetectResult, Stage
from simdeploy.core.state import OrchestratorState

from .container import ContainerDiscovery, workspace_project_paths
from .schemes import NO_CONTAINER_MESSAGE, XCODEBUILD, SchemeResolver, is_test_scheme

logger = get_module_logger("ProjectDetector")

IOS_PROJECT_HINTS = (
    "SDKROOT = iphoneos",
    "SDKROOT = iphonesimulator",
    "IPHONEOS_DEPLOYMENT_TARGET",
    "TARGETED_DEVICE_FAMILY",
)
IOS_SETTINGS_HINTS = (
    "sdkroot = iphone",
    "supported_platforms = iphone",
    "supported_platforms = iphonesimulator",
)
HEAD_READ_BYTES = 512 * 1024
FULL_READ_BYTES = 5 * 1024 * 1024


async def read_head(path: str, max_bytes: int) -> bytes:
    async with aiofiles.open(path, "rb") as handle:
        return await handle.read(max_bytes)


def _has_project_hints(data: bytes) -> bool:
    return any(hint.encode() in data for hint in IOS_PROJECT_HINTS)


def build_settings_target_ios(settings: Optional[str]) -> bool:
    if not settings:
        return False
    lowered = settings.lower()
    return any(hint in lowered for hint in IOS_SETTINGS_HINTS)


class ProjectDetector:

    def __init__(
        self,
        runner: ProcessRunner,
        discovery: ContainerDiscovery,
        schemes: SchemeResolver,
        state: OrchestratorState,
        *,
        settings_timeout: float = 10.0,
    ) -> None:
        self.runner = runner
        self.discovery = discovery
        self.schemes = schemes
        self.state = state
        self.settings_timeout = settings_timeout

    async def project_file_has_hints(self, pbxproj_path: str) -> bool:
        cached = self.state.hint_cache.lookup(pbxproj_path)
        if cached is not None:
            return cached.value
        try:
            data = await read_head(pbxproj_path, HEAD_READ_BYTES)
            found = _has_project_hints(data)
            if not found and len(data) >= HEAD_READ_BYTES:
                found = _has_project_hints(await read_head(pbxproj_path, FULL_READ_BYTES))
        except OSError as exc:
            logger.debug("Cannot read %s: %s", pbxproj_path, exc)
            found = False
        return self.state.hint_cache.put(pbxproj_path, found)

    async def container_has_hints(self, container: Container) -> bool:
        if container.type is ContainerType.PROJECT:
            return await self.project_file_has_hints(os.path.join(container.path, "project.pbxproj"))
        projects = await asyncio.to_thread(workspace_project_paths, container.path)
        for project in projects:
            if await self.project_file_has_hints(os.path.join(project, "project.pbxproj")):
                return True
        return False

    async def detect(self, root_path: str) -> ProjectDetectResult:
        container = await self.discovery.find(root_path)
        if container is None:
            return ProjectDetectResult(ok=False, error=NO_CONTAINER_MESSAGE, stage=Stage.CONTAINER)

        if await self.container_has_hints(container):
            return ProjectDetectResult(ok=True, is_ios_project=True, container=container)

        listing = await self.schemes.list_schemes(root_path, container)
        candidate = next((s for s in listing.schemes if not is_test_scheme(s)), None)
        if not listing.ok or candidate is None:
            return ProjectDetectResult(
                ok=False,
                error=listing.error or "No iOS targets detected.",
                stage=listing.stage or Stage.SCHEMES,
            )

        result = await self.runner.run(
            XCODEBUILD,
            ["-showBuildSettings", container.build_flag, container.path, "-scheme", candidate],
            cwd=root_path,
            timeout=self.settings_timeout,
        )
        if result.ok and build_settings_target_ios(result.combined_output):
            return ProjectDetectResult(ok=True, is_ios_project=True, container=container)
        error = "No iOS targets detected." if result.ok else result.failure_message("Failed to read build settings.")
        return ProjectDetectResult(ok=False, error=error, stage=Stage.BUILD)


__all__ = [
    "IOS_PROJECT_HINTS",
    "ProjectDetector",
    "build_settings_target_ios",
    "read_head",
]
