"""Unit test fixtures for isolated, fast test execution.

Fixtures in this file build a fresh orchestrator per test:
- ``tracker``/``state``: task tracker and caches on a manual clock
- ``runner``: a ``ScriptedRunner`` (see tests/infrastructure/mocks/process_mocks.py)
- ``settings``/``service``: short boot waits and a work root under ``tmp_path``
"""

from __future__ import annotations

from pathlib import Path

import pytest

from simdeploy.core.cancellation import TaskTracker
from simdeploy.core.platform_info import PlatformInfo
from simdeploy.core.service import SimulatorService
from simdeploy.core.settings import SimulatorSettings
from simdeploy.core.state import OrchestratorState
from tests.infrastructure.mocks.process_mocks import ManualClock, ScriptedRunner


@pytest.fixture
def tracker() -> TaskTracker:
    return TaskTracker()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def state(tracker: TaskTracker, clock: ManualClock) -> OrchestratorState:
    return OrchestratorState(clock=clock, tracker=tracker)


@pytest.fixture
def runner(tracker: TaskTracker) -> ScriptedRunner:
    return ScriptedRunner(tracker)


@pytest.fixture
def settings(tmp_path: Path) -> SimulatorSettings:
    return SimulatorSettings(
        work_root=tmp_path / "work",
        boot_wait_timeout=1.0,
        boot_poll_interval=0.01,
    )


@pytest.fixture
def macos() -> PlatformInfo:
    return PlatformInfo(platform="darwin", architecture="arm64", os_release="23.2.0")


@pytest.fixture
def service(settings, state, runner, macos) -> SimulatorService:
    return SimulatorService(settings, state=state, runner=runner, platform=macos)
