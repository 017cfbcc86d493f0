"""Cancellation against real process trees."""

from __future__ import annotations

import asyncio
import sys

import psutil
import pytest

from simdeploy.core.cancellation import TaskTracker
from simdeploy.core.process_runner import ProcessRunner

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX process trees only")


def _spawner_script(pid_file) -> str:
    return (
        "import subprocess, sys, time\n"
        "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
        f"with open({str(pid_file)!r}, 'w') as handle:\n"
        "    handle.write(str(child.pid))\n"
        "time.sleep(60)\n"
    )


def _gone(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


@pytest.mark.slow
@pytest.mark.asyncio
async def test_cancel_kills_grandchildren(tmp_path):
    tracker = TaskTracker()
    runner = ProcessRunner(tracker)
    pid_file = tmp_path / "child.pid"
    task_id = tracker.start_task()

    pending = asyncio.create_task(
        runner.run(sys.executable, ["-c", _spawner_script(pid_file)], task_id=task_id)
    )
    for _ in range(1000):
        if pid_file.exists() and pid_file.read_text().strip():
            break
        await asyncio.sleep(0.01)
    child_pid = int(pid_file.read_text())

    assert tracker.cancel() is True
    result = await asyncio.wait_for(pending, timeout=10)

    assert result.cancelled
    for _ in range(100):
        if _gone(child_pid):
            break
        await asyncio.sleep(0.05)
    assert _gone(child_pid)


@pytest.mark.slow
@pytest.mark.asyncio
async def test_timeout_kills_grandchildren(tmp_path):
    runner = ProcessRunner(TaskTracker())
    pid_file = tmp_path / "child.pid"

    result = await asyncio.wait_for(
        runner.run(sys.executable, ["-c", _spawner_script(pid_file)], timeout=2.0),
        timeout=15,
    )

    assert result.error == "Command timeout"
    child_pid = int(pid_file.read_text())
    for _ in range(100):
        if _gone(child_pid):
            break
        await asyncio.sleep(0.05)
    assert _gone(child_pid)
