"""Unit tests for the external command runner."""

import asyncio
import sys

import pytest

from simdeploy.core.cancellation import TaskTracker
from simdeploy.core.process_runner import CappedBuffer, ProcessRunner
from simdeploy.core.results import CANCELLED_MESSAGE, TIMEOUT_MESSAGE

from tests.infrastructure.mocks.process_mocks import FakeReply, ScriptedRunner


async def _wait_for_active_command(tracker: TaskTracker) -> None:
    for _ in range(100):
        if tracker.active_command is not None:
            return
        await asyncio.sleep(0)
    raise AssertionError("command never registered")


class GatedSpawnRunner(ScriptedRunner):
    """Holds every spawn until ``proceed`` is set."""

    def __init__(self, tracker: TaskTracker) -> None:
        super().__init__(tracker)
        self.spawning = asyncio.Event()
        self.proceed = asyncio.Event()

    async def _spawn(self, command, args, cwd):
        self.spawning.set()
        await self.proceed.wait()
        return await super()._spawn(command, args, cwd)


class TestCappedBuffer:
    """Test CappedBuffer output ceiling."""

    def test_keeps_bytes_under_limit(self):
        buffer = CappedBuffer(limit=10)
        buffer.append(b"hello")
        buffer.append(b" you")

        assert buffer.text() == "hello you"
        assert not buffer.full

    def test_truncates_at_limit(self):
        buffer = CappedBuffer(limit=4)
        buffer.append(b"abc")
        buffer.append(b"defgh")
        buffer.append(b"ijk")

        assert buffer.text() == "abcd"
        assert buffer.full
        assert len(buffer) == 4

    def test_invalid_utf8_is_replaced(self):
        buffer = CappedBuffer()
        buffer.append(b"ok\xff")

        assert buffer.text().startswith("ok")


class TestRealProcesses:
    """Run the interpreter as a child process."""

    @pytest.mark.asyncio
    async def test_success_captures_stdout(self):
        runner = ProcessRunner(TaskTracker())

        result = await runner.run(sys.executable, ["-c", "import sys; sys.stdout.write('hello')"])

        assert result.ok
        assert result.exit_code == 0
        assert result.stdout == "hello"
        assert result.error is None

    @pytest.mark.asyncio
    async def test_nonzero_exit_reports_stderr(self):
        runner = ProcessRunner(TaskTracker())

        result = await runner.run(
            sys.executable,
            ["-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"],
        )

        assert not result.ok
        assert result.exit_code == 3
        assert result.stderr == "boom"
        assert result.failure_message("fallback") == "boom"

    @pytest.mark.asyncio
    async def test_spawn_failure_is_not_raised(self, tmp_path):
        runner = ProcessRunner(TaskTracker())

        result = await runner.run(str(tmp_path / "does-not-exist"))

        assert not result.ok
        assert result.exit_code is None
        assert result.error

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        runner = ProcessRunner(TaskTracker())

        result = await runner.run(sys.executable, ["-c", "import time; time.sleep(30)"], timeout=0.3)

        assert not result.ok
        assert result.error == TIMEOUT_MESSAGE
        assert result.exit_code != 0

    @pytest.mark.asyncio
    async def test_output_is_capped(self):
        runner = ProcessRunner(TaskTracker(), output_limit=100)

        result = await runner.run(sys.executable, ["-c", "print('x' * 5000)"])

        assert result.ok
        assert len(result.stdout) == 100

    @pytest.mark.asyncio
    async def test_working_directory(self, tmp_path):
        runner = ProcessRunner(TaskTracker())

        result = await runner.run(
            sys.executable,
            ["-c", "import os; print(os.getcwd())"],
            cwd=str(tmp_path),
        )

        assert result.ok
        assert result.stdout.strip().endswith(tmp_path.name)


class TestCancellation:
    """Flag-based cancellation through the task tracker."""

    @pytest.mark.asyncio
    async def test_cancel_before_spawn_skips_process(self, tracker, runner):
        runner.on("xcrun", stdout="should not run")
        task_id = tracker.start_task()
        tracker.cancel()

        result = await runner.run("xcrun", ["simctl", "boot", "X"], task_id=task_id)

        assert result.cancelled
        assert not result.ok
        assert result.error == CANCELLED_MESSAGE
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_untracked_commands_ignore_cancel_flag(self, tracker, runner):
        runner.on("xcrun", stdout="{}")
        tracker.start_task()
        tracker.cancel()

        result = await runner.run("xcrun", ["simctl", "list"])

        assert result.ok
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_kills_running_command(self, tracker, runner):
        runner.on("xcodebuild", hang=True)
        task_id = tracker.start_task()

        pending = asyncio.create_task(runner.run("xcodebuild", ["build"], task_id=task_id))
        await _wait_for_active_command(tracker)
        assert tracker.cancel() is True
        result = await pending

        assert result.cancelled
        assert result.error == CANCELLED_MESSAGE
        assert runner.processes[0].kill_count >= 1
        assert tracker.active_command is None

    @pytest.mark.asyncio
    async def test_cancel_during_run_is_applied_after_exit(self, tracker, runner):
        task_id = tracker.start_task()
        runner.on("xcrun", reply=FakeReply(stdout="done", on_spawn=lambda argv: tracker.cancel()))

        result = await runner.run("xcrun", ["simctl", "install"], task_id=task_id)

        assert result.cancelled
        assert not result.ok
        assert result.stdout == "done"

    @pytest.mark.asyncio
    async def test_cancel_while_spawning_kills_process(self, tracker):
        runner = GatedSpawnRunner(tracker)
        runner.on("xcodebuild", hang=True)
        task_id = tracker.start_task()

        pending = asyncio.create_task(runner.run("xcodebuild", ["build"], task_id=task_id))
        await runner.spawning.wait()
        assert tracker.cancel() is True
        runner.proceed.set()
        result = await asyncio.wait_for(pending, timeout=2)

        assert result.cancelled
        assert result.error == CANCELLED_MESSAGE
        assert runner.processes[0].kill_count == 1
        assert tracker.active_command is None

    @pytest.mark.asyncio
    async def test_superseded_task_is_not_registered(self, tracker, runner):
        runner.on("xcrun", hang=True)
        stale = tracker.start_task()
        tracker.start_task()

        pending = asyncio.create_task(runner.run("xcrun", ["simctl"], task_id=stale))
        for _ in range(10):
            await asyncio.sleep(0)

        assert tracker.active_command is None
        runner.processes[0].kill()
        result = await pending
        assert not result.cancelled

    @pytest.mark.asyncio
    async def test_task_cancellation_kills_child(self, runner):
        runner.on("xcodebuild", hang=True)

        pending = asyncio.create_task(runner.run("xcodebuild", ["build"]))
        for _ in range(10):
            await asyncio.sleep(0)
        pending.cancel()

        with pytest.raises(asyncio.CancelledError):
            await pending
        assert runner.processes[0].kill_count == 1


class TestScriptedRunner:
    """Sanity checks for the fake used across the suite."""

    @pytest.mark.asyncio
    async def test_unmatched_command_fails_to_spawn(self, runner):
        result = await runner.run("PlistBuddy", ["-c", "Print"])

        assert not result.ok
        assert result.exit_code is None

    @pytest.mark.asyncio
    async def test_later_rules_take_precedence(self):
        runner = ScriptedRunner()
        runner.on("xcrun", stdout="first")
        runner.on("xcrun", "simctl", stdout="second")

        assert (await runner.run("xcrun", ["simctl", "list"])).stdout == "second"
        assert (await runner.run("xcrun", ["other"])).stdout == "first"
