"""Unit tests for simulator boot and boot-status polling."""

import json

import pytest

from simdeploy.core.devices.boot import BootController, find_device_state, is_already_booted_error
from simdeploy.core.devices.types import DeviceState
from simdeploy.core.results import Stage
from tests.infrastructure.mocks.process_mocks import IOS_RUNTIME, FakeReply, device_entry, simctl_catalog


def _listing(state):
    return simctl_catalog({IOS_RUNTIME: [device_entry("iPhone 15", "UDID-1", state=state)]})


class TestHelpers:
    """Test pure helpers."""

    def test_already_booted_detected(self):
        output = (
            "An error was encountered processing the command (domain=com.apple.CoreSimulator.SimError, code=405):\n"
            "Unable to boot device in current state: Booted"
        )

        assert is_already_booted_error(output)
        assert not is_already_booted_error("Unable to boot device in current state: Shutting Down")

    def test_other_errors_not_booted(self):
        assert not is_already_booted_error("Invalid device: XYZ")

    def test_find_device_state(self):
        payload = json.loads(_listing("Booting"))

        assert find_device_state(payload, "UDID-1") is DeviceState.BOOTING
        assert find_device_state(payload, "missing") is DeviceState.UNKNOWN
        assert find_device_state(None, "UDID-1") is DeviceState.UNKNOWN


class TestBoot:
    """Test BootController.boot outcomes."""

    @pytest.mark.asyncio
    async def test_boot_success(self, runner):
        runner.on("xcrun", "simctl", "boot")

        result = await BootController(runner).boot("UDID-1")

        assert result.ok
        assert runner.calls_for("xcrun", "simctl", "boot") == [["xcrun", "simctl", "boot", "UDID-1"]]

    @pytest.mark.asyncio
    async def test_already_booted_is_success(self, runner):
        runner.on("xcrun", "simctl", "boot", returncode=149,
                  stderr="Unable to boot device in current state: Booted")

        result = await BootController(runner).boot("UDID-1")

        assert result.ok

    @pytest.mark.asyncio
    async def test_boot_failure(self, runner):
        runner.on("xcrun", "simctl", "boot", returncode=148, stderr="Invalid device: UDID-1")

        result = await BootController(runner).boot("UDID-1")

        assert not result.ok
        assert result.stage is Stage.BOOT
        assert result.error == "Invalid device: UDID-1"

    @pytest.mark.asyncio
    async def test_boot_cancelled_before_spawn(self, runner, tracker):
        runner.on("xcrun", "simctl", "boot")
        task_id = tracker.start_task()
        tracker.cancel()

        result = await BootController(runner).boot("UDID-1", task_id)

        assert not result.ok
        assert result.cancelled
        assert result.stage is Stage.CANCELLED
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_boot_timeout_is_boot_failure(self, runner):
        runner.on("xcrun", "simctl", "boot", hang=True)

        result = await BootController(runner, command_timeout=0.05).boot("UDID-1")

        assert not result.ok
        assert result.stage is Stage.BOOT
        assert result.error == "Command timeout"


class TestWaitUntilBooted:
    """Test BootController.wait_until_booted polling."""

    @pytest.mark.asyncio
    async def test_returns_when_booted(self, runner):
        states = iter(["Shutdown", "Booting", "Booted"])
        runner.on("xcrun", "simctl", "list", reply=lambda argv: FakeReply(stdout=_listing(next(states))))

        booted = await BootController(runner).wait_until_booted("UDID-1", timeout=2, poll_interval=0.01)

        assert booted
        assert len(runner.calls) == 3
        assert runner.calls[0][0] == ["xcrun", "simctl", "list", "-j", "devices"]

    @pytest.mark.asyncio
    async def test_times_out(self, runner):
        runner.on("xcrun", "simctl", "list", stdout=_listing("Booting"))

        booted = await BootController(runner).wait_until_booted("UDID-1", timeout=0.05, poll_interval=0.01)

        assert not booted

    @pytest.mark.asyncio
    async def test_listing_failure_counts_as_not_booted(self, runner):
        runner.on("xcrun", "simctl", "list", returncode=1)

        booted = await BootController(runner).wait_until_booted("UDID-1", timeout=0.03, poll_interval=0.01)

        assert not booted

    @pytest.mark.asyncio
    async def test_cancel_stops_polling(self, runner, tracker):
        task_id = tracker.start_task()

        def reply(argv):
            tracker.cancel()
            return FakeReply(stdout=_listing("Booting"))

        runner.on("xcrun", "simctl", "list", reply=reply)

        booted = await BootController(runner).wait_until_booted(
            "UDID-1", timeout=5, poll_interval=0.01, task_id=task_id
        )

        assert not booted
        assert len(runner.calls) == 1
