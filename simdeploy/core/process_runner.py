"""
Process runner for the external simulator and build toolchain.

Spawns a command, captures stdout/stderr into capped buffers, and supports
timeout-based and flag-based cancellation. Commands spawned with the active
task id register as the tracker's active command so an external cancel can
kill them.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

from .cancellation import ActiveCommand, TaskTracker, kill_process_tree
from .logging_utils import get_module_logger
from .results import CANCELLED_MESSAGE, TIMEOUT_MESSAGE, CommandResult
from .settings import OUTPUT_LIMIT_BYTES

logger = get_module_logger("ProcessRunner")

_READ_CHUNK = 64 * 1024


class CappedBuffer:
    """Accumulates bytes up to ``limit``; anything past the ceiling is dropped."""

    __slots__ = ("limit", "_data")

    def __init__(self, limit: int = OUTPUT_LIMIT_BYTES) -> None:
        self.limit = limit
        self._data = bytearray()

    @property
    def full(self) -> bool:
        return len(self._data) >= self.limit

    def append(self, chunk: bytes) -> None:
        if self.full:
            return
        self._data.extend(chunk[: self.limit - len(self._data)])

    def __len__(self) -> int:
        return len(self._data)

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")


class ProcessRunner:
    """Runs external commands; never raises for spawn or exit failures."""

    def __init__(self, tracker: TaskTracker, *, output_limit: int = OUTPUT_LIMIT_BYTES) -> None:
        self.tracker = tracker
        self.output_limit = output_limit

    async def _spawn(self, command: str, args: Sequence[str], cwd: Optional[str]) -> Any:
        return await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    @staticmethod
    async def _drain(stream: Optional[asyncio.StreamReader], buffer: CappedBuffer) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            buffer.append(chunk)

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
        task_id: Optional[str] = None,
    ) -> CommandResult:
        tracked = self.tracker.is_tracked(task_id)
        if tracked and self.tracker.cancel_requested:
            logger.debug("Skipping %s: task %s already cancelled", command, task_id)
            return CommandResult.cancelled_before_spawn()

        logger.debug("Running: %s %s", command, " ".join(args))
        try:
            process = await self._spawn(command, list(args), cwd)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to start %s: %s", command, exc)
            return CommandResult(ok=False, exit_code=None, error=str(exc))

        record = ActiveCommand(process=process, task_id=task_id)
        if tracked:
            self.tracker.register(record)
            if self.tracker.cancel_requested:
                # Cancelled while spawning; nothing was registered to kill yet.
                record.kill()

        stdout = CappedBuffer(self.output_limit)
        stderr = CappedBuffer(self.output_limit)
        timed_out = False

        def _on_timeout() -> None:
            nonlocal timed_out
            timed_out = True
            logger.warning("%s timed out after %.1fs", command, timeout)
            record.kill()

        timer = None
        if timeout:
            timer = asyncio.get_running_loop().call_later(timeout, _on_timeout)

        try:
            await asyncio.gather(
                self._drain(process.stdout, stdout),
                self._drain(process.stderr, stderr),
            )
            exit_code = await process.wait()
        except asyncio.CancelledError:
            kill_process_tree(process)
            raise
        finally:
            if timer is not None:
                timer.cancel()
            self.tracker.release(record)

        if tracked and self.tracker.cancel_requested:
            record.cancelled = True

        cancelled = record.cancelled
        error = None
        if timed_out:
            error = TIMEOUT_MESSAGE
        elif cancelled:
            error = CANCELLED_MESSAGE

        result = CommandResult(
            ok=not timed_out and not cancelled and exit_code == 0,
            stdout=stdout.text(),
            stderr=stderr.text(),
            exit_code=exit_code,
            error=error,
            cancelled=cancelled,
        )
        if not result.ok:
            logger.debug("%s exited with %s (cancelled=%s)", command, exit_code, cancelled)
        return result


__all__ = ["CappedBuffer", "ProcessRunner"]
