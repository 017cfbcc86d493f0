"""
Single-flight task identity and cooperative cancellation.

Only one orchestrated operation (boot-and-focus or build-and-run) is
trackable at a time. Commands spawned under the active task id register
themselves as the ``ActiveCommand`` so ``cancel()`` can kill them; the cancel
flag is checked before spawn and again after the process exits.
"""

from __future__ import annotations

import contextlib
import secrets
import time
from dataclasses import dataclass
from typing import Any, List, Optional

import psutil

from .logging_utils import get_module_logger

logger = get_module_logger("TaskTracker")


def kill_process_tree(process: Any) -> None:
    """Kill ``process`` and its descendants.

    The build tool forks compiler and linker workers; killing only the direct
    child leaves them running until they finish on their own.
    """
    pid = getattr(process, "pid", None)
    if pid:
        try:
            children = psutil.Process(pid).children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            children = []
        for child in children:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                child.kill()
    with contextlib.suppress(ProcessLookupError):
        process.kill()


@dataclass
class ActiveCommand:
    """The one in-flight external process eligible for cancellation."""
    process: Any
    task_id: Optional[str]
    cancelled: bool = False

    def kill(self) -> None:
        self.cancelled = True
        try:
            kill_process_tree(self.process)
        except OSError as exc:
            logger.warning("Failed to kill pid %s: %s", getattr(self.process, "pid", None), exc)


class TaskTracker:
    """Owns the active task id, the cancel flag and the running tracked commands.

    A build-and-run registers both its boot and its build; ``active_command``
    is the newest of them and ``cancel()`` kills all of them.
    """

    def __init__(self) -> None:
        self.active_task_id: Optional[str] = None
        self.cancel_requested = False
        self._commands: List[ActiveCommand] = []

    def start_task(self) -> str:
        self.cancel_requested = False
        task_id = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"
        if self.active_task_id is not None:
            logger.debug("Task %s supersedes %s", task_id, self.active_task_id)
        self.active_task_id = task_id
        return task_id

    def finish_task(self, task_id: str) -> None:
        if self.active_task_id != task_id:
            return
        self.active_task_id = None
        self.cancel_requested = False

    def is_tracked(self, task_id: Optional[str]) -> bool:
        return task_id is not None and task_id == self.active_task_id

    def is_cancelled(self, task_id: Optional[str]) -> bool:
        """True when ``task_id`` is the active task and a cancel was requested."""
        return self.is_tracked(task_id) and self.cancel_requested

    @property
    def active_command(self) -> Optional[ActiveCommand]:
        """Most recently registered command still running."""
        return self._commands[-1] if self._commands else None

    def register(self, command: ActiveCommand) -> None:
        self._commands.append(command)

    def release(self, command: ActiveCommand) -> None:
        self._commands = [item for item in self._commands if item is not command]

    def cancel(self) -> bool:
        """Request cancellation; returns whether there was anything to cancel."""
        self.cancel_requested = True
        commands = list(self._commands)
        for command in commands:
            logger.info("Cancelling active command for task %s", command.task_id)
            command.kill()
        if commands:
            return True
        return self.active_task_id is not None


__all__ = ["ActiveCommand", "TaskTracker", "kill_process_tree"]
