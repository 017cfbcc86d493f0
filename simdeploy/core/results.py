"""
Structured outcome objects returned by every public operation.

Each result is a dataclass; ``to_dict()`` produces the plain object handed to
the UI boundary, with ``None`` fields dropped and enums flattened to their
wire strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

CANCELLED_MESSAGE = "Cancelled"
TIMEOUT_MESSAGE = "Command timeout"


class Stage(Enum):
    """Pipeline step (or inventory step) at which an operation failed."""
    PLATFORM = "platform"
    VALIDATION = "validation"
    XCODE = "xcode"
    CONTAINER = "container"
    SCHEMES = "schemes"
    BUILD = "build"
    APP = "app"
    BOOT = "boot"
    BOOTSTATUS = "bootstatus"
    BUNDLE_ID = "bundle-id"
    INSTALL = "install"
    LAUNCH = "launch"
    CANCELLED = "cancelled"
    SIMCTL = "simctl"
    PARSE = "parse"


class ContainerType(Enum):
    WORKSPACE = "workspace"
    PROJECT = "project"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


class ResultMixin:
    """``to_dict`` for result dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        output: Dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            output[item.name] = _plain(value)
        return output


@dataclass(frozen=True)
class Container(ResultMixin):
    """The buildable root: a workspace or a single project bundle directory."""
    type: ContainerType
    path: str

    @property
    def cache_key(self) -> str:
        return f"{self.type.value}:{self.path}"

    @property
    def build_flag(self) -> str:
        return "-workspace" if self.type is ContainerType.WORKSPACE else "-project"


@dataclass
class CommandResult(ResultMixin):
    ok: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    error: Optional[str] = None
    cancelled: bool = False

    @classmethod
    def cancelled_before_spawn(cls) -> "CommandResult":
        return cls(ok=False, error=CANCELLED_MESSAGE, cancelled=True)

    def failure_message(self, fallback: str) -> str:
        """Best human-readable reason: stderr, then the runner error, then ``fallback``."""
        return self.stderr.strip() or self.error or fallback

    @property
    def combined_output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


@dataclass
class FailureDetails(ResultMixin):
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    log_path: Optional[str] = None

    @classmethod
    def from_command(cls, result: CommandResult) -> "FailureDetails":
        return cls(stdout=result.stdout, stderr=result.stderr)


@dataclass
class OperationResult(ResultMixin):
    """Generic ``{ok, error?, stage?}`` outcome."""
    ok: bool
    error: Optional[str] = None
    stage: Optional[Stage] = None
    cancelled: Optional[bool] = None

    @classmethod
    def failure(cls, stage: Stage, error: str) -> "OperationResult":
        return cls(ok=False, error=error, stage=stage)


@dataclass
class DeviceListResult(ResultMixin):
    ok: bool
    devices: List[Any] = field(default_factory=list)
    best_udid: Optional[str] = None
    error: Optional[str] = None
    stage: Optional[Stage] = None


@dataclass
class ContainerResult(ResultMixin):
    ok: bool
    container: Optional[Container] = None
    error: Optional[str] = None
    stage: Optional[Stage] = None


@dataclass
class ProjectDetectResult(ResultMixin):
    ok: bool
    is_ios_project: Optional[bool] = None
    container: Optional[Container] = None
    error: Optional[str] = None
    stage: Optional[Stage] = None


@dataclass
class SchemeListResult(ResultMixin):
    ok: bool
    schemes: List[str] = field(default_factory=list)
    default_scheme: Optional[str] = None
    container: Optional[Container] = None
    error: Optional[str] = None
    stage: Optional[Stage] = None
    details: Optional[FailureDetails] = None


@dataclass
class SnapshotResult(ResultMixin):
    ok: bool
    is_ios_project: Optional[bool] = None
    container: Optional[Container] = None
    devices: Optional[List[Any]] = None
    booted: Optional[List[Any]] = None
    best_udid: Optional[str] = None
    schemes: Optional[List[str]] = None
    default_scheme: Optional[str] = None
    error: Optional[str] = None
    stage: Optional[Stage] = None
    details: Optional[FailureDetails] = None


@dataclass
class PipelineResult(ResultMixin):
    ok: bool
    stage: Optional[Stage] = None
    error: Optional[str] = None
    details: Optional[FailureDetails] = None
    derived_data_path: Optional[str] = None
    scheme: Optional[str] = None
    bundle_id: Optional[str] = None
    app_path: Optional[str] = None

    @classmethod
    def failure(
        cls,
        stage: Stage,
        error: str,
        *,
        details: Optional[FailureDetails] = None,
        scheme: Optional[str] = None,
        derived_data_path: Optional[str] = None,
    ) -> "PipelineResult":
        return cls(
            ok=False,
            stage=stage,
            error=error,
            details=details,
            scheme=scheme,
            derived_data_path=derived_data_path,
        )


__all__ = [
    "CANCELLED_MESSAGE",
    "TIMEOUT_MESSAGE",
    "CommandResult",
    "Container",
    "ContainerResult",
    "ContainerType",
    "DeviceListResult",
    "FailureDetails",
    "OperationResult",
    "PipelineResult",
    "ProjectDetectResult",
    "ResultMixin",
    "SchemeListResult",
    "SnapshotResult",
    "Stage",
]
