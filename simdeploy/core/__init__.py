"""Core orchestrator: process runner, caches, devices, Xcode and pipeline."""

from .results import (
    CommandResult,
    Container,
    ContainerType,
    OperationResult,
    PipelineResult,
    Stage,
)
from .service import SimulatorService
from .settings import SimulatorSettings, load_settings
from .state import OrchestratorState

__all__ = [
    "CommandResult",
    "Container",
    "ContainerType",
    "OperationResult",
    "OrchestratorState",
    "PipelineResult",
    "SimulatorService",
    "SimulatorSettings",
    "Stage",
    "load_settings",
]
