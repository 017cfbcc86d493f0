"""Build/install/launch pipeline and failure quarantine."""

from .build_run import BuildRunPipeline, StageTimer, find_built_app
from .quarantine import prune_failure_runs, quarantine_run
from .workspace import BUILD_LOG_NAME, ProjectWorkspace, project_slug

__all__ = [
    "BUILD_LOG_NAME",
    "BuildRunPipeline",
    "ProjectWorkspace",
    "StageTimer",
    "find_built_app",
    "project_slug",
    "prune_failure_runs",
    "quarantine_run",
]
