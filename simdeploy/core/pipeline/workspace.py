"""On-disk layout of a project's build artifacts."""

from __future__ import annotations

import hashlib
import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path

_SLUG_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]+")

BUILD_LOG_NAME = "build.log"


def project_slug(project_path: str) -> str:
    """Folder name of the project made filesystem-safe, plus a short path hash."""
    name = os.path.basename(os.path.normpath(project_path))
    slug = _SLUG_UNSAFE.sub("-", name).strip("-") or "project"
    digest = hashlib.sha1(project_path.encode("utf-8")).hexdigest()[:8]
    return f"{slug}-{digest}"


def new_run_id() -> str:
    return f"{time.strftime('%Y%m%d-%H%M%S')}-{secrets.token_hex(3)}"


@dataclass(frozen=True)
class ProjectWorkspace:
    """``<work_root>/<slug>/`` with ``derived-data``, ``runs`` and ``failures``."""

    base_dir: Path

    @classmethod
    def for_project(cls, work_root: Path, project_path: str) -> "ProjectWorkspace":
        return cls(base_dir=Path(work_root) / project_slug(project_path))

    @property
    def derived_data_dir(self) -> Path:
        return self.base_dir / "derived-data"

    @property
    def runs_dir(self) -> Path:
        return self.base_dir / "runs"

    @property
    def failures_dir(self) -> Path:
        return self.base_dir / "failures"

    def run_dir(self, run_id: str) -> Path:
        return self.runs_dir / run_id


__all__ = ["BUILD_LOG_NAME", "ProjectWorkspace", "new_run_id", "project_slug"]
