"""
Workspace/project container discovery.

A bounded, iterative directory walk collects every ``.xcworkspace`` and
``.xcodeproj`` bundle below the root (bundles are never descended into),
then a pure scoring function picks the best candidate. Results, including
"nothing found", are cached per root path.
"""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from simdeploy.core.logging_utils import get_module_logger
from simdeploy.core.results import Container, ContainerType
from simdeploy.core.state import OrchestratorState

logger = get_module_logger("ContainerDiscovery")

WORKSPACE_SUFFIX = ".xcworkspace"
PROJECT_SUFFIX = ".xcodeproj"
PLATFORM_FOLDER = "ios"
DEFAULT_MAX_DEPTH = 3

IGNORED_DIRECTORIES = frozenset({
    ".git",
    ".hg",
    ".svn",
    ".idea",
    ".vscode",
    ".gradle",
    ".build",
    ".swiftpm",
    "node_modules",
    "Pods",
    "Carthage",
    "DerivedData",
    "build",
    "dist",
    "vendor",
})

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_name(name: str) -> str:
    """Lowercase alphanumeric form used for name comparisons."""
    return _NON_ALNUM.sub("", name.lower())


def strip_container_suffix(name: str) -> str:
    for suffix in (WORKSPACE_SUFFIX, PROJECT_SUFFIX):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def container_type_for(name: str) -> Optional[ContainerType]:
    if name.endswith(WORKSPACE_SUFFIX):
        return ContainerType.WORKSPACE
    if name.endswith(PROJECT_SUFFIX):
        return ContainerType.PROJECT
    return None


@dataclass(frozen=True)
class Candidate:
    type: ContainerType
    path: str
    depth: int
    # Directory names between the root and the candidate (exclusive).
    segments: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


def score_candidate(
    candidate: Candidate,
    root_name: str,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    workspace_bonus: int = 1000,
    name_match_bonus: int = 200,
    platform_folder_bonus: int = 100,
    depth_weight: int = 10,
) -> int:
    score = 0
    if candidate.type is ContainerType.WORKSPACE:
        score += workspace_bonus
    if normalize_name(strip_container_suffix(candidate.name)) == normalize_name(root_name):
        score += name_match_bonus
    if PLATFORM_FOLDER in candidate.segments:
        score += platform_folder_bonus
    score += (max_depth - candidate.depth) * depth_weight
    return score


def pick_best_candidate(
    candidates: Sequence[Candidate],
    root_name: str,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Optional[Candidate]:
    """Highest score, then shallower depth, then lexicographic path."""
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda c: (-score_candidate(c, root_name, max_depth=max_depth), c.depth, c.path),
    )


def scan_candidates(root: str, max_depth: int = DEFAULT_MAX_DEPTH) -> List[Candidate]:
    """Collect container bundles up to ``max_depth`` below ``root``.

    The root is depth 0. Unreadable directories are skipped.
    """
    candidates: List[Candidate] = []
    stack: List[Tuple[str, int, Tuple[str, ...]]] = [(root, 0, ())]
    while stack:
        directory, depth, segments = stack.pop()
        try:
            with os.scandir(directory) as entries:
                children = [entry for entry in entries if entry.is_dir(follow_symlinks=False)]
        except OSError as exc:
            logger.debug("Skipping unreadable directory %s: %s", directory, exc)
            continue

        child_depth = depth + 1
        for entry in children:
            if entry.name in IGNORED_DIRECTORIES:
                continue
            kind = container_type_for(entry.name)
            if kind is not None:
                candidates.append(Candidate(kind, entry.path, child_depth, segments))
            elif child_depth < max_depth:
                stack.append((entry.path, child_depth, segments + (entry.name,)))
    return candidates


class ContainerDiscovery:

    def __init__(self, state: OrchestratorState, *, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.state = state
        self.max_depth = max_depth

    async def find(self, root_path: str) -> Optional[Container]:
        cached = self.state.container_cache.lookup(root_path)
        if cached is not None:
            return cached.value

        container = await self._discover(root_path)
        self.state.container_cache.put(root_path, container)
        return container

    def remember(self, root_path: str, container: Container) -> None:
        """Record ``container`` for ``root_path`` unless already cached."""
        cached = self.state.container_cache.lookup(root_path)
        if cached is None or cached.value != container:
            self.state.container_cache.put(root_path, container)

    async def _discover(self, root_path: str) -> Optional[Container]:
        root_name = os.path.basename(os.path.normpath(root_path))
        direct = container_type_for(root_name)
        if direct is not None:
            return Container(type=direct, path=root_path)

        candidates = await asyncio.to_thread(scan_candidates, root_path, self.max_depth)
        best = pick_best_candidate(candidates, root_name, max_depth=self.max_depth)
        if best is None:
            logger.info("No Xcode container found under %s", root_path)
            return None
        logger.debug(
            "Picked %s from %d candidate(s) under %s", best.path, len(candidates), root_path
        )
        return Container(type=best.type, path=best.path)


def workspace_project_paths(workspace_path: str) -> List[str]:
    """Project bundles referenced by a workspace's ``contents.xcworkspacedata``."""
    workspace_path = os.path.normpath(workspace_path)
    manifest = Path(workspace_path) / "contents.xcworkspacedata"
    try:
        content = manifest.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return []

    projects: List[str] = []
    for raw in re.findall(r'location="([^"]+)"', content):
        prefix, _, rest = raw.partition(":")
        if not rest:
            continue
        if prefix in ("group", "self"):
            # Relative to the directory holding the workspace bundle.
            resolved = os.path.normpath(os.path.join(os.path.dirname(workspace_path), rest))
        elif prefix == "absolute":
            resolved = rest
        else:
            continue
        if resolved.endswith(PROJECT_SUFFIX) and resolved not in projects:
            projects.append(resolved)
    return projects


__all__ = [
    "Candidate",
    "ContainerDiscovery",
    "IGNORED_DIRECTORIES",
    "PROJECT_SUFFIX",
    "WORKSPACE_SUFFIX",
    "normalize_name",
    "pick_best_candidate",
    "scan_candidates",
    "score_candidate",
    "strip_container_suffix",
    "workspace_project_paths",
]
