"""
Scheme enumeration and default-scheme selection.

Schemes are read from the container's shared and per-user scheme
directories; only when none exist is ``xcodebuild -list -json`` invoked.
Listings are cached per container (not per root path) because several roots
may resolve to the same container.
"""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from simdeploy.core.devices.inventory import extract_json
from simdeploy.core.logging_utils import get_module_logger
from simdeploy.core.process_runner import ProcessRunner
from simdeploy.core.results import (
    Container,
    ContainerType,
    FailureDetails,
    SchemeListResult,
    Stage,
)
from simdeploy.core.state import OrchestratorState

from .container import (
    ContainerDiscovery,
    normalize_name,
    strip_container_suffix,
    workspace_project_paths,
)

logger = get_module_logger("SchemeResolver")

XCODEBUILD = "xcodebuild"
SCHEME_SUFFIX = ".xcscheme"
NO_CONTAINER_MESSAGE = "No Xcode workspace or project found."

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_UI_TESTS = re.compile(r"\bui\s*tests?\b")
_TESTS = re.compile(r"\btests?\b")
_SAMPLE = re.compile(r"sample|demo|example")


def is_test_scheme(name: str) -> bool:
    """Whole-word ``test(s)``/``ui test(s)`` match after splitting CamelCase words."""
    words = _CAMEL_BOUNDARY.sub(" ", name).lower()
    return bool(_UI_TESTS.search(words) or _TESTS.search(words))


def score_scheme(
    scheme: str,
    hints: Iterable[str],
    *,
    exact_match: int = 120,
    scheme_prefix_of_hint: int = 20,
    hint_prefix_of_scheme: int = 40,
    app_bonus: int = 10,
    sample_penalty: int = 25,
    test_penalty: int = 200,
) -> int:
    normalized = normalize_name(scheme)
    score = 0
    for hint in hints:
        if not hint or not normalized:
            continue
        if normalized == hint:
            score += exact_match
        elif hint.startswith(normalized):
            score += scheme_prefix_of_hint
        elif normalized.startswith(hint):
            score += hint_prefix_of_scheme
    lowered = scheme.lower()
    if "app" in lowered:
        score += app_bonus
    if _SAMPLE.search(lowered):
        score -= sample_penalty
    if is_test_scheme(scheme):
        score -= test_penalty
    return score


def choose_by_score(
    scored: Sequence[Tuple[int, str]],
    *,
    min_score: int = 80,
    min_lead: int = 15,
) -> Optional[str]:
    """Top entry of (score, name) pairs if it is confident enough, else None."""
    if not scored:
        return None
    ranked = sorted(scored, key=lambda item: (-item[0], item[1]))
    top_score, top_name = ranked[0]
    if top_score < min_score:
        return None
    if len(ranked) > 1 and top_score - ranked[1][0] < min_lead:
        return None
    return top_name


def normalize_hints(hints: Iterable[Optional[str]]) -> List[str]:
    seen: List[str] = []
    for hint in hints:
        normalized = normalize_name(strip_container_suffix(hint or ""))
        if normalized and normalized not in seen:
            seen.append(normalized)
    return seen


def pick_default_scheme(
    schemes: Sequence[str],
    hints: Iterable[Optional[str]] = (),
    *,
    min_score: int = 80,
    min_lead: int = 15,
) -> Optional[str]:
    """Default scheme, or None when the choice is ambiguous."""
    if not schemes:
        return None
    if len(schemes) == 1:
        return schemes[0]
    non_test = [scheme for scheme in schemes if not is_test_scheme(scheme)]
    if len(non_test) == 1:
        return non_test[0]
    normalized = normalize_hints(hints)
    scored = [(score_scheme(scheme, normalized), scheme) for scheme in schemes]
    return choose_by_score(scored, min_score=min_score, min_lead=min_lead)


def _scheme_files(directory: str) -> List[str]:
    try:
        with os.scandir(directory) as entries:
            return [
                entry.name[: -len(SCHEME_SUFFIX)]
                for entry in entries
                if entry.name.endswith(SCHEME_SUFFIX) and not entry.is_dir()
            ]
    except OSError:
        return []


def read_schemes_from_filesystem(container_path: str) -> List[str]:
    """Scheme names from ``xcshareddata/xcschemes`` and every ``xcuserdata/*/xcschemes``."""
    schemes = set(_scheme_files(os.path.join(container_path, "xcshareddata", "xcschemes")))
    user_root = os.path.join(container_path, "xcuserdata")
    try:
        with os.scandir(user_root) as entries:
            user_dirs = [entry.path for entry in entries if entry.is_dir()]
    except OSError:
        user_dirs = []
    for user_dir in user_dirs:
        schemes.update(_scheme_files(os.path.join(user_dir, "xcschemes")))
    return sorted(schemes)


def schemes_from_payload(payload: Any) -> List[str]:
    """Workspace-level schemes when present, else project-level ones."""
    if not isinstance(payload, dict):
        return []
    for level in ("workspace", "project"):
        section = payload.get(level)
        schemes = section.get("schemes") if isinstance(section, dict) else None
        if isinstance(schemes, list) and schemes:
            return sorted(str(scheme) for scheme in schemes)
    return []


def payload_names(payload: Any) -> List[str]:
    names: List[str] = []
    if isinstance(payload, dict):
        for level in ("workspace", "project"):
            section = payload.get(level)
            if isinstance(section, dict) and section.get("name"):
                names.append(str(section["name"]))
    return names


@dataclass(frozen=True)
class SchemeListing:
    container: Container
    schemes: Tuple[str, ...]
    hints: Tuple[str, ...]

    @property
    def default_scheme(self) -> Optional[str]:
        return pick_default_scheme(self.schemes, self.hints)


class SchemeResolver:

    def __init__(
        self,
        runner: ProcessRunner,
        discovery: ContainerDiscovery,
        state: OrchestratorState,
        *,
        list_timeout: float = 10.0,
    ) -> None:
        self.runner = runner
        self.discovery = discovery
        self.state = state
        self.list_timeout = list_timeout

    async def list_schemes(
        self,
        root_path: str,
        container: Optional[Container] = None,
    ) -> SchemeListResult:
        resolved = container or await self.discovery.find(root_path)
        if resolved is None:
            return SchemeListResult(ok=False, error=NO_CONTAINER_MESSAGE, stage=Stage.CONTAINER)

        cached = self.state.scheme_cache.lookup(resolved.cache_key)
        if cached is not None:
            return self._to_result(cached.value)

        self.discovery.remember(root_path, resolved)
        root_name = os.path.basename(os.path.normpath(root_path))
        container_name = os.path.basename(os.path.normpath(resolved.path))

        schemes = await asyncio.to_thread(read_schemes_from_filesystem, resolved.path)
        if schemes:
            hints = [container_name, root_name]
            if resolved.type is ContainerType.WORKSPACE:
                projects = await asyncio.to_thread(workspace_project_paths, resolved.path)
                hints.extend(os.path.basename(project) for project in projects)
            logger.debug("Found %d scheme(s) on disk for %s", len(schemes), resolved.path)
            return self._store(SchemeListing(resolved, tuple(schemes), tuple(hints)))

        result = await self.runner.run(
            XCODEBUILD,
            ["-list", "-json", resolved.build_flag, resolved.path],
            cwd=root_path,
            timeout=self.list_timeout,
        )
        if not result.ok:
            return SchemeListResult(
                ok=False,
                error=result.failure_message("Failed to list Xcode schemes."),
                stage=Stage.SCHEMES,
                details=FailureDetails.from_command(result),
            )

        payload = extract_json(result.stdout, result.stderr)
        if payload is None:
            return SchemeListResult(ok=False, error="Unable to parse Xcode schemes.", stage=Stage.SCHEMES)

        schemes = schemes_from_payload(payload)
        if not schemes:
            return SchemeListResult(ok=False, error="No schemes found for this project.", stage=Stage.SCHEMES)

        hints = payload_names(payload) + [container_name, root_name]
        return self._store(SchemeListing(resolved, tuple(schemes), tuple(hints)))

    def _store(self, listing: SchemeListing) -> SchemeListResult:
        self.state.scheme_cache.put(listing.container.cache_key, listing)
        return self._to_result(listing)

    @staticmethod
    def _to_result(listing: SchemeListing) -> SchemeListResult:
        return SchemeListResult(
            ok=True,
            schemes=list(listing.schemes),
            default_scheme=listing.default_scheme,
            container=listing.container,
        )


__all__ = [
    "NO_CONTAINER_MESSAGE",
    "SchemeListing",
    "SchemeResolver",
    "choose_by_score",
    "is_test_scheme",
    "pick_default_scheme",
    "read_schemes_from_filesystem",
    "schemes_from_payload",
    "score_scheme",
]
