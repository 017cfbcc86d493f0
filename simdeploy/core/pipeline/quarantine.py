"""
Failure quarantine: a capped ring of failed-run directories.

A failed run's directory (build log, copied app) is moved under
``failures/<run_id>``; afterwards only the most recently modified entries
are retained.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import List

from simdeploy.core.logging_utils import get_module_logger

logger = get_module_logger("FailureQuarantine")

DEFAULT_RETENTION = 3


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def prune_failure_runs(failures_dir: Path, keep: int = DEFAULT_RETENTION) -> List[Path]:
    """Delete all but the ``keep`` most recently modified entries; returns what was removed."""
    try:
        entries = list(Path(failures_dir).iterdir())
    except OSError:
        return []

    entries.sort(key=_mtime, reverse=True)
    removed: List[Path] = []
    for stale in entries[max(0, keep):]:
        try:
            _remove(stale)
            removed.append(stale)
        except OSError as exc:
            logger.warning("Failed to prune %s: %s", stale, exc)
    if removed:
        logger.debug("Pruned %d old failure run(s) from %s", len(removed), failures_dir)
    return removed


def quarantine_run_sync(run_dir: Path, failures_dir: Path, run_id: str, keep: int) -> Path:
    destination = Path(failures_dir) / run_id
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(run_dir), str(destination))
    except OSError as exc:
        # Report the original location; pruning still runs.
        logger.warning("Failed to quarantine %s: %s", run_dir, exc)
        destination = Path(run_dir)
    prune_failure_runs(failures_dir, keep)
    return destination


async def quarantine_run(
    run_dir: Path,
    failures_dir: Path,
    run_id: str,
    keep: int = DEFAULT_RETENTION,
) -> Path:
    """Move ``run_dir`` into quarantine and prune; returns where the run now lives."""
    return await asyncio.to_thread(quarantine_run_sync, run_dir, failures_dir, run_id, keep)


__all__ = ["DEFAULT_RETENTION", "prune_failure_runs", "quarantine_run", "quarantine_run_sync"]
