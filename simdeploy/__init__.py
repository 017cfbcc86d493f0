"""iOS Simulator build-and-deploy orchestrator."""

from __future__ import annotations

from importlib import metadata
from typing import Optional, Sequence

from .app.cli import main
from .app.cli import run as _run_cli

try:
    __version__ = metadata.version("simdeploy")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.0.0"


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Convenience wrapper that runs the async CLI entry point."""
    return _run_cli(list(argv) if argv is not None else None)


__all__ = ["__version__", "main", "run"]
