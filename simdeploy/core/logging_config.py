"""Root logging setup for the ``simdeploy`` command line.

Stdout carries the JSON results, so console logging always goes to stderr.
The rotating file under the state directory keeps the full DEBUG-level
command trail only when asked for.
"""

from __future__ import annotations

import contextlib
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 500 * 1024
LOG_FILE_BACKUPS = 2

# asyncio logs every slow callback at DEBUG; subprocess-heavy runs flood it.
NOISY_LOGGERS = ("asyncio",)

_installed: List[logging.Handler] = []


def _level_number(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level '{level}'")
    return number


def _rotating_file(path: Union[str, Path], formatter: logging.Formatter) -> logging.Handler:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    level: Union[int, str] = logging.WARNING,
    *,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Replace the handlers installed by a previous call and set the root level.

    Handlers added by anything else (pytest's capture, for one) are left alone.
    """
    numeric = _level_number(level)
    root = logging.getLogger()

    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        with contextlib.suppress(OSError):
            handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(formatter)
        _installed.append(stream)
    if log_file:
        _installed.append(_rotating_file(log_file, formatter))

    for handler in _installed:
        handler.setLevel(numeric)
        root.addHandler(handler)
    root.setLevel(numeric)

    for name in quiet:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))


__all__ = ["LOG_DATEFMT", "LOG_FORMAT", "configure_logging"]
