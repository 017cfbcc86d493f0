"""Command-line entry point: runs one facade operation and prints its result as JSON."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Optional

from simdeploy.core.config_manager import get_config_manager
from simdeploy.core.logging_config import configure_logging
from simdeploy.core.logging_utils import get_module_logger
from simdeploy.core.paths import CONFIG_PATH, MAIN_LOG_FILE, ensure_directories
from simdeploy.core.service import SimulatorService
from simdeploy.core.settings import load_settings

logger = get_module_logger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments with config file defaults."""
    config_manager = get_config_manager()
    config = config_manager.read_config(CONFIG_PATH)

    default_log_level = config_manager.get_str(config, "log_level", default="warning")
    default_console_output = config_manager.get_bool(config, "console_output", default=True)

    parser = argparse.ArgumentParser(
        prog="simdeploy",
        description="Build, install and launch Xcode projects on the iOS Simulator",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        default=default_log_level,
        help="Logging level (default: warning)",
    )
    parser.add_argument(
        "--console",
        dest="console_output",
        action="store_true",
        default=default_console_output,
        help="Also log to stderr",
    )
    parser.add_argument(
        "--no-console",
        dest="console_output",
        action="store_false",
        help="Log to file only",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    devices = commands.add_parser("devices", help="List available simulators")
    devices.add_argument("--booted", action="store_true", help="Only booted simulators")
    devices.add_argument("--force", action="store_true", help="Bypass the inventory cache")

    for name, help_text in (
        ("container", "Find the workspace or project under a folder"),
        ("detect", "Check whether a folder holds an iOS project"),
        ("schemes", "List schemes and the default pick"),
        ("snapshot", "Devices and schemes in one call"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("path", help="Project folder")

    boot = commands.add_parser("boot", help="Boot a simulator and bring it to front")
    boot.add_argument("udid")

    run = commands.add_parser("run", help="Build, install and launch")
    run.add_argument("path", help="Project folder")
    run.add_argument("udid", help="Target simulator UDID")
    run.add_argument("--scheme", default=None, help="Scheme to build (default: heuristic pick)")

    commands.add_parser("doctor", help="Check the Xcode toolchain")

    watch = commands.add_parser("watch", help="Poll the simulator inventory until interrupted")
    watch.add_argument("--count", type=int, default=0, help="Stop after N refreshes (0: forever)")

    return parser.parse_args(argv)


def emit(result: Any) -> bool:
    payload = result.to_dict() if hasattr(result, "to_dict") else result
    print(json.dumps(payload, indent=2, sort_keys=True))
    return bool(payload.get("ok")) if isinstance(payload, dict) else True


async def _watch(service: SimulatorService, count: int) -> bool:
    if not service.start_polling():
        return emit({"ok": False, "stage": "platform", "error": "Polling is not supported here."})
    seen = 0
    last_updated = 0.0
    try:
        while count <= 0 or seen < count:
            await asyncio.sleep(0.5)
            cache = service.simulator_cache
            if cache.last_updated != last_updated and cache.status in ("ready", "error"):
                last_updated = cache.last_updated
                seen += 1
                emit(cache)
    finally:
        await service.stop_polling()
    return True


async def dispatch(service: SimulatorService, args: argparse.Namespace) -> bool:
    command = args.command
    if command == "devices":
        if args.booted:
            return emit(await service.list_booted(force=args.force))
        return emit(await service.list_devices(force=args.force))
    if command == "container":
        return emit(await service.detect_container(args.path))
    if command == "detect":
        return emit(await service.detect_project(args.path))
    if command == "schemes":
        return emit(await service.list_schemes(args.path))
    if command == "snapshot":
        return emit(await service.snapshot(args.path))
    if command == "boot":
        return emit(await service.boot_and_focus(args.udid))
    if command == "run":
        return emit(await service.build_and_run(args.path, args.udid, args.scheme))
    if command == "doctor":
        return emit(await service.check_toolchain())
    if command == "watch":
        return await _watch(service, args.count)
    raise ValueError(f"Unknown command: {command}")


async def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)

    ensure_directories()
    configure_logging(
        level=args.log_level,
        console=args.console_output,
        log_file=MAIN_LOG_FILE,
    )

    settings = await load_settings()
    service = SimulatorService(settings)

    loop = asyncio.get_running_loop()
    interrupted = False

    def _on_interrupt() -> None:
        nonlocal interrupted
        if interrupted:
            raise KeyboardInterrupt
        interrupted = True
        outcome = service.cancel_active_task()
        logger.warning("Interrupt received, cancelling active task (%s)", outcome.to_dict())

    try:
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers not supported on this event loop")

    try:
        ok = await dispatch(service, args)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
    return 0 if ok else 1


def run(argv: Optional[list[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


__all__ = ["dispatch", "emit", "main", "parse_args", "run"]
