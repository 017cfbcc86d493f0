"""Tunables for the orchestrator, loaded from the user config file."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from .config_manager import get_config_manager
from .logging_utils import get_module_logger
from .paths import CONFIG_PATH, DEFAULT_WORK_ROOT

logger = get_module_logger("Settings")

OUTPUT_LIMIT_BYTES = 1024 * 1024


@dataclass(frozen=True)
class SimulatorSettings:
    """Durations are in seconds."""

    device_cache_ttl: float = 0.8
    container_cache_ttl: float = 600.0
    scheme_cache_ttl: float = 600.0
    hint_cache_ttl: float = 600.0
    container_max_depth: int = 3
    scheme_list_timeout: float = 10.0
    build_settings_timeout: float = 10.0
    boot_command_timeout: float = 60.0
    boot_wait_timeout: float = 10.0
    boot_poll_interval: float = 0.5
    poll_interval: float = 15.0
    poll_min_refresh: float = 3.0
    failure_retention: int = 3
    output_limit: int = OUTPUT_LIMIT_BYTES
    build_configuration: str = "Debug"
    work_root: Path = DEFAULT_WORK_ROOT

    def with_overrides(self, **changes) -> "SimulatorSettings":
        return replace(self, **changes)


async def load_settings(config_path: Optional[Path] = None) -> SimulatorSettings:
    """Build settings from ``config_path`` (defaults to the user config)."""
    path = Path(config_path) if config_path else CONFIG_PATH
    manager = get_config_manager()
    config = await manager.read_config_async(path)
    return settings_from_config(config)


def settings_from_config(config: dict) -> SimulatorSettings:
    manager = get_config_manager()
    defaults = SimulatorSettings()

    work_root = manager.get_str(config, "work_root", default="")
    settings = SimulatorSettings(
        device_cache_ttl=manager.get_float(config, "device_cache_ttl", defaults.device_cache_ttl),
        container_cache_ttl=manager.get_float(config, "container_cache_ttl", defaults.container_cache_ttl),
        scheme_cache_ttl=manager.get_float(config, "scheme_cache_ttl", defaults.scheme_cache_ttl),
        hint_cache_ttl=manager.get_float(config, "hint_cache_ttl", defaults.hint_cache_ttl),
        container_max_depth=manager.get_int(config, "container_max_depth", defaults.container_max_depth),
        scheme_list_timeout=manager.get_float(config, "scheme_list_timeout", defaults.scheme_list_timeout),
        build_settings_timeout=manager.get_float(config, "build_settings_timeout", defaults.build_settings_timeout),
        boot_command_timeout=manager.get_float(config, "boot_command_timeout", defaults.boot_command_timeout),
        boot_wait_timeout=manager.get_float(config, "boot_wait_timeout", defaults.boot_wait_timeout),
        boot_poll_interval=manager.get_float(config, "boot_poll_interval", defaults.boot_poll_interval),
        poll_interval=manager.get_float(config, "poll_interval", defaults.poll_interval),
        poll_min_refresh=manager.get_float(config, "poll_min_refresh", defaults.poll_min_refresh),
        failure_retention=max(0, manager.get_int(config, "failure_retention", defaults.failure_retention)),
        output_limit=manager.get_int(config, "output_limit", defaults.output_limit),
        build_configuration=manager.get_str(config, "build_configuration", defaults.build_configuration),
        work_root=Path(work_root).expanduser() if work_root else defaults.work_root,
    )
    logger.debug("Loaded settings: %s", settings)
    return settings


__all__ = ["OUTPUT_LIMIT_BYTES", "SimulatorSettings", "load_settings", "settings_from_config"]
