"""
Simulator device inventory.

Queries ``xcrun simctl list -j devices runtimes``, normalizes the catalog into
``Device`` records, scores them for a default pick and caches the outcome
(successes and failures alike) for a short TTL so bursts of UI polling share
one toolchain call.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Optional

from simdeploy.core.logging_utils import get_module_logger
from simdeploy.core.process_runner import ProcessRunner
from simdeploy.core.results import DeviceListResult, Stage
from simdeploy.core.state import OrchestratorState

from .types import PHONE_FAMILY_KEYWORD, Device, DeviceState, Runtime

logger = get_module_logger("DeviceInventory")

SIMCTL = "xcrun"
LIST_ARGS = ("simctl", "list", "-j", "devices", "runtimes")
_CACHE_KEY = "devices"
_UNAVAILABLE_ERRORS = {"unavailable", "not available"}
_MODEL_NUMBER = re.compile(r"\b(\d{1,2})\b")


def extract_json(stdout: str, stderr: str) -> Optional[Any]:
    """Parse the first-to-last ``{...}`` span of stdout, stderr or both joined.

    The toolchain sometimes interleaves warnings with the JSON payload and
    may print it on either stream.
    """
    combined = "\n".join(part for part in (stdout, stderr) if part)
    for candidate in (stdout, stderr, combined):
        if not candidate:
            continue
        start = candidate.find("{")
        end = candidate.rfind("}")
        if start == -1 or end <= start:
            continue
        try:
            return json.loads(candidate[start:end + 1])
        except ValueError:
            continue
    return None


def parse_model_number(name: str) -> int:
    match = _MODEL_NUMBER.search(name)
    return int(match.group(1)) if match else 0


def _device_available(payload: Dict[str, Any]) -> bool:
    if payload.get("isAvailable") is False:
        return False
    return str(payload.get("availabilityError") or "").lower() not in _UNAVAILABLE_ERRORS


def parse_device_catalog(payload: Any) -> List[Device]:
    """Normalize a ``simctl list`` payload into relevant, available devices.

    Raises:
        ValueError: if ``payload`` is a string that is not valid JSON.
    """
    data = json.loads(payload) if isinstance(payload, str) else payload
    if not isinstance(data, dict):
        raise ValueError("Simulator list is not a JSON object")

    runtimes: Dict[str, Runtime] = {}
    for raw in data.get("runtimes") or []:
        if isinstance(raw, dict) and raw.get("identifier"):
            runtime = Runtime.from_json(raw)
            runtimes[runtime.identifier] = runtime

    buckets = data.get("devices") if isinstance(data.get("devices"), dict) else {}
    devices: List[Device] = []
    for runtime_id, entries in buckets.items():
        runtime = runtimes.get(runtime_id)
        if runtime is None or not runtime.is_relevant or runtime.is_available is False:
            continue
        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict) or not entry.get("udid") or not entry.get("name"):
                continue
            if not _device_available(entry):
                continue
            name = str(entry["name"])
            devices.append(
                Device(
                    name=name,
                    udid=str(entry["udid"]),
                    state=DeviceState.parse(entry.get("state")),
                    is_available=True,
                    runtime=runtime,
                    is_phone_family=name.lower().startswith(PHONE_FAMILY_KEYWORD),
                    model_number=parse_model_number(name),
                )
            )
    return devices


def score_device(
    device: Device,
    *,
    phone_family_bonus: int = 1000,
    booted_bonus: int = 500,
) -> int:
    score = device.model_number
    if device.is_phone_family:
        score += phone_family_bonus
    if device.is_booted:
        score += booted_bonus
    return score


def rank_devices(devices: Iterable[Device]) -> List[Device]:
    """Sort by descending score; equal scores keep catalog order."""
    return sorted(devices, key=score_device, reverse=True)


class DeviceInventory:
    """Cached view over the simulator catalog."""

    def __init__(self, runner: ProcessRunner, state: OrchestratorState) -> None:
        self.runner = runner
        self.state = state

    async def list_devices(self, force: bool = False) -> DeviceListResult:
        if not force:
            cached = self.state.device_cache.lookup(_CACHE_KEY)
            if cached is not None:
                return cached.value
            return await self.state.coalesce("device-list", self._query)
        return await self._query()

    async def list_booted(self, force: bool = False) -> DeviceListResult:
        listing = await self.list_devices(force=force)
        if not listing.ok:
            return DeviceListResult(ok=False, error=listing.error, stage=listing.stage)
        booted = [device for device in listing.devices if device.is_booted]
        return DeviceListResult(ok=True, devices=booted, best_udid=booted[0].udid if booted else None)

    async def _query(self) -> DeviceListResult:
        result = await self.runner.run(SIMCTL, LIST_ARGS)
        if not result.ok:
            stage = Stage.CANCELLED if result.cancelled else Stage.SIMCTL
            logger.warning("Device listing failed (%s): %s", stage.value, result.failure_message(""))
            listing = DeviceListResult(
                ok=False,
                error=result.failure_message("Failed to list simulators."),
                stage=stage,
            )
            return self.state.device_cache.put(_CACHE_KEY, listing)

        try:
            parsed = extract_json(result.stdout, result.stderr)
            devices = rank_devices(parse_device_catalog(parsed if parsed is not None else result.stdout))
        except ValueError as exc:
            logger.warning("Failed to parse simulator list: %s", exc)
            listing = DeviceListResult(
                ok=False,
                error=str(exc) or "Failed to parse simulator list.",
                stage=Stage.PARSE,
            )
            return self.state.device_cache.put(_CACHE_KEY, listing)

        listing = DeviceListResult(
            ok=True,
            devices=devices,
            best_udid=devices[0].udid if devices else None,
        )
        logger.debug("Found %d simulator(s), best=%s", len(devices), listing.best_udid)
        return self.state.device_cache.put(_CACHE_KEY, listing)


__all__ = [
    "DeviceInventory",
    "extract_json",
    "parse_device_catalog",
    "parse_model_number",
    "rank_devices",
    "score_device",
]
