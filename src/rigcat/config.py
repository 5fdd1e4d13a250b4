from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .controller import DEFAULT_POLL_MS, SerialRuntime
from .errors import ConfigurationError


@dataclass
class RigConfig:
    driver: str = "icom.ic7300"
    port: str = "/dev/ttyUSB0"
    baudrate: Optional[int] = None
    poll_interval_ms: int = DEFAULT_POLL_MS
    driver_options: Dict[str, Any] = field(default_factory=dict)
    serial: SerialRuntime = field(default_factory=SerialRuntime)


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a JSON object")
    return data


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> RigConfig:
    """
    Build a :class:`RigConfig` from an optional JSON file plus CLI-style overrides.

    Overrides are dotted ``key=value`` pairs, e.g.:
        ["driver=yaesu.ft857d", "serial.read_timeout_sec=0.2",
         "driver_options.address=96"]
    """
    data: Dict[str, Any] = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    serial_data = merged.get("serial") or {}
    driver_options = merged.get("driver_options") or {}
    if not isinstance(driver_options, dict):
        raise ConfigurationError("driver_options must be an object")
    try:
        return RigConfig(
            driver=str(merged.get("driver", "icom.ic7300")),
            port=str(merged.get("port", "/dev/ttyUSB0")),
            baudrate=int(merged["baudrate"]) if merged.get("baudrate") else None,
            poll_interval_ms=int(merged.get("poll_interval_ms", DEFAULT_POLL_MS)),
            driver_options=dict(driver_options),
            serial=SerialRuntime(
                read_timeout_sec=float(serial_data.get("read_timeout_sec", 0.1)),
                chunk_size=int(serial_data.get("chunk_size", 256)),
                join_timeout_sec=float(serial_data.get("join_timeout_sec", 1.0)),
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration value: {exc}") from exc


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ConfigurationError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ConfigurationError("Override key may not be empty")
    return key, _coerce_value(raw_value.strip())


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if (raw.startswith("[") and raw.endswith("]")) or (raw.startswith("{") and raw.endswith("}")):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Bad JSON value in override: {raw!r}") from exc
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
