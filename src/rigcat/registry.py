"""Lookup table from driver id to constructor and connection defaults."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .codec import COMMON_BAUDS
from .drivers import civ
from .drivers.base import RadioDriver
from .drivers.ft857d import REGISTRY_META as FT857D_META
from .drivers.ft857d import Ft857dDriver
from .drivers.ft991a import REGISTRY_META as FT991A_META
from .drivers.ft991a import Ft991aDriver
from .errors import ConfigurationError

DriverFactory = Callable[[Optional[Mapping[str, Any]]], RadioDriver]


@dataclass(frozen=True)
class DriverMeta:
    label: str
    default_baud: int = 9600
    allowed_bauds: Tuple[int, ...] = COMMON_BAUDS
    needs_address: bool = False
    default_address: Optional[str] = None

    @staticmethod
    def from_mapping(data: Mapping[str, Any]) -> "DriverMeta":
        if "label" not in data:
            raise ConfigurationError("driver metadata requires a 'label'")
        return DriverMeta(
            label=str(data["label"]),
            default_baud=int(data.get("default_baud", 9600)),
            allowed_bauds=tuple(int(baud) for baud in data.get("allowed_bauds", COMMON_BAUDS)),
            needs_address=bool(data.get("needs_address", False)),
            default_address=data.get("default_address"),
        )


class DriverRegistry:
    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[DriverFactory, DriverMeta]] = {}

    def register(self, driver_id: str, factory: DriverFactory, meta: Mapping[str, Any] | DriverMeta) -> None:
        if not isinstance(driver_id, str) or not driver_id:
            raise ConfigurationError("driver id must be a non-empty string")
        if not callable(factory):
            raise ConfigurationError(f"driver factory for '{driver_id}' must be callable")
        if not isinstance(meta, DriverMeta):
            meta = DriverMeta.from_mapping(meta)
        self._entries[driver_id] = (factory, meta)

    def create(self, driver_id: str, options: Optional[Mapping[str, Any]] = None) -> RadioDriver:
        factory, _ = self._entry(driver_id)
        return factory(options)

    def meta(self, driver_id: str) -> DriverMeta:
        return self._entry(driver_id)[1]

    def list(self) -> List[Tuple[str, DriverMeta]]:
        return [(driver_id, meta) for driver_id, (_, meta) in self._entries.items()]

    def __contains__(self, driver_id: object) -> bool:
        return driver_id in self._entries

    def _entry(self, driver_id: str) -> Tuple[DriverFactory, DriverMeta]:
        try:
            return self._entries[driver_id]
        except KeyError:
            raise ConfigurationError(f"Unknown driver: {driver_id}") from None


def default_registry() -> DriverRegistry:
    registry = DriverRegistry()
    registry.register("icom.ic7300", civ.create_ic7300, civ.registry_meta(civ.IC7300))
    registry.register("icom.ic9700", civ.create_ic9700, civ.registry_meta(civ.IC9700))
    registry.register("yaesu.ft991a", Ft991aDriver, FT991A_META)
    registry.register("yaesu.ft857d", Ft857dDriver, FT857D_META)
    return registry
