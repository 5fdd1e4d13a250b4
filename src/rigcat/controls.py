"""Control descriptors that let a front end build a panel for any driver."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .bands import Band
from .errors import ConfigurationError
from .events import RadioState

CONTROL_GROUPS = ("primary", "audio", "transmit", "filter", "offset", "advanced")


class ControlKind(str, enum.Enum):
    RANGE = "range"
    TOGGLE = "toggle"
    BUTTONS = "buttons"
    SELECT = "select"


@dataclass(frozen=True)
class ControlOption:
    label: str
    value: Any


@dataclass(frozen=True)
class ControlDescriptor:
    id: str
    label: str
    kind: ControlKind
    group: str
    read: Callable[[RadioState], Any]
    apply: Callable[[Any], List[bytes]]
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    options: Tuple[ControlOption, ...] = ()
    cols: Optional[int] = None

    def __post_init__(self) -> None:
        if self.group not in CONTROL_GROUPS:
            raise ConfigurationError(f"Control '{self.id}' has unknown group '{self.group}', expected one of {CONTROL_GROUPS}")


def extra_reader(key: str) -> Callable[[RadioState], Any]:
    return lambda state: state.extras.get(key)


def band_control(bands: Sequence[Band], set_frequency: Callable[[int], List[bytes]]) -> ControlDescriptor:
    by_name = {band.name: band for band in bands}

    def read(state: RadioState) -> Optional[str]:
        if state.freq_hz is None:
            return None
        for band in bands:
            if band.contains(state.freq_hz):
                return band.name
        return None

    def apply(value: Any) -> List[bytes]:
        band = by_name.get(str(value))
        if band is None:
            raise ConfigurationError(f"Unknown band: {value}")
        return set_frequency(band.mid_hz)

    return ControlDescriptor(
        id="band",
        label="Band",
        kind=ControlKind.BUTTONS,
        group="primary",
        read=read,
        apply=apply,
        options=tuple(ControlOption(band.name, band.name) for band in bands),
        cols=4,
    )


def mode_control(modes: Sequence[str], set_mode: Callable[[str], List[bytes]]) -> ControlDescriptor:
    return ControlDescriptor(
        id="mode",
        label="Mode",
        kind=ControlKind.SELECT,
        group="primary",
        read=lambda state: state.mode,
        apply=lambda value: set_mode(str(value)),
        options=tuple(ControlOption(mode, mode) for mode in modes),
    )


def ptt_control(set_ptt: Callable[[bool], List[bytes]]) -> ControlDescriptor:
    return ControlDescriptor(
        id="ptt",
        label="PTT",
        kind=ControlKind.TOGGLE,
        group="transmit",
        read=lambda state: state.ptt,
        apply=lambda value: set_ptt(bool(value)),
    )
