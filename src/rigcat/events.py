from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

METER_CHANNELS = ("smeter", "swr", "po", "rfpwr", "vd", "id")


@dataclass(frozen=True)
class FrequencyEvent:
    hz: int


@dataclass(frozen=True)
class ModeEvent:
    mode: str


@dataclass(frozen=True)
class PttEvent:
    is_tx: bool


@dataclass(frozen=True)
class MeterEvent:
    """One meter reading: ``raw`` as sent by the radio plus the calibrated value."""

    channel: str
    raw: int
    value: Optional[float] = None
    unit: Optional[str] = None


@dataclass(frozen=True)
class ExtraEvent:
    data: Mapping[str, Any]


Event = Union[FrequencyEvent, ModeEvent, PttEvent, MeterEvent, ExtraEvent]


def event_kind(event: Event) -> str:
    if isinstance(event, FrequencyEvent):
        return "freq"
    if isinstance(event, ModeEvent):
        return "mode"
    if isinstance(event, PttEvent):
        return "ptt"
    if isinstance(event, MeterEvent):
        return event.channel
    return "extra"


@dataclass(frozen=True)
class Meter:
    raw: Optional[int] = None
    value: Optional[float] = None
    unit: Optional[str] = None


@dataclass(frozen=True)
class RadioState:
    """
    Snapshot of everything decoded so far. ``None`` means not read yet.

    Instances are never mutated; :func:`apply_event` returns a new snapshot so
    observers can keep a reference without locking.
    """

    connected: bool = False
    ptt: Optional[bool] = None
    freq_hz: Optional[int] = None
    mode: Optional[str] = None
    smeter: Meter = field(default_factory=Meter)
    swr: Meter = field(default_factory=Meter)
    po: Meter = field(default_factory=Meter)
    rfpwr: Meter = field(default_factory=Meter)
    vd: Meter = field(default_factory=Meter)
    id: Meter = field(default_factory=Meter)
    extras: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["extras"] = dict(self.extras)
        return data


def apply_event(state: RadioState, event: Event) -> RadioState:
    if isinstance(event, FrequencyEvent):
        return dataclasses.replace(state, freq_hz=event.hz)
    if isinstance(event, ModeEvent):
        return dataclasses.replace(state, mode=event.mode)
    if isinstance(event, PttEvent):
        return dataclasses.replace(state, ptt=event.is_tx)
    if isinstance(event, MeterEvent):
        if event.channel not in METER_CHANNELS:
            return state
        meter = Meter(raw=event.raw, value=event.value, unit=event.unit)
        return dataclasses.replace(state, **{event.channel: meter})
    if isinstance(event, ExtraEvent):
        return dataclasses.replace(state, extras={**state.extras, **event.data})
    return state
