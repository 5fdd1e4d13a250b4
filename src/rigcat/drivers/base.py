from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..bands import Band, BandTable
from ..codec import bytes_to_hex
from ..controls import ControlDescriptor, band_control, mode_control, ptt_control
from ..errors import ConfigurationError
from ..events import Event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SerialLineConfig:
    bytesize: int = 8
    stopbits: int = 1
    parity: str = "N"
    rtscts: bool = False


@dataclass(frozen=True)
class Expectation:
    """Shape of the next reply for radios whose frames are not self-delimiting."""

    kind: str
    length: int


@dataclass(frozen=True)
class Frame:
    data: bytes
    expect: Optional[Expectation] = None


@dataclass
class DecodeContext:
    last_freq_hz: Optional[int] = None


FrameLike = Union[Frame, bytes, bytearray, Sequence[int]]


class RadioDriver(ABC):
    """
    Behavioural contract shared by every radio protocol.

    Concrete drivers implement the wire format: frame extraction from the
    receive buffer, decoding into state events and command construction.
    Commands are built by ``cmd_<kind>`` methods and reached through
    :meth:`build_command`.
    """

    driver_id = ""
    label = ""
    line_config = SerialLineConfig()
    inter_command_delay_ms = 0
    bands: BandTable = ()
    follow_ups: Mapping[str, Tuple[str, ...]] = {
        "set_frequency": ("read_frequency",),
        "set_mode": ("read_mode",),
        "set_ptt": ("read_ptt",),
    }

    def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
        self.options: Dict[str, Any] = dict(options or {})
        if "inter_command_delay_ms" in self.options:
            self.inter_command_delay_ms = int(self.options["inter_command_delay_ms"])

    def serial_line_config(self) -> SerialLineConfig:
        return self.line_config

    @abstractmethod
    def extract_frames(self, buffer: bytearray) -> List[Frame]:
        """Consume complete frames from the front of *buffer*, leaving any partial tail."""

    def decode_frame(self, frame: FrameLike, ctx: Optional[DecodeContext] = None) -> List[Event]:
        if isinstance(frame, Frame):
            data, expect = frame.data, frame.expect
        else:
            data, expect = bytes(frame), None
        try:
            return self._decode(data, expect, ctx or DecodeContext())
        except (IndexError, ValueError, UnicodeDecodeError) as exc:
            logger.debug("Ignoring undecodable frame %s (%s)", bytes_to_hex(data), exc)
            return []

    @abstractmethod
    def _decode(self, data: bytes, expect: Optional[Expectation], ctx: DecodeContext) -> List[Event]:
        ...

    @abstractmethod
    def poll_sequence(self) -> List[bytes]:
        ...

    @abstractmethod
    def available_modes(self) -> List[str]:
        ...

    def supports(self, kind: str) -> bool:
        return callable(getattr(self, f"cmd_{kind}", None))

    def build_command(self, kind: str, *args: Any) -> List[bytes]:
        """Return the byte sequences for *kind*; several entries form one logical write."""
        builder: Optional[Callable[..., Any]] = getattr(self, f"cmd_{kind}", None)
        if not callable(builder):
            raise ConfigurationError(f"{self.driver_id}: unsupported command '{kind}'")
        result = builder(*args)
        if isinstance(result, (bytes, bytearray)):
            return [bytes(result)]
        return [bytes(item) for item in result]

    def follow_up(self, kind: str) -> List[bytes]:
        """Reads that confirm the effect of a write of *kind*."""
        commands: List[bytes] = []
        for read_kind in self.follow_ups.get(kind, ()):
            if self.supports(read_kind):
                commands.extend(self.build_command(read_kind))
        return commands

    def write_action(self, kind: str) -> Callable[[Any], List[bytes]]:
        return lambda value: self.build_command(kind, value) + self.follow_up(kind)

    def on_command_sent(self, data: bytes) -> None:
        pass

    def controls_schema(self) -> List[ControlDescriptor]:
        controls: List[ControlDescriptor] = []
        if self.bands:
            controls.append(band_control(self.bands, self.write_action("set_frequency")))
        controls.append(mode_control(self.available_modes(), self.write_action("set_mode")))
        controls.append(ptt_control(self.write_action("set_ptt")))
        return controls

    def format_tx(self, data: bytes) -> str:
        return f"TX: {bytes_to_hex(data)}"

    def format_rx(self, data: bytes) -> str:
        return f"RX: {bytes_to_hex(data)}"

    def _check_frequency(self, hz: Any) -> int:
        value = as_number(hz, "frequency")
        if value <= 0:
            raise ConfigurationError(f"Bad frequency: {hz!r}")
        if value != int(value):
            raise ConfigurationError(f"Frequency must be whole hertz: {hz!r}")
        return int(value)

    def _lookup_mode(self, mode: Any, table: Mapping[str, Any]) -> Any:
        key = str(mode).strip().upper()
        if key not in table:
            raise ConfigurationError(f"{self.driver_id}: unsupported mode '{mode}'")
        return table[key]


def as_number(value: Any, what: str = "value") -> float:
    """Finite float from a command argument; anything else is a configuration error."""
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ConfigurationError(f"Bad {what}: {value!r}") from exc
    if not math.isfinite(number):
        raise ConfigurationError(f"Bad {what}: {value!r}")
    return number


def as_int(value: Any, what: str = "value") -> int:
    return int(round(as_number(value, what)))


def bands_option(options: Mapping[str, Any], default: BandTable) -> BandTable:
    raw = options.get("bands")
    if not raw:
        return default
    try:
        return tuple(Band(str(name), int(lo), int(hi)) for name, lo, hi in raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Bad band table option: {raw!r}") from exc
