"""Yaesu FT-991A ASCII CAT driver (``;`` terminated commands)."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..bands import HF_VHF_UHF_BANDS
from ..codec import clamp, interpolate
from ..controls import ControlDescriptor, ControlKind
from ..errors import ConfigurationError
from ..events import Event, FrequencyEvent, MeterEvent, ModeEvent, PttEvent
from .base import DecodeContext, Expectation, Frame, RadioDriver, as_int, as_number, bands_option

logger = logging.getLogger(__name__)

DELIMITER = 0x3B
MAX_FREQUENCY_HZ = 999_999_999

DEFAULT_SWR_POINTS: Tuple[Tuple[float, float], ...] = ((0, 1.0), (65, 1.7), (255, 3.75))
DEFAULT_VOLT_POINTS: Tuple[Tuple[float, float], ...] = ((176, 12.9), (186, 13.7))
DEFAULT_AMPS_PER_RAW = 0.1

MODE_CODES: Dict[str, str] = {
    "LSB": "1",
    "USB": "2",
    "CW-U": "3",
    "FM": "4",
    "AM": "5",
    "RTTY-LSB": "6",
    "CW-L": "7",
    "DATA-LSB": "8",
    "RTTY-USB": "9",
    "DATA-FM": "A",
    "FM-N": "B",
    "DATA-USB": "C",
    "AM-N": "D",
    "C4FM": "E",
}
MODE_ALIASES: Dict[str, str] = {"CW": "3", "RTTY": "6"}
MODE_NAMES = {code: name for name, code in MODE_CODES.items()}

READS: Dict[str, bytes] = {
    "ptt": b"TX;",
    "frequency": b"FA;",
    "mode": b"MD0;",
    "power": b"PC;",
    "smeter": b"RM1;",
    "po": b"RM5;",
    "swr": b"RM6;",
    "id": b"RM7;",
    "vd": b"RM8;",
}


def max_watts(hz: Optional[int]) -> float:
    """Rated output: 50 W on 2 m and 70 cm, 100 W elsewhere."""
    if hz is not None and (144_000_000 <= hz <= 148_000_000 or 420_000_000 <= hz <= 450_000_000):
        return 50.0
    return 100.0


def _points_option(options: Mapping[str, Any], key: str, default: Sequence[Tuple[float, float]]):
    raw = options.get(key)
    if raw is None:
        return tuple(default)
    try:
        points = tuple((float(x), float(y)) for x, y in raw)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ConfigurationError(f"Bad calibration option {key}: {raw!r}") from exc
    if len(points) < 2:
        raise ConfigurationError(f"Calibration option {key} needs at least two points")
    return points


class Ft991aDriver(RadioDriver):
    driver_id = "yaesu.ft991a"
    label = "Yaesu FT-991A (CAT ASCII)"
    inter_command_delay_ms = 20
    follow_ups = {
        **RadioDriver.follow_ups,
        "set_power": ("read_power",),
    }

    def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(options)
        self.bands = bands_option(self.options, HF_VHF_UHF_BANDS)
        self.swr_points = _points_option(self.options, "swr_points", DEFAULT_SWR_POINTS)
        self.volt_points = _points_option(self.options, "volt_points", DEFAULT_VOLT_POINTS)
        self.amps_per_raw = as_number(self.options.get("amps_per_raw", DEFAULT_AMPS_PER_RAW), "amps_per_raw")

    def extract_frames(self, buffer: bytearray) -> List[Frame]:
        frames: List[Frame] = []
        while True:
            end = buffer.find(DELIMITER)
            if end < 0:
                break
            frames.append(Frame(bytes(buffer[: end + 1])))
            del buffer[: end + 1]
        return frames

    def supports(self, kind: str) -> bool:
        if kind.startswith("read_"):
            return kind[5:] in READS
        return super().supports(kind)

    def build_command(self, kind: str, *args: Any) -> List[bytes]:
        if kind.startswith("read_"):
            command = READS.get(kind[5:])
            if command is None:
                raise ConfigurationError(f"{self.driver_id}: unsupported command '{kind}'")
            return [command]
        return super().build_command(kind, *args)

    def poll_sequence(self) -> List[bytes]:
        return list(READS.values())

    def available_modes(self) -> List[str]:
        return list(MODE_CODES)

    def cmd_set_frequency(self, hz: Any) -> bytes:
        value = self._check_frequency(hz)
        if value > MAX_FREQUENCY_HZ:
            raise ConfigurationError(f"Frequency out of range: {hz!r}")
        return f"FA{value:09d};".encode("ascii")

    def cmd_set_mode(self, mode: Any) -> bytes:
        key = str(mode).strip().upper()
        code = MODE_ALIASES.get(key) or self._lookup_mode(key, MODE_CODES)
        return f"MD0{code};".encode("ascii")

    def cmd_set_ptt(self, on: Any) -> bytes:
        return b"MX1;" if on else b"MX0;"

    def cmd_set_power(self, watts: Any) -> bytes:
        level = clamp(as_int(watts, "power"), 5, 100)
        return f"PC{level:03d};".encode("ascii")

    def _decode(self, data: bytes, expect: Optional[Expectation], ctx: DecodeContext) -> List[Event]:
        text = data.decode("ascii").strip()
        if not text.endswith(";"):
            return []
        core = text[:-1]
        if core == "?":
            logger.debug("Radio rejected the previous command")
            return []
        if core.startswith("FA") and len(core) >= 11 and core[2:11].isdigit():
            return [FrequencyEvent(int(core[2:11]))]
        if core.startswith("MD") and len(core) >= 4:
            name = MODE_NAMES.get(core[3].upper())
            return [ModeEvent(name)] if name else []
        if core.startswith("TX") and len(core) >= 3:
            return [PttEvent(core[2] == "2")]
        if core.startswith("PC") and len(core) >= 5 and core[2:5].isdigit():
            setting = int(core[2:5])
            watts = clamp(float(setting), 0.0, max_watts(ctx.last_freq_hz))
            return [MeterEvent("rfpwr", setting, watts, "W")]
        if core.startswith("RM") and len(core) >= 6 and core[3:6].isdigit():
            return self._decode_meter(core[2], int(core[3:6]), ctx)
        return []

    def _decode_meter(self, meter: str, raw: int, ctx: DecodeContext) -> List[Event]:
        if meter == "1":
            return [MeterEvent("smeter", raw)]
        if meter == "5":
            watts = round(raw / 255 * max_watts(ctx.last_freq_hz), 1)
            return [MeterEvent("po", raw, watts, "W")]
        if meter == "6":
            return [MeterEvent("swr", raw, interpolate(raw, self.swr_points))]
        if meter == "7":
            return [MeterEvent("id", raw, round(raw * self.amps_per_raw, 2), "A")]
        if meter == "8":
            return [MeterEvent("vd", raw, interpolate(raw, self.volt_points), "V")]
        return []

    def controls_schema(self) -> List[ControlDescriptor]:
        controls = super().controls_schema()
        controls.append(
            ControlDescriptor(
                id="power",
                label="RF Power",
                kind=ControlKind.RANGE,
                group="transmit",
                read=lambda state: state.rfpwr.raw,
                apply=self.write_action("set_power"),
                min=5,
                max=100,
                step=1,
            )
        )
        return controls

    def format_tx(self, data: bytes) -> str:
        return f"TX_CAT: {data.decode('ascii', errors='replace')}"

    def format_rx(self, data: bytes) -> str:
        return f"RX_CAT: {data.decode('ascii', errors='replace')}"


REGISTRY_META: Dict[str, Any] = {
    "label": Ft991aDriver.label,
    "default_baud": 38400,
    "allowed_bauds": (4800, 9600, 19200, 38400),
}
