"""
Icom CI-V driver.

Frames look like ``FE FE <radio> <controller> <command> [sub] [data] FD``.
Frequencies are ten BCD digits, least significant pair first. One driver
class serves every supported Icom model; the differences live in
:class:`CivModel`.
"""
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..bands import IC7300_BANDS, IC9700_BANDS, BandTable
from ..codec import (
    COMMON_BAUDS,
    bytes_to_hex,
    clamp,
    decode_level,
    decode_offset16,
    encode_offset16,
    interpolate,
    pack_bcd_le,
    parse_hex_byte,
    unpack_bcd_le,
)
from ..controls import ControlDescriptor, ControlKind, ControlOption, extra_reader
from ..errors import ConfigurationError
from ..events import Event, ExtraEvent, FrequencyEvent, MeterEvent, ModeEvent, PttEvent
from .base import DecodeContext, Expectation, Frame, RadioDriver, as_int, as_number, bands_option

logger = logging.getLogger(__name__)

PREAMBLE = b"\xfe\xfe"
END = 0xFD
OK = 0xFB
NG = 0xFA
CONTROLLER_ADDRESS = 0xE0
MAX_FREQUENCY_HZ = 9_999_999_999
OFFSET_LIMIT = 9999

SWR_POINTS = ((0, 1.0), (48, 1.5), (80, 2.0), (120, 3.0), (255, 10.0))
SMETER_DBM_POINTS = ((0, -127.0), (120, -73.0), (241, -13.0))
PO_PERCENT_POINTS = ((0, 0.0), (143, 50.0), (213, 100.0))
VD_POINTS = ((0, 0.0), (13, 10.0), (241, 16.0))
ID_POINTS = ((0, 0.0), (121, 10.0), (241, 20.0))

BASIC_READS: Dict[str, bytes] = {
    "ptt": b"\x1c\x00",
    "frequency": b"\x03",
    "mode": b"\x04",
    "smeter": b"\x15\x02",
    "swr": b"\x15\x12",
    "po": b"\x15\x11",
    "rfpwr": b"\x14\x0a",
    "vd": b"\x15\x15",
    "id": b"\x15\x16",
}

EXTENDED_READS: Dict[str, bytes] = {
    "af": b"\x14\x01",
    "rf_gain": b"\x14\x02",
    "squelch": b"\x14\x03",
    "rit": b"\x14\x07",
    "xit": b"\x14\x08",
    "compression": b"\x14\x0e",
    "atu": b"\x1c\x08",
    "filter_width": b"\x14\x21",
    "nb": b"\x14\x22",
    "auto_notch": b"\x14\x24",
    "manual_notch": b"\x14\x25",
    "preamp": b"\x14\x26",
    "agc": b"\x14\x27",
    "monitor": b"\x14\x28",
    "vfo_lock": b"\x1f\x05",
    "tuning_step": b"\x1f\x10",
    "split_tx": b"\x0f",
    "meter_type": b"\x15\x07",
    "data_mode": b"\x1a\x06",
}

# 0x14 sub-commands carrying a plain 0-255 level, keyed to their extras name.
LEVELS: Dict[int, str] = {
    0x01: "af",
    0x02: "rf_gain",
    0x03: "squelch",
    0x0E: "compression",
    0x21: "filter_width",
    0x22: "nb",
    0x24: "auto_notch",
    0x26: "preamp",
    0x27: "agc",
    0x28: "monitor",
}
OFFSETS: Dict[int, str] = {0x07: "rit_hz", 0x08: "xit_hz", 0x25: "manual_notch"}

HF_MODES: Dict[str, int] = {
    "LSB": 0x00,
    "USB": 0x01,
    "AM": 0x02,
    "CW": 0x03,
    "RTTY": 0x04,
    "FM": 0x05,
    "CW-R": 0x07,
    "RTTY-R": 0x08,
}
DIGITAL_VOICE_MODES: Dict[str, int] = {"DV": 0x17, "DD": 0x22}
DATA_CAPABLE = ("LSB", "USB", "AM", "FM")
MODE_ALIASES = {"CWR": "CW-R", "RTTYR": "RTTY-R"}


@dataclass(frozen=True)
class CivModel:
    driver_id: str
    label: str
    address: int
    default_baud: int
    modes: Mapping[str, int]
    bands: BandTable
    extended: bool = False


IC7300 = CivModel(
    driver_id="icom.ic7300",
    label="Icom IC-7300 (CI-V)",
    address=0x94,
    default_baud=19200,
    modes=HF_MODES,
    bands=IC7300_BANDS,
    extended=True,
)

IC9700 = CivModel(
    driver_id="icom.ic9700",
    label="Icom IC-9700 (CI-V)",
    address=0xA2,
    default_baud=115200,
    modes={**HF_MODES, **DIGITAL_VOICE_MODES},
    bands=IC9700_BANDS,
)


def _extended(method):
    @functools.wraps(method)
    def wrapper(self: "CivDriver", *args: Any):
        if not self.model.extended:
            raise ConfigurationError(f"{self.driver_id}: '{method.__name__[4:]}' is not supported")
        return method(self, *args)

    return wrapper


class CivDriver(RadioDriver):
    """Icom CI-V protocol over a point-to-point or shared bus."""

    def __init__(self, model: CivModel, options: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(options)
        self.model = model
        self.driver_id = model.driver_id
        self.label = model.label
        self.bands = bands_option(self.options, model.bands)
        address = self.options.get("address")
        self.radio_address = model.address if address is None else parse_hex_byte(address)
        controller = self.options.get("controller_address")
        self.controller_address = CONTROLLER_ADDRESS if controller is None else parse_hex_byte(controller)
        self._reads = dict(BASIC_READS)
        if model.extended:
            self._reads.update(EXTENDED_READS)
        self._mode_codes: Dict[str, int] = dict(model.modes)
        self._mode_names = {code: name for name, code in model.modes.items()}
        self.follow_ups = {
            **RadioDriver.follow_ups,
            "set_mode": ("read_mode", "read_data_mode"),
            "set_power": ("read_rfpwr",),
            "set_af": ("read_af",),
            "set_rf_gain": ("read_rf_gain",),
            "set_squelch": ("read_squelch",),
            "set_compression": ("read_compression",),
            "set_filter_width": ("read_filter_width",),
            "set_nb": ("read_nb",),
            "set_monitor": ("read_monitor",),
            "set_rit": ("read_rit",),
            "set_xit": ("read_xit",),
            "set_tuning_offset": ("read_rit",),
            "set_manual_notch": ("read_manual_notch",),
            "set_auto_notch": ("read_auto_notch",),
            "set_preamp": ("read_preamp",),
            "set_agc": ("read_agc",),
            "set_vfo_lock": ("read_vfo_lock",),
            "set_tuning_step": ("read_tuning_step",),
            "set_split_tx_frequency": ("read_split_tx",),
            "set_meter_type": ("read_meter_type",),
            "set_atu": ("read_atu",),
        }

    # Framing

    def frame(self, body: bytes) -> bytes:
        return PREAMBLE + bytes([self.radio_address, self.controller_address]) + bytes(body) + bytes([END])

    def extract_frames(self, buffer: bytearray) -> List[Frame]:
        frames: List[Frame] = []
        while buffer:
            start = buffer.find(PREAMBLE)
            if start < 0:
                # A lone trailing FE may be the first half of the next preamble.
                keep = 1 if buffer[-1] == PREAMBLE[0] else 0
                noise = len(buffer) - keep
                if noise:
                    logger.debug("%d bytes outside any CI-V frame", noise)
                    frames.append(Frame(bytes(buffer[:noise])))
                    del buffer[:noise]
                break
            while start + 2 < len(buffer) and buffer[start + 2] == PREAMBLE[0]:
                start += 1
            if start:
                logger.debug("%d noise bytes before CI-V preamble", start)
                frames.append(Frame(bytes(buffer[:start])))
                del buffer[:start]
                continue
            end = buffer.find(bytes([END]), 2)
            if end < 0:
                break
            restart = buffer.find(PREAMBLE, 2, end)
            if restart >= 0:
                frames.append(Frame(bytes(buffer[:restart])))
                del buffer[:restart]
                continue
            frames.append(Frame(bytes(buffer[: end + 1])))
            del buffer[: end + 1]
        return frames

    # Commands

    def supports(self, kind: str) -> bool:
        if kind.startswith("read_"):
            return kind[5:] in self._reads
        return super().supports(kind)

    def build_command(self, kind: str, *args: Any) -> List[bytes]:
        if kind.startswith("read_"):
            body = self._reads.get(kind[5:])
            if body is None:
                raise ConfigurationError(f"{self.driver_id}: unsupported command '{kind}'")
            return [self.frame(body)]
        return super().build_command(kind, *args)

    def poll_sequence(self) -> List[bytes]:
        return [self.frame(body) for body in self._reads.values()]

    def available_modes(self) -> List[str]:
        modes = list(self._mode_codes)
        modes.extend(f"{name}-D" for name in DATA_CAPABLE if name in self._mode_codes)
        return modes

    def _encode_frequency(self, hz: Any) -> bytes:
        value = self._check_frequency(hz)
        if value > MAX_FREQUENCY_HZ:
            raise ConfigurationError(f"Frequency out of range: {hz!r}")
        return pack_bcd_le(value, 5)

    def cmd_set_frequency(self, hz: Any) -> bytes:
        return self.frame(b"\x05" + self._encode_frequency(hz))

    def cmd_set_mode(self, mode: Any) -> List[bytes]:
        name = str(mode).strip().upper()
        name = MODE_ALIASES.get(name, name)
        data = name.endswith("-D")
        base = name[:-2] if data else name
        if data and base not in DATA_CAPABLE:
            raise ConfigurationError(f"{self.driver_id}: unsupported mode '{mode}'")
        code = self._lookup_mode(base, self._mode_codes)
        commands = [self.frame(bytes([0x06, code]))]
        if base not in DIGITAL_VOICE_MODES:
            flag = 0x01 if data else 0x00
            commands.append(self.frame(bytes([0x1A, 0x06, flag, flag])))
        return commands

    def cmd_set_ptt(self, on: Any) -> bytes:
        return self.frame(bytes([0x1C, 0x00, 0x01 if on else 0x00]))

    def cmd_set_power(self, level: Any) -> bytes:
        return self._level(0x0A, level)

    def _level(self, sub: int, value: Any) -> bytes:
        return self.frame(bytes([0x14, sub, clamp(as_int(value, "level"), 0, 255)]))

    @_extended
    def cmd_set_af(self, level: Any) -> bytes:
        return self._level(0x01, level)

    @_extended
    def cmd_set_rf_gain(self, level: Any) -> bytes:
        return self._level(0x02, level)

    @_extended
    def cmd_set_squelch(self, level: Any) -> bytes:
        return self._level(0x03, level)

    @_extended
    def cmd_set_compression(self, level: Any) -> bytes:
        return self._level(0x0E, level)

    @_extended
    def cmd_set_filter_width(self, level: Any) -> bytes:
        return self._level(0x21, level)

    @_extended
    def cmd_set_nb(self, level: Any) -> bytes:
        return self._level(0x22, level)

    @_extended
    def cmd_set_monitor(self, level: Any) -> bytes:
        return self._level(0x28, level)

    @_extended
    def cmd_set_rit(self, offset_hz: Any) -> bytes:
        return self.frame(b"\x14\x07" + encode_offset16(as_number(offset_hz, "offset"), OFFSET_LIMIT))

    @_extended
    def cmd_set_xit(self, offset_hz: Any) -> bytes:
        return self.frame(b"\x14\x08" + encode_offset16(as_number(offset_hz, "offset"), OFFSET_LIMIT))

    def cmd_set_tuning_offset(self, offset_hz: Any) -> bytes:
        return self.frame(b"\x14\x07" + encode_offset16(as_number(offset_hz, "offset"), OFFSET_LIMIT))

    @_extended
    def cmd_set_manual_notch(self, value: Any) -> bytes:
        notch = clamp(as_int(value, "notch"), 0, OFFSET_LIMIT)
        return self.frame(b"\x14\x25" + notch.to_bytes(2, "little"))

    @_extended
    def cmd_set_auto_notch(self, on: Any) -> bytes:
        return self.frame(bytes([0x14, 0x24, 0x01 if on else 0x00]))

    @_extended
    def cmd_set_preamp(self, value: Any) -> bytes:
        return self.frame(bytes([0x14, 0x26, clamp(as_int(value), 0, 2)]))

    @_extended
    def cmd_set_agc(self, value: Any) -> bytes:
        return self.frame(bytes([0x14, 0x27, clamp(as_int(value), 1, 3)]))

    @_extended
    def cmd_set_vfo_lock(self, on: Any) -> bytes:
        return self.frame(bytes([0x1F, 0x05, 0x01 if on else 0x00]))

    @_extended
    def cmd_set_tuning_step(self, value: Any) -> bytes:
        return self.frame(bytes([0x1F, 0x10, clamp(as_int(value), 0, 3)]))

    @_extended
    def cmd_set_split_tx_frequency(self, hz: Any) -> bytes:
        return self.frame(b"\x0f" + self._encode_frequency(hz))

    @_extended
    def cmd_set_meter_type(self, value: Any) -> bytes:
        return self.frame(bytes([0x15, 0x07, clamp(as_int(value), 0, 2)]))

    @_extended
    def cmd_set_atu(self, on: Any) -> bytes:
        return self.frame(bytes([0x1C, 0x08, 0x01 if on else 0x00]))

    @_extended
    def cmd_tune_atu(self, _value: Any = None) -> bytes:
        return self.frame(bytes([0x1C, 0x08, 0x02]))

    # Decoding

    def _decode(self, data: bytes, expect: Optional[Expectation], ctx: DecodeContext) -> List[Event]:
        if len(data) < 6 or data[:2] != PREAMBLE or data[-1] != END:
            return []
        body = data[4:-1]
        if len(body) == 1 and body[0] in (OK, NG):
            return []
        cmd, rest = body[0], body[1:]
        if cmd in (0x00, 0x03, 0x05):
            # 0x00 is a transceive broadcast, 0x05 an echo of our own set.
            hz = unpack_bcd_le(rest[:5]) if len(rest) >= 5 else None
            return [FrequencyEvent(hz)] if hz is not None else []
        if cmd == 0x0F:
            hz = unpack_bcd_le(rest[:5]) if len(rest) >= 5 else None
            return [ExtraEvent({"split_tx_hz": hz})] if hz is not None else []
        if cmd in (0x01, 0x04, 0x06):
            if not rest:
                return []
            return [ModeEvent(self._mode_names.get(rest[0], f"0x{rest[0]:02X}"))]
        if cmd == 0x1C and len(rest) >= 2:
            if rest[0] == 0x00:
                return [PttEvent(rest[1] == 0x01)]
            if rest[0] == 0x08:
                return [ExtraEvent({"atu": rest[1]})]
            return []
        if cmd == 0x15 and len(rest) >= 2:
            return self._decode_meter(rest[0], rest[1:])
        if cmd == 0x14 and len(rest) >= 2:
            return self._decode_level(rest[0], rest[1:])
        if cmd == 0x1F and len(rest) >= 2:
            if rest[0] == 0x05:
                return [ExtraEvent({"vfo_lock": rest[1] == 0x01})]
            if rest[0] == 0x10:
                return [ExtraEvent({"tuning_step": rest[1]})]
            return []
        if cmd == 0x1A and len(rest) >= 2 and rest[0] == 0x06:
            return [ExtraEvent({"data_mode": rest[1] == 0x01})]
        return []

    def _decode_meter(self, sub: int, data: bytes) -> List[Event]:
        if sub == 0x07:
            return [ExtraEvent({"meter_type": data[0]})]
        raw = decode_level(data)
        if sub == 0x02:
            return [MeterEvent("smeter", raw, interpolate(raw, SMETER_DBM_POINTS), "dBm")]
        if sub == 0x11:
            return [MeterEvent("po", raw, interpolate(raw, PO_PERCENT_POINTS), "%")]
        if sub == 0x12:
            return [MeterEvent("swr", raw, interpolate(raw, SWR_POINTS))]
        if sub == 0x15:
            return [MeterEvent("vd", raw, interpolate(raw, VD_POINTS), "V")]
        if sub == 0x16:
            return [MeterEvent("id", raw, interpolate(raw, ID_POINTS), "A")]
        return []

    def _decode_level(self, sub: int, data: bytes) -> List[Event]:
        if sub == 0x0A:
            raw = decode_level(data)
            return [MeterEvent("rfpwr", raw, round(raw / 255 * 100, 1), "%")]
        if sub in OFFSETS:
            offset = decode_offset16(data)
            return [ExtraEvent({OFFSETS[sub]: offset})] if offset is not None else []
        if sub in LEVELS:
            return [ExtraEvent({LEVELS[sub]: decode_level(data)})]
        return []

    # Presentation

    def controls_schema(self) -> List[ControlDescriptor]:
        controls = super().controls_schema()
        controls.append(self._range("power", "RF Power", "transmit", "set_power", 0, 255, reader=_meter_raw("rfpwr")))
        if not self.model.extended:
            return controls
        controls.extend(
            [
                self._range("af", "AF Gain", "audio", "set_af", 0, 255),
                self._range("rf_gain", "RF Gain", "audio", "set_rf_gain", 0, 255),
                self._range("squelch", "Squelch", "audio", "set_squelch", 0, 255),
                self._range("monitor", "Monitor", "audio", "set_monitor", 0, 255),
                self._range("compression", "Compression", "transmit", "set_compression", 0, 255),
                ControlDescriptor(
                    id="tune",
                    label="ATU Tune",
                    kind=ControlKind.BUTTONS,
                    group="transmit",
                    read=extra_reader("atu"),
                    apply=self.write_action("tune_atu"),
                    options=(ControlOption("Tune", True),),
                    cols=1,
                ),
                self._range("filter_width", "Filter Width", "filter", "set_filter_width", 0, 255),
                self._range("nb", "Noise Blanker", "filter", "set_nb", 0, 255),
                self._toggle("auto_notch", "Auto Notch", "filter", "set_auto_notch"),
                self._range("manual_notch", "Manual Notch", "filter", "set_manual_notch", 0, OFFSET_LIMIT, step=10),
                self._range("rit_hz", "RIT", "offset", "set_rit", -OFFSET_LIMIT, OFFSET_LIMIT, step=10),
                self._range("xit_hz", "XIT", "offset", "set_xit", -OFFSET_LIMIT, OFFSET_LIMIT, step=10),
                self._buttons("preamp", "Preamp", "set_preamp", (("OFF", 0), ("P1", 1), ("P2", 2))),
                self._buttons("agc", "AGC", "set_agc", (("FAST", 1), ("MID", 2), ("SLOW", 3))),
                self._buttons(
                    "tuning_step", "Tuning Step", "set_tuning_step", (("OFF", 0), ("1k", 1), ("5k", 2), ("9k", 3))
                ),
                self._toggle("vfo_lock", "VFO Lock", "advanced", "set_vfo_lock"),
            ]
        )
        return controls

    def _range(self, control_id, label, group, kind, lo, hi, step=1, reader=None) -> ControlDescriptor:
        return ControlDescriptor(
            id=control_id,
            label=label,
            kind=ControlKind.RANGE,
            group=group,
            read=reader or extra_reader(control_id),
            apply=self.write_action(kind),
            min=lo,
            max=hi,
            step=step,
        )

    def _toggle(self, control_id, label, group, kind) -> ControlDescriptor:
        return ControlDescriptor(
            id=control_id,
            label=label,
            kind=ControlKind.TOGGLE,
            group=group,
            read=extra_reader(control_id),
            apply=self.write_action(kind),
        )

    def _buttons(self, control_id, label, kind, options: Tuple[Tuple[str, int], ...]) -> ControlDescriptor:
        return ControlDescriptor(
            id=control_id,
            label=label,
            kind=ControlKind.BUTTONS,
            group="advanced",
            read=extra_reader(control_id),
            apply=self.write_action(kind),
            options=tuple(ControlOption(text, value) for text, value in options),
            cols=len(options),
        )

    def format_tx(self, data: bytes) -> str:
        return f"TX_CIV: {bytes_to_hex(data)}"

    def format_rx(self, data: bytes) -> str:
        return f"RX_CIV: {bytes_to_hex(data)}"


def _meter_raw(channel: str):
    return lambda state: getattr(state, channel).raw


def create_ic7300(options: Optional[Mapping[str, Any]] = None) -> CivDriver:
    return CivDriver(IC7300, options)


def create_ic9700(options: Optional[Mapping[str, Any]] = None) -> CivDriver:
    return CivDriver(IC9700, options)


def registry_meta(model: CivModel) -> Dict[str, Any]:
    return {
        "label": model.label,
        "default_baud": model.default_baud,
        "allowed_bauds": COMMON_BAUDS,
        "needs_address": True,
        "default_address": f"{model.address:02X}",
    }
