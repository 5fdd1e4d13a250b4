"""
Yaesu FT-857D 5-byte CAT driver.

Every command is four parameter bytes plus an opcode. Replies carry no
framing at all, so the length of the next reply is remembered when the
matching read is sent and consumed in order by :meth:`extract_frames`.
"""
from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional

from ..bands import HF_VHF_UHF_BANDS
from ..codec import bytes_to_hex, interpolate, pack_bcd_be, unpack_bcd_be
from ..errors import ConfigurationError
from ..events import Event, ExtraEvent, FrequencyEvent, MeterEvent, ModeEvent, PttEvent
from .base import DecodeContext, Expectation, Frame, RadioDriver, SerialLineConfig, bands_option

logger = logging.getLogger(__name__)

OP_SET_FREQUENCY = 0x01
OP_READ_FREQ_MODE = 0x03
OP_SET_MODE = 0x07
OP_PTT_ON = 0x08
OP_PTT_OFF = 0x88
OP_READ_RX_STATUS = 0xE7
OP_READ_TX_STATUS = 0xF7

MAX_FREQUENCY_HZ = 999_999_990

# Reply shapes keyed by the opcode of the read that triggers them.
EXPECTATIONS: Dict[int, Expectation] = {
    OP_READ_FREQ_MODE: Expectation("freqmode", 5),
    OP_READ_RX_STATUS: Expectation("rxstatus", 1),
    OP_READ_TX_STATUS: Expectation("txstatus", 1),
}

MODE_CODES: Dict[str, int] = {
    "LSB": 0x00,
    "USB": 0x01,
    "CW": 0x02,
    "CWR": 0x03,
    "AM": 0x04,
    "WFM": 0x06,
    "FM": 0x08,
    "FM-N": 0x88,
    "DIG": 0x0A,
    "PKT": 0x0C,
}
MODE_ALIASES: Dict[str, str] = {"NFM": "FM-N", "CW-R": "CWR"}
MODE_NAMES: Dict[int, str] = {code: name for name, code in MODE_CODES.items()}
MODE_NAMES[0x82] = "CW-N"

SMETER_DBM_POINTS = ((0, -127.0), (9, -73.0), (15, -13.0))


def cmd5(b1: int, b2: int, b3: int, b4: int, op: int) -> bytes:
    return bytes([b1 & 0xFF, b2 & 0xFF, b3 & 0xFF, b4 & 0xFF, op & 0xFF])


class Ft857dDriver(RadioDriver):
    driver_id = "yaesu.ft857d"
    label = "Yaesu FT-857D (CAT 5-byte, 8N2)"
    line_config = SerialLineConfig(bytesize=8, stopbits=2, parity="N")
    inter_command_delay_ms = 25

    def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(options)
        self.bands = bands_option(self.options, HF_VHF_UHF_BANDS)
        self.expectations: Deque[Expectation] = deque()

    def on_command_sent(self, data: bytes) -> None:
        if len(data) != 5:
            return
        expect = EXPECTATIONS.get(data[4])
        if expect is not None:
            self.expectations.append(expect)

    def extract_frames(self, buffer: bytearray) -> List[Frame]:
        frames: List[Frame] = []
        while self.expectations and len(buffer) >= self.expectations[0].length:
            expect = self.expectations.popleft()
            frames.append(Frame(bytes(buffer[: expect.length]), expect))
            del buffer[: expect.length]
        return frames

    def cmd_read_frequency(self) -> bytes:
        return cmd5(0, 0, 0, 0, OP_READ_FREQ_MODE)

    cmd_read_mode = cmd_read_frequency

    def cmd_read_rx_status(self) -> bytes:
        return cmd5(0, 0, 0, 0, OP_READ_RX_STATUS)

    def cmd_read_ptt(self) -> bytes:
        return cmd5(0, 0, 0, 0, OP_READ_TX_STATUS)

    def poll_sequence(self) -> List[bytes]:
        return [self.cmd_read_frequency(), self.cmd_read_rx_status(), self.cmd_read_ptt()]

    def available_modes(self) -> List[str]:
        return list(MODE_CODES)

    def cmd_set_frequency(self, hz: Any) -> bytes:
        value = self._check_frequency(hz)
        if value % 10:
            raise ConfigurationError(f"{self.driver_id}: frequency must be a multiple of 10 Hz, got {hz!r}")
        if value > MAX_FREQUENCY_HZ:
            raise ConfigurationError(f"Frequency out of range: {hz!r}")
        return pack_bcd_be(value // 10, 4) + bytes([OP_SET_FREQUENCY])

    def cmd_set_mode(self, mode: Any) -> bytes:
        key = str(mode).strip().upper()
        code = self._lookup_mode(MODE_ALIASES.get(key, key), MODE_CODES)
        return cmd5(code, 0, 0, 0, OP_SET_MODE)

    def cmd_set_ptt(self, on: Any) -> bytes:
        return cmd5(0, 0, 0, 0, OP_PTT_ON if on else OP_PTT_OFF)

    def _decode(self, data: bytes, expect: Optional[Expectation], ctx: DecodeContext) -> List[Event]:
        if expect is None or len(data) != expect.length:
            logger.debug("Unexpected FT-857D reply %s", bytes_to_hex(data))
            return []
        if expect.kind == "freqmode":
            tens = unpack_bcd_be(data[:4])
            if tens is None:
                return []
            mode = MODE_NAMES.get(data[4], f"0x{data[4]:02X}")
            return [FrequencyEvent(tens * 10), ModeEvent(mode)]
        status = data[0]
        nibble = status & 0x0F
        if expect.kind == "rxstatus":
            return [MeterEvent("smeter", nibble * 17, interpolate(nibble, SMETER_DBM_POINTS), "dBm")]
        if expect.kind == "txstatus":
            return [
                PttEvent(not status & 0x80),
                MeterEvent("po", nibble * 17),
                ExtraEvent({"po_level": nibble, "high_swr": bool(status & 0x40)}),
            ]
        return []

    def format_tx(self, data: bytes) -> str:
        return f"TX_857: {bytes_to_hex(data)}"

    def format_rx(self, data: bytes) -> str:
        return f"RX_857: {bytes_to_hex(data)}"


REGISTRY_META: Dict[str, Any] = {
    "label": Ft857dDriver.label,
    "default_baud": 9600,
    "allowed_bauds": (4800, 9600, 19200, 38400),
}
