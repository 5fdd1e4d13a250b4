from __future__ import annotations

import numpy as np
import pytest

from rigcat.codec import (
    bytes_to_hex,
    clamp,
    decode_level,
    decode_offset16,
    encode_offset16,
    interpolate,
    pack_bcd_be,
    pack_bcd_le,
    parse_hex,
    parse_hex_byte,
    unpack_bcd,
    unpack_bcd_be,
    unpack_bcd_le,
)
from rigcat.errors import ConfigurationError


def test_clamp_limits() -> None:
    assert clamp(5, 0, 10) == 5
    assert clamp(-3, 0, 10) == 0
    assert clamp(12.5, 0, 10) == 10


def test_bcd_layouts() -> None:
    assert pack_bcd_le(14074000, 5) == bytes([0x00, 0x40, 0x07, 0x14, 0x00])
    assert pack_bcd_be(1407400, 4) == bytes([0x01, 0x40, 0x74, 0x00])
    assert unpack_bcd_le(bytes([0x00, 0x40, 0x07, 0x14, 0x00])) == 14074000
    assert unpack_bcd_be(bytes([0x01, 0x40, 0x74, 0x00])) == 1407400
    assert unpack_bcd(0x47) == (7, 4)


def test_bcd_rejects_bad_nibbles_and_overflow() -> None:
    assert unpack_bcd_le(bytes([0x00, 0x4A, 0x07, 0x14, 0x00])) is None
    assert unpack_bcd_be(bytes([0xF1])) is None
    assert unpack_bcd_be(b"") is None
    with pytest.raises(ValueError):
        pack_bcd_le(10_000_000_000, 5)
    with pytest.raises(ValueError):
        pack_bcd_le(-1, 5)


def test_decode_level_prefers_valid_bcd() -> None:
    assert decode_level(bytes([0x02, 0x55])) == 255
    assert decode_level(bytes([0x01, 0x28])) == 128
    # 0x0A is not a decimal digit, so the first byte is taken as the level.
    assert decode_level(bytes([0x0A, 0x00])) == 10
    # Valid digits but above 255.
    assert decode_level(bytes([0x09, 0x99])) == 9
    assert decode_level(bytes([0xC8])) == 200
    assert decode_level(b"") == 0


def test_offset16_clamps_and_round_trips() -> None:
    assert encode_offset16(50000) == (9999).to_bytes(2, "little", signed=True)
    assert encode_offset16(-50000) == (-9999).to_bytes(2, "little", signed=True)
    assert decode_offset16(encode_offset16(-120)) == -120
    assert decode_offset16(b"\x01") is None


def test_interpolate_clamps_to_endpoints() -> None:
    points = [(255, 10.0), (0, 1.0), (48, 1.5), (80, 2.0), (120, 3.0)]
    assert interpolate(-10, points) == 1.0
    assert interpolate(300, points) == 10.0
    assert interpolate(64, points) == pytest.approx(1.75)
    assert interpolate(10, [(0, 1.0)]) is None


def test_interpolate_is_monotonic_for_monotonic_points() -> None:
    points = [(0, -127.0), (120, -73.0), (241, -13.0)]
    xs = np.linspace(-50, 300, 200)
    values = [interpolate(x, points) for x in xs]
    assert all(a <= b for a, b in zip(values, values[1:]))


def test_hex_helpers() -> None:
    assert bytes_to_hex(b"\xfe\xfe\x94") == "FE FE 94"
    assert parse_hex("fe fe 94 e0 03 fd") == bytes([0xFE, 0xFE, 0x94, 0xE0, 0x03, 0xFD])
    assert parse_hex_byte("94") == 0x94
    assert parse_hex_byte("0xA2") == 0xA2
    assert parse_hex_byte(94) == 0x94
    with pytest.raises(ConfigurationError):
        parse_hex_byte("zz")
    with pytest.raises(ConfigurationError):
        parse_hex("abc")
