"""Byte and number helpers shared by the protocol drivers."""
from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError

COMMON_BAUDS: Tuple[int, ...] = (4800, 9600, 19200, 38400, 57600, 115200)

_HEX_BYTE = re.compile(r"^(?:0x)?([0-9a-f]{1,2})$", re.IGNORECASE)

Point = Tuple[float, float]


def clamp(value, lo, hi):
    if value < lo:
        return lo
    if value > hi:
        return hi
    return value


def bytes_to_hex(data: Iterable[int]) -> str:
    """Upper-case, space separated rendering used in TX/RX traces."""
    return " ".join(f"{byte:02X}" for byte in data)


def to_hex(data: bytes) -> str:
    return bytes(data).hex()


def parse_hex(text: str) -> bytes:
    cleaned = "".join(text.split())
    try:
        return bytes.fromhex(cleaned)
    except ValueError as exc:
        raise ConfigurationError(f"Bad hex payload: {text!r}") from exc


def parse_hex_byte(text: Any) -> int:
    """Parse ``"94"``, ``"0x94"`` or ``94`` (read as hex digits) into a byte value."""
    match = _HEX_BYTE.match(str(text).strip())
    if not match:
        raise ConfigurationError(f"Bad hex byte: {text!r}")
    return int(match.group(1), 16)


def unpack_bcd(byte: int) -> Tuple[int, int]:
    """Split one byte into its (low, high) nibbles."""
    return byte & 0x0F, (byte >> 4) & 0x0F


def pack_bcd_le(value: int, num_bytes: int) -> bytes:
    """
    Pack *value* as BCD, least significant digit pair first.

    Each byte holds two decimal digits with the more significant digit in the
    high nibble. Values that do not fit raise ``ValueError``.
    """
    if value < 0:
        raise ValueError(f"BCD value must be non-negative, got {value}")
    digits = f"{value:0{num_bytes * 2}d}"
    if len(digits) > num_bytes * 2:
        raise ValueError(f"{value} does not fit in {num_bytes} BCD bytes")
    out = bytearray()
    for idx in range(len(digits) - 2, -1, -2):
        out.append((int(digits[idx]) << 4) | int(digits[idx + 1]))
    return bytes(out)


def pack_bcd_be(value: int, num_bytes: int) -> bytes:
    """Pack *value* as BCD, most significant digit pair first."""
    return pack_bcd_le(value, num_bytes)[::-1]


def unpack_bcd_le(data: Sequence[int]) -> Optional[int]:
    """Inverse of :func:`pack_bcd_le`; ``None`` when any nibble exceeds 9."""
    return unpack_bcd_be(bytes(data)[::-1])


def unpack_bcd_be(data: Sequence[int]) -> Optional[int]:
    if not data:
        return None
    value = 0
    for byte in data:
        lo, hi = unpack_bcd(byte)
        if lo > 9 or hi > 9:
            return None
        value = value * 100 + hi * 10 + lo
    return value


def decode_level(data: Sequence[int]) -> int:
    """
    Decode a 0-255 level that firmware may send either as two BCD bytes
    (``02 55`` meaning 255) or as one plain byte.
    """
    if len(data) >= 2:
        hi_lo = [*unpack_bcd(data[0])[::-1], *unpack_bcd(data[1])[::-1]]
        if all(digit <= 9 for digit in hi_lo):
            value = hi_lo[0] * 1000 + hi_lo[1] * 100 + hi_lo[2] * 10 + hi_lo[3]
            if value <= 255:
                return value
    if not data:
        return 0
    return clamp(int(data[0]), 0, 255)


def encode_offset16(value: int, limit: int = 9999) -> bytes:
    """Clamp to +/-limit and encode as little-endian two's complement."""
    clamped = clamp(int(round(value)), -limit, limit)
    return int(clamped).to_bytes(2, "little", signed=True)


def decode_offset16(data: Sequence[int]) -> Optional[int]:
    if len(data) < 2:
        return None
    return int.from_bytes(bytes(data[:2]), "little", signed=True)


def interpolate(x: float, points: Sequence[Point]) -> Optional[float]:
    """
    Piecewise-linear interpolation through calibration points.

    Points are sorted by x; outside the covered range the nearest endpoint's
    y is returned. Fewer than two points gives ``None``.
    """
    if len(points) < 2:
        return None
    ordered = sorted(points, key=lambda point: point[0])
    xs = np.array([point[0] for point in ordered], dtype=float)
    ys = np.array([point[1] for point in ordered], dtype=float)
    return float(np.interp(float(x), xs, ys))
