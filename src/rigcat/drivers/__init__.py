"""
Protocol drivers.

Three wire formats share the :class:`RadioDriver` contract: Icom CI-V
(delimited binary), Yaesu FT-991A (ASCII) and Yaesu FT-857D (fixed 5-byte
frames paired with an expectation queue).
"""

from .base import DecodeContext, Expectation, Frame, RadioDriver, SerialLineConfig
from .civ import IC7300, IC9700, CivDriver, CivModel
from .ft857d import Ft857dDriver
from .ft991a import Ft991aDriver

__all__ = [
    "DecodeContext",
    "Expectation",
    "Frame",
    "RadioDriver",
    "SerialLineConfig",
    "CivDriver",
    "CivModel",
    "IC7300",
    "IC9700",
    "Ft857dDriver",
    "Ft991aDriver",
]
