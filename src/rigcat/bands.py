from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple


@dataclass(frozen=True)
class Band:
    name: str
    min_hz: int
    max_hz: int

    @property
    def mid_hz(self) -> int:
        # Rounded to 1 kHz so every driver can encode it exactly.
        return int(round((self.min_hz + self.max_hz) / 2 / 1000.0)) * 1000

    def contains(self, hz: int) -> bool:
        return self.min_hz <= hz <= self.max_hz


BandTable = Tuple[Band, ...]

HF_BANDS: BandTable = (
    Band("160m", 1_800_000, 2_000_000),
    Band("80m", 3_500_000, 4_000_000),
    Band("60m", 5_330_500, 5_406_500),
    Band("40m", 7_000_000, 7_300_000),
    Band("30m", 10_100_000, 10_150_000),
    Band("20m", 14_000_000, 14_350_000),
    Band("17m", 18_068_000, 18_168_000),
    Band("15m", 21_000_000, 21_450_000),
    Band("12m", 24_890_000, 24_990_000),
    Band("10m", 28_000_000, 29_700_000),
    Band("6m", 50_000_000, 54_000_000),
)

BAND_4M = Band("4m", 70_000_000, 70_500_000)
BAND_2M = Band("2m", 144_000_000, 148_000_000)
BAND_70CM = Band("70cm", 420_000_000, 450_000_000)
BAND_23CM = Band("23cm", 1_240_000_000, 1_300_000_000)

IC7300_BANDS: BandTable = HF_BANDS + (BAND_4M,)
IC9700_BANDS: BandTable = (BAND_2M, BAND_70CM, BAND_23CM)
HF_VHF_UHF_BANDS: BandTable = HF_BANDS + (BAND_2M, BAND_70CM)


def band_for(hz: Optional[int], table: Sequence[Band]) -> Optional[Band]:
    if hz is None:
        return None
    for band in table:
        if band.contains(hz):
            return band
    return None


def band_by_name(name: str, table: Sequence[Band]) -> Optional[Band]:
    key = name.strip().lower()
    for band in table:
        if band.name.lower() == key:
            return band
    return None
