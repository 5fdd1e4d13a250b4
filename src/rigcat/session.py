"""
Session recording and offline replay.

A session file is JSON::

    {"meta": {"driver_id": "icom.ic7300", "baudrate": 19200, ...},
     "frames": [{"dir": "out", "t": 0, "data": "fefe94e003fd"}, ...]}

``t`` is milliseconds since the recording started. Outbound records are
replayed through ``on_command_sent`` so drivers with an expectation queue
frame the inbound bytes the same way they did live.
"""
from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .codec import parse_hex, to_hex
from .drivers.base import DecodeContext
from .errors import ConfigurationError
from .events import Event, ExtraEvent, FrequencyEvent, event_kind
from .registry import DriverRegistry, default_registry

logger = logging.getLogger(__name__)

DIRECTIONS = ("in", "out")
EXPECTED_KINDS = ("freq", "mode", "ptt", "smeter", "swr", "po")


@dataclass
class SessionRecord:
    direction: str
    t_ms: float
    data: bytes

    def to_json(self) -> Dict[str, Any]:
        return {"dir": self.direction, "t": round(self.t_ms, 1), "data": to_hex(self.data)}


@dataclass
class Session:
    driver_id: str
    baudrate: Optional[int] = None
    port: Optional[str] = None
    started: Optional[str] = None
    ended: Optional[str] = None
    notes: str = ""
    records: List[SessionRecord] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "meta": {
                "driver_id": self.driver_id,
                "port": self.port,
                "baudrate": self.baudrate,
                "started": self.started,
                "ended": self.ended,
                "notes": self.notes,
            },
            "frames": [record.to_json() for record in self.records],
        }

    def save(self, path: Path | str) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as fh:
            json.dump(self.to_json(), fh, indent=2)
        return target


def load_session(path: Path | str) -> Session:
    with Path(path).open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    meta = data.get("meta") or {}
    driver_id = meta.get("driver_id") or meta.get("driverId")
    if not driver_id:
        raise ConfigurationError(f"{path}: session meta is missing driver_id")
    records: List[SessionRecord] = []
    for index, item in enumerate(data.get("frames") or []):
        direction = item.get("dir")
        if direction not in DIRECTIONS:
            raise ConfigurationError(f"{path}: frame {index} has bad direction {direction!r}")
        records.append(SessionRecord(direction, float(item.get("t", 0.0)), parse_hex(item.get("data", ""))))
    baudrate = meta.get("baudrate", meta.get("baudRate"))
    return Session(
        driver_id=str(driver_id),
        baudrate=int(baudrate) if baudrate else None,
        port=meta.get("port"),
        started=meta.get("started"),
        ended=meta.get("ended"),
        notes=str(meta.get("notes") or ""),
        records=records,
    )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SessionRecorder:
    """Controller tap collecting every byte written and read."""

    def __init__(self, driver_id: str, baudrate: Optional[int] = None, port: Optional[str] = None, notes: str = ""):
        self.session = Session(driver_id=driver_id, baudrate=baudrate, port=port, notes=notes, started=_now_iso())
        self._origin: Optional[float] = None
        self._lock = threading.Lock()

    def __call__(self, direction: str, stamp: float, data: bytes) -> None:
        with self._lock:
            if self._origin is None:
                self._origin = stamp
            self.session.records.append(SessionRecord(direction, (stamp - self._origin) * 1000.0, bytes(data)))

    def finish(self) -> Session:
        self.session.ended = _now_iso()
        return self.session

    def save(self, path: Path | str) -> Path:
        return self.finish().save(path)


@dataclass
class ReplayReport:
    driver_id: str
    frames_in: int = 0
    frames_out: int = 0
    decoded_frames: int = 0
    undecoded_frames: int = 0
    events: List[Event] = field(default_factory=list)
    counts: Counter = field(default_factory=Counter)
    leftover: bytes = b""

    @property
    def missing(self) -> List[str]:
        return [kind for kind in EXPECTED_KINDS if not self.counts.get(kind)]

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for index, event in enumerate(self.events):
            row: Dict[str, Any] = {"index": index, "kind": event_kind(event)}
            if isinstance(event, ExtraEvent):
                row["data"] = json.dumps(dict(event.data), sort_keys=True, default=str)
            else:
                row.update({key: value for key, value in asdict(event).items() if key != "channel"})
            rows.append(row)
        return pd.DataFrame(rows)

    def summary(self) -> str:
        lines = [
            f"driver: {self.driver_id}",
            f"frames in/out: {self.frames_in}/{self.frames_out}",
            f"decoded frames: {self.decoded_frames} (ignored {self.undecoded_frames})",
        ]
        for kind, count in sorted(self.counts.items()):
            lines.append(f"  {kind}: {count}")
        if self.missing:
            lines.append(f"never seen: {', '.join(self.missing)}")
        if self.leftover:
            lines.append(f"unframed tail: {len(self.leftover)} bytes")
        return "\n".join(lines)


def replay_session(
    session: Session,
    registry: Optional[DriverRegistry] = None,
    options: Optional[Dict[str, Any]] = None,
) -> ReplayReport:
    """Feed a recorded session through a fresh driver and tally what it decodes."""
    registry = registry or default_registry()
    driver = registry.create(session.driver_id, options)
    report = ReplayReport(driver_id=session.driver_id)
    buffer = bytearray()
    ctx = DecodeContext()
    for record in session.records:
        if record.direction == "out":
            report.frames_out += 1
            driver.on_command_sent(record.data)
            continue
        report.frames_in += 1
        buffer.extend(record.data)
        for frame in driver.extract_frames(buffer):
            events = driver.decode_frame(frame, ctx)
            if not events:
                report.undecoded_frames += 1
                continue
            report.decoded_frames += 1
            for event in events:
                if isinstance(event, FrequencyEvent):
                    ctx.last_freq_hz = event.hz
                report.counts[event_kind(event)] += 1
                report.events.append(event)
    report.leftover = bytes(buffer)
    logger.info(
        "Replayed %d inbound / %d outbound records: %d frames decoded",
        report.frames_in,
        report.frames_out,
        report.decoded_frames,
    )
    return report

