"""
Connection/session controller.

One :class:`RadioController` owns one serial port and one driver instance.
A receive thread feeds bytes through the driver and folds decoded events into
an immutable :class:`~rigcat.events.RadioState`; a poll thread issues the
driver's read sequence. Every write goes through :meth:`RadioController.send`
under a single lock.
"""
from __future__ import annotations

import contextlib
import enum
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

import serial

from .bands import Band, band_for
from .codec import clamp, parse_hex
from .controls import ControlDescriptor
from .drivers.base import DecodeContext, RadioDriver, as_number
from .errors import ConfigurationError, NotConnectedError, RigError, TransportError
from .events import FrequencyEvent, RadioState, apply_event
from .registry import DriverRegistry, default_registry

logger = logging.getLogger(__name__)

POLL_MIN_MS = 20
POLL_MAX_MS = 10_000
DEFAULT_POLL_MS = 250
MAX_COMMAND_DELAY_MS = 250

EVENTS = ("update", "log", "connected", "disconnected", "error")

Listener = Callable[..., None]
Tap = Callable[[str, float, bytes], None]


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    OPENING = "opening"
    CONNECTED = "connected"


@dataclass
class SerialRuntime:
    read_timeout_sec: float = 0.1
    chunk_size: int = 256
    join_timeout_sec: float = 1.0


class ReceiveThread(threading.Thread):
    """Reads whatever the port delivers and hands it to the controller."""

    def __init__(self, controller: "RadioController", handle: Any, chunk_size: int) -> None:
        super().__init__(daemon=True, name="rigcat-rx")
        self._controller = controller
        self._handle = handle
        self._chunk_size = max(chunk_size, 1)
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                chunk = self._read()
            except (serial.SerialException, OSError, TypeError, AttributeError) as exc:
                # pyserial raises TypeError/AttributeError when the port is closed under a read.
                if not self._stop_event.is_set():
                    self._controller._on_transport_failure(exc, self._handle)
                break
            if chunk and not self._stop_event.is_set():
                self._controller._on_bytes(chunk)

    def stop(self) -> None:
        self._stop_event.set()
        cancel = getattr(self._handle, "cancel_read", None)
        if callable(cancel):
            try:
                cancel()
            except (serial.SerialException, OSError) as exc:
                logger.debug("cancel_read failed: %s", exc)

    def _read(self) -> bytes:
        chunk = self._handle.read(1)
        if not chunk:
            return b""
        waiting = getattr(self._handle, "in_waiting", 0) or 0
        if waiting:
            chunk += self._handle.read(min(waiting, self._chunk_size))
        return bytes(chunk)


class RadioController:
    """Single owner of a radio connection: receive loop, write path and poll loop."""

    def __init__(
        self,
        registry: Optional[DriverRegistry] = None,
        runtime: Optional[SerialRuntime] = None,
    ) -> None:
        self.registry = registry or default_registry()
        self.runtime = runtime or SerialRuntime()
        self._listeners: Dict[str, List[Listener]] = {name: [] for name in EVENTS}
        self._taps: List[Tap] = []
        self._conn_lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._unit_lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._poll_lock = threading.Lock()
        self._conn_state = ConnectionState.DISCONNECTED
        self._driver: Optional[RadioDriver] = None
        self._driver_id: Optional[str] = None
        self._handle: Any = None
        self._reader: Optional[ReceiveThread] = None
        self._controls: List[ControlDescriptor] = []
        self._rx_buffer = bytearray()
        self._ctx = DecodeContext()
        self._state = RadioState()
        self._polling = False
        self._poll_generation = 0
        self._resume_after_write = False
        self._poll_interval_ms = DEFAULT_POLL_MS
        self._poll_wakeup = threading.Event()

    # Observers

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        if event not in self._listeners:
            raise ConfigurationError(f"Unknown event '{event}', expected one of {EVENTS}")
        self._listeners[event].append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        with contextlib.suppress(KeyError, ValueError):
            self._listeners[event].remove(listener)

    def add_tap(self, tap: Tap) -> None:
        """Register a side observer for every chunk written to or read from the port."""
        self._taps.append(tap)

    def remove_tap(self, tap: Tap) -> None:
        with contextlib.suppress(ValueError):
            self._taps.remove(tap)

    def _emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener for '%s' failed", event)

    def _tap(self, direction: str, data: bytes) -> None:
        stamp = time.time()
        for tap in list(self._taps):
            try:
                tap(direction, stamp, data)
            except Exception:
                logger.exception("Session tap failed")

    def _log(self, line: str) -> None:
        logger.debug("%s", line)
        self._emit("log", line)

    # Queries

    @property
    def state(self) -> RadioState:
        with self._state_lock:
            return self._state

    @property
    def connection_state(self) -> ConnectionState:
        return self._conn_state

    @property
    def is_connected(self) -> bool:
        return self._conn_state is ConnectionState.CONNECTED

    @property
    def driver(self) -> Optional[RadioDriver]:
        return self._driver

    @property
    def driver_id(self) -> Optional[str]:
        return self._driver_id

    @property
    def is_polling(self) -> bool:
        return self._polling

    @property
    def poll_interval_ms(self) -> int:
        return self._poll_interval_ms

    def available_modes(self) -> List[str]:
        return self._require_driver().available_modes()

    def controls_schema(self) -> List[ControlDescriptor]:
        self._require_driver()
        return list(self._controls)

    def bands(self) -> Sequence[Band]:
        return self._require_driver().bands

    def band_for(self, hz: Optional[int] = None) -> Optional[Band]:
        driver = self._require_driver()
        return band_for(self.state.freq_hz if hz is None else hz, driver.bands)

    # Connection lifecycle

    def connect(
        self,
        driver_id: str,
        port: str,
        baudrate: Optional[int] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._conn_lock:
            self.disconnect()
            meta = self.registry.meta(driver_id)
            driver = self.registry.create(driver_id, options)
            baud = int(baudrate or meta.default_baud)
            line = driver.serial_line_config()
            self._conn_state = ConnectionState.OPENING
            try:
                handle = serial.Serial(
                    port=port,
                    baudrate=baud,
                    bytesize=line.bytesize,
                    parity=line.parity,
                    stopbits=line.stopbits,
                    rtscts=line.rtscts,
                    timeout=self.runtime.read_timeout_sec,
                )
            except (serial.SerialException, OSError, ValueError) as exc:
                self._conn_state = ConnectionState.DISCONNECTED
                error = TransportError(f"Failed to open {port}: {exc}")
                logger.warning("%s", error)
                self._emit("error", error)
                raise error from exc
            self._drop_control_lines(handle)
            self._driver = driver
            self._driver_id = driver_id
            self._handle = handle
            self._controls = driver.controls_schema()
            self._rx_buffer = bytearray()
            self._ctx = DecodeContext()
            with self._state_lock:
                self._state = RadioState(connected=True)
            self._reader = ReceiveThread(self, handle, self.runtime.chunk_size)
            self._conn_state = ConnectionState.CONNECTED
            self._reader.start()
        logger.info("Connected to %s at %d baud (%s)", port, baud, driver_id)
        self._emit("connected", {"driver_id": driver_id, "port": port, "baudrate": baud})

    def disconnect(self) -> None:
        with self._conn_lock:
            if self._handle is None:
                return
            driver = self._driver
            if driver is not None and self._conn_state is ConnectionState.CONNECTED:
                try:
                    for command in driver.build_command("set_ptt", False):
                        self.send(command)
                except RigError as exc:
                    logger.debug("Unkey before disconnect failed: %s", exc)
            self.stop_polling()
            self._close("disconnect")

    def _close(self, reason: str) -> None:
        with self._conn_lock:
            handle = self._handle
            if handle is None:
                return
            reader = self._reader
            self._handle = None
            self._reader = None
            self._conn_state = ConnectionState.DISCONNECTED
            if reader is not None:
                reader.stop()
                if reader is not threading.current_thread():
                    reader.join(timeout=self.runtime.join_timeout_sec)
            try:
                handle.close()
            except (serial.SerialException, OSError) as exc:
                logger.debug("Error closing port: %s", exc)
            self._driver = None
            self._driver_id = None
            self._controls = []
            self._rx_buffer = bytearray()
            self._ctx = DecodeContext()
            with self._state_lock:
                self._state = RadioState()
        logger.info("Disconnected (%s)", reason)
        self._emit("disconnected", {"reason": reason})

    def _on_transport_failure(self, exc: BaseException, handle: Any) -> None:
        with self._conn_lock:
            if handle is not self._handle:
                return
            error = exc if isinstance(exc, TransportError) else TransportError(f"Serial I/O failed: {exc}")
            logger.warning("%s", error)
            self._emit("error", error)
            self.stop_polling()
            self._close("transport error")

    @staticmethod
    def _drop_control_lines(handle: Any) -> None:
        for line in ("rts", "dtr"):
            try:
                setattr(handle, line, False)
            except (serial.SerialException, OSError, ValueError) as exc:
                logger.debug("Could not drop %s: %s", line.upper(), exc)

    def _require_driver(self) -> RadioDriver:
        driver = self._driver
        if driver is None or not self.is_connected:
            raise NotConnectedError()
        return driver

    # Write path

    def send(self, data: bytes, *, generation: Optional[int] = None) -> bool:
        """
        Write one command. Returns False when *generation* names a poll loop
        that has since been stopped.
        """
        payload = bytes(data)
        with self._write_lock:
            driver, handle = self._driver, self._handle
            if driver is None or handle is None or not self.is_connected:
                raise NotConnectedError()
            if generation is not None and generation != self._poll_generation:
                return False
            driver.on_command_sent(payload)
            try:
                handle.write(payload)
                handle.flush()
            except (serial.SerialException, OSError) as exc:
                failure: Optional[BaseException] = exc
            else:
                failure = None
                self._tap("out", payload)
        if failure is not None:
            self._on_transport_failure(failure, handle)
            raise TransportError(f"Serial write failed: {failure}") from failure
        self._log(driver.format_tx(payload))
        return True

    def send_raw(self, data: Union[bytes, str]) -> None:
        payload = parse_hex(data) if isinstance(data, str) else bytes(data)
        if not payload:
            raise ConfigurationError("Raw command is empty")
        self.send(payload)

    def set_frequency_hz(self, hz: int) -> None:
        self._submit("set_frequency", hz)

    def set_frequency_mhz(self, mhz: float) -> None:
        scaled = as_number(mhz, "frequency") * 1_000_000
        if not math.isfinite(scaled):
            raise ConfigurationError(f"Bad frequency: {mhz!r}")
        self.set_frequency_hz(int(round(scaled)))

    def set_mode(self, mode: str) -> None:
        self._submit("set_mode", mode)

    def set_ptt(self, on: bool) -> None:
        self._submit("set_ptt", bool(on))

    def command(self, kind: str, *args: Any) -> None:
        """Run any driver command kind (``set_rit``, ``tune_atu``...) with its confirming reads."""
        self._submit(kind, *args)

    def apply_control(self, control_id: str, value: Any) -> None:
        self._require_driver()
        for control in self._controls:
            if control.id == control_id:
                self._write_unit(control.apply(value))
                return
        raise ConfigurationError(f"Unknown control '{control_id}'")

    def _submit(self, kind: str, *args: Any) -> None:
        driver = self._require_driver()
        commands = driver.build_command(kind, *args)
        self._write_unit(commands + driver.follow_up(kind))

    def _write_unit(self, commands: Sequence[bytes]) -> None:
        with self._unit_lock, self._polling_paused():
            for command in commands:
                self.send(command)

    @contextlib.contextmanager
    def _polling_paused(self) -> Iterator[None]:
        with self._poll_lock:
            was_polling = self._polling
            interval = self._poll_interval_ms
        if was_polling:
            self._halt_polling()
            with self._poll_lock:
                self._resume_after_write = True
        try:
            yield
        finally:
            # An explicit start or stop during the write cancels the resume.
            with self._poll_lock:
                resume = was_polling and self._resume_after_write
                self._resume_after_write = False
            if resume and self.is_connected:
                self.start_polling(interval)

    # Receive path

    def _on_bytes(self, chunk: bytes) -> None:
        """Decode the frames *chunk* completes. Only frames that decode to events fire "update"."""
        self._tap("in", chunk)
        driver = self._driver
        if driver is None:
            return
        self._rx_buffer.extend(chunk)
        for frame in driver.extract_frames(self._rx_buffer):
            self._log(driver.format_rx(frame.data))
            events = driver.decode_frame(frame, self._ctx)
            if not events:
                continue
            with self._state_lock:
                state = self._state
                for event in events:
                    state = apply_event(state, event)
                    if isinstance(event, FrequencyEvent):
                        self._ctx.last_freq_hz = event.hz
                self._state = state
            self._emit("update", state)

    # Polling

    def start_polling(self, interval_ms: Optional[int] = None) -> None:
        driver = self._require_driver()
        with self._poll_lock:
            if interval_ms is not None:
                self._poll_interval_ms = int(clamp(int(interval_ms), POLL_MIN_MS, POLL_MAX_MS))
            interval = self._poll_interval_ms
            self._resume_after_write = False
            if self._polling:
                updated = True
            else:
                updated = False
                self._polling = True
                self._poll_generation += 1
                generation = self._poll_generation
                self._poll_wakeup = threading.Event()
                thread = threading.Thread(
                    target=self._poll_loop,
                    args=(driver, generation, self._poll_wakeup),
                    daemon=True,
                    name=f"rigcat-poll-{generation}",
                )
        if updated:
            self._log(f"Polling interval now ~{interval}ms")
            return
        thread.start()
        logger.info("Polling started @ ~%dms (id=%d)", interval, generation)
        self._log(f"Polling started @ ~{interval}ms (id={generation})")

    def stop_polling(self) -> None:
        with self._poll_lock:
            self._resume_after_write = False
        self._halt_polling()

    def _halt_polling(self) -> None:
        with self._poll_lock:
            if not self._polling:
                return
            self._polling = False
            self._poll_generation += 1
            self._poll_wakeup.set()
        logger.info("Polling stopped")
        self._log("Polling stopped")

    def _poll_active(self, generation: int) -> bool:
        return self._polling and generation == self._poll_generation

    def _poll_loop(self, driver: RadioDriver, generation: int, wakeup: threading.Event) -> None:
        delay = clamp(driver.inter_command_delay_ms, 0, MAX_COMMAND_DELAY_MS) / 1000.0
        while self._poll_active(generation):
            started = time.monotonic()
            for command in driver.poll_sequence():
                if not self._poll_active(generation):
                    return
                try:
                    if not self.send(command, generation=generation):
                        return
                except NotConnectedError:
                    return
                except TransportError as exc:
                    logger.warning("Polling stopped after write failure: %s", exc)
                    return
                if delay and wakeup.wait(delay):
                    return
            elapsed_ms = (time.monotonic() - started) * 1000.0
            remaining_ms = max(0.0, self._poll_interval_ms - elapsed_ms)
            if wakeup.wait(remaining_ms / 1000.0):
                return
