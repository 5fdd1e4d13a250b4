from __future__ import annotations

import threading
import time

import pytest

from rigcat.controller import ConnectionState, RadioController, SerialRuntime
from rigcat.errors import ConfigurationError, NotConnectedError, TransportError
from rigcat.events import RadioState


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def poll_threads() -> list:
    return [thread for thread in threading.enumerate() if thread.name.startswith("rigcat-poll")]


def civ(*body: int) -> bytes:
    return bytes([0xFE, 0xFE, 0xE0, 0x94, *body, 0xFD])


@pytest.fixture
def controller(fake_serial):
    ctl = RadioController(runtime=SerialRuntime(read_timeout_sec=0.01))
    yield ctl
    ctl.disconnect()
    wait_for(lambda: not poll_threads())


def test_connect_uses_driver_line_settings(controller, fake_serial) -> None:
    connected = []
    controller.on("connected", connected.append)
    controller.connect("yaesu.ft857d", "/dev/ttyFAKE")
    (port,) = fake_serial.ports
    assert port.kwargs["baudrate"] == 9600
    assert port.kwargs["stopbits"] == 2
    assert port.kwargs["bytesize"] == 8
    assert port.kwargs["parity"] == "N"
    assert port.kwargs["timeout"] == 0.01
    assert port.rts is False and port.dtr is False
    assert controller.connection_state is ConnectionState.CONNECTED
    assert controller.state.connected
    assert connected == [{"driver_id": "yaesu.ft857d", "port": "/dev/ttyFAKE", "baudrate": 9600}]


def test_unknown_driver_opens_nothing(controller, fake_serial) -> None:
    with pytest.raises(ConfigurationError):
        controller.connect("kenwood.ts590", "/dev/ttyFAKE")
    assert fake_serial.ports == []
    assert controller.connection_state is ConnectionState.DISCONNECTED


def test_open_failure_reports_transport_error(controller, fake_serial) -> None:
    errors = []
    controller.on("error", errors.append)
    fake_serial.fail_open = True
    with pytest.raises(TransportError):
        controller.connect("icom.ic7300", "/dev/ttyMISSING", 19200)
    assert controller.connection_state is ConnectionState.DISCONNECTED
    assert len(errors) == 1 and isinstance(errors[0], TransportError)


def test_commands_require_connection(controller) -> None:
    with pytest.raises(NotConnectedError):
        controller.set_frequency_hz(14074000)
    with pytest.raises(NotConnectedError):
        controller.send(b"\x00")
    with pytest.raises(NotConnectedError):
        controller.start_polling()
    with pytest.raises(NotConnectedError):
        controller.available_modes()
    with pytest.raises(ConfigurationError):
        controller.on("frame", print)


def test_one_update_per_decoded_frame(controller, fake_serial) -> None:
    updates = []
    controller.on("update", updates.append)
    controller.connect("icom.ic7300", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    port.feed(civ(0x03, 0x00, 0x40, 0x07, 0x14, 0x00) + civ(0xFB) + civ(0x04, 0x01, 0x01))
    assert wait_for(lambda: len(updates) >= 2)
    port.feed(civ(0x1C, 0x00, 0x01)[:5])
    port.feed(civ(0x1C, 0x00, 0x01)[5:])
    assert wait_for(lambda: len(updates) >= 3)
    assert len(updates) == 3
    assert updates[0].freq_hz == 14074000 and updates[0].mode is None
    assert updates[1].mode == "USB"
    assert updates[2].ptt is True
    assert controller.state is updates[2]
    assert controller.band_for().name == "20m"


def test_bad_frequency_writes_nothing(controller, fake_serial) -> None:
    controller.connect("icom.ic7300", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    for bad in (-1, 0, float("nan")):
        with pytest.raises(ConfigurationError):
            controller.set_frequency_hz(bad)
    with pytest.raises(ConfigurationError):
        controller.set_mode("NOT-A-MODE")
    for bad in ("fourteen", float("inf"), float("nan"), 1e308, 10**400):
        with pytest.raises(ConfigurationError):
            controller.set_frequency_mhz(bad)
    with pytest.raises(ConfigurationError):
        controller.set_frequency_hz(10**400)
    assert port.written == []


def test_set_mode_writes_then_confirms(controller, fake_serial) -> None:
    controller.connect("icom.ic7300", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    controller.set_mode("USB")
    assert port.written == [
        bytes([0xFE, 0xFE, 0x94, 0xE0, 0x06, 0x01, 0xFD]),
        bytes([0xFE, 0xFE, 0x94, 0xE0, 0x1A, 0x06, 0x00, 0x00, 0xFD]),
        bytes([0xFE, 0xFE, 0x94, 0xE0, 0x04, 0xFD]),
        bytes([0xFE, 0xFE, 0x94, 0xE0, 0x1A, 0x06, 0xFD]),
    ]
    port.written.clear()
    controller.set_frequency_mhz(7.074)
    assert port.written == [
        bytes([0xFE, 0xFE, 0x94, 0xE0, 0x05, 0x00, 0x40, 0x07, 0x07, 0x00, 0xFD]),
        bytes([0xFE, 0xFE, 0x94, 0xE0, 0x03, 0xFD]),
    ]


def test_polling_is_single_and_idempotent(controller, fake_serial) -> None:
    controller.connect("yaesu.ft991a", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    controller.start_polling(1)
    controller.start_polling(99999)
    assert controller.poll_interval_ms == 10000
    assert controller.is_polling
    assert wait_for(lambda: len(port.written) >= 3)
    assert port.written[:3] == [b"TX;", b"FA;", b"MD0;"]
    assert len(poll_threads()) == 1
    controller.stop_polling()
    controller.stop_polling()
    assert not controller.is_polling
    assert wait_for(lambda: not poll_threads())


def test_write_pauses_and_resumes_polling(controller, fake_serial) -> None:
    logs = []
    controller.on("log", logs.append)
    controller.connect("yaesu.ft991a", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    controller.start_polling(20)
    assert wait_for(lambda: len(port.written) >= 2)
    controller.set_frequency_hz(14074000)
    assert controller.is_polling
    index = port.written.index(b"FA014074000;")
    assert port.written[index + 1] == b"FA;"
    assert "Polling stopped" in logs
    assert sum(1 for line in logs if line.startswith("Polling started")) == 2
    assert wait_for(lambda: len(poll_threads()) == 1)


def test_stop_during_write_is_not_undone(controller, fake_serial) -> None:
    def stop_on_frequency_write(line: str) -> None:
        if line.startswith("TX_CAT: FA014074000"):
            controller.stop_polling()

    controller.on("log", stop_on_frequency_write)
    controller.connect("yaesu.ft991a", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    controller.start_polling(20)
    assert wait_for(lambda: len(port.written) >= 2)
    controller.set_frequency_hz(14074000)
    assert b"FA014074000;" in port.written
    assert not controller.is_polling
    assert wait_for(lambda: not poll_threads())


def test_start_during_write_keeps_its_interval(controller, fake_serial) -> None:
    def restart_on_frequency_write(line: str) -> None:
        if line.startswith("TX_CAT: FA014074000"):
            controller.start_polling(500)

    controller.on("log", restart_on_frequency_write)
    controller.connect("yaesu.ft991a", "/dev/ttyFAKE")
    controller.start_polling(20)
    controller.set_frequency_hz(14074000)
    assert controller.is_polling
    assert controller.poll_interval_ms == 500
    assert wait_for(lambda: len(poll_threads()) == 1)


def test_stale_generation_is_not_written(controller, fake_serial) -> None:
    controller.connect("icom.ic7300", "/dev/ttyFAKE")
    assert controller.send(b"\x01", generation=999) is False
    assert fake_serial.ports[0].written == []


def test_write_failure_stops_polling_and_disconnects(controller, fake_serial) -> None:
    errors, reasons = [], []
    controller.on("error", errors.append)
    controller.on("disconnected", lambda info: reasons.append(info["reason"]))
    controller.connect("icom.ic7300", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    port.fail_writes = True
    controller.start_polling(20)
    assert wait_for(lambda: controller.connection_state is ConnectionState.DISCONNECTED)
    assert not controller.is_polling
    assert reasons == ["transport error"]
    assert isinstance(errors[0], TransportError)
    assert port.closed
    assert controller.state == RadioState()
    assert wait_for(lambda: not poll_threads())


def test_direct_write_failure_raises(controller, fake_serial) -> None:
    controller.connect("icom.ic7300", "/dev/ttyFAKE")
    fake_serial.ports[0].fail_writes = True
    with pytest.raises(TransportError):
        controller.set_ptt(True)
    assert not controller.is_connected
    with pytest.raises(NotConnectedError):
        controller.set_ptt(False)


def test_disconnect_unkeys_and_resets(controller, fake_serial) -> None:
    reasons = []
    controller.on("disconnected", lambda info: reasons.append(info["reason"]))
    controller.connect("icom.ic7300", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    port.feed(civ(0x03, 0x00, 0x40, 0x07, 0x14, 0x00))
    assert wait_for(lambda: controller.state.freq_hz == 14074000)
    controller.disconnect()
    assert port.written[-1] == bytes([0xFE, 0xFE, 0x94, 0xE0, 0x1C, 0x00, 0x00, 0xFD])
    assert port.closed
    assert controller.driver is None
    assert controller.state == RadioState()
    assert reasons == ["disconnect"]
    controller.disconnect()
    assert reasons == ["disconnect"]


def test_taps_see_both_directions(controller, fake_serial) -> None:
    seen = []
    controller.add_tap(lambda direction, stamp, data: seen.append((direction, data)))
    controller.connect("icom.ic7300", "/dev/ttyFAKE")
    controller.send_raw("FE FE 94 E0 03 FD")
    reply = civ(0x03, 0x00, 0x40, 0x07, 0x14, 0x00)
    fake_serial.ports[0].feed(reply)
    assert wait_for(lambda: len(seen) >= 2)
    assert seen[0] == ("out", bytes([0xFE, 0xFE, 0x94, 0xE0, 0x03, 0xFD]))
    assert seen[1] == ("in", reply)
    with pytest.raises(ConfigurationError):
        controller.send_raw("  ")


def test_failing_listener_does_not_block_others(controller, fake_serial) -> None:
    good = []

    def boom(_state):
        raise RuntimeError("listener bug")

    controller.on("update", boom)
    unsubscribe = controller.on("update", good.append)
    controller.connect("icom.ic7300", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    port.feed(civ(0x1C, 0x00, 0x01))
    assert wait_for(lambda: len(good) == 1)
    unsubscribe()
    controller.on("update", good.append)
    port.feed(civ(0x1C, 0x00, 0x00))
    assert wait_for(lambda: len(good) == 2)
    assert good[-1].ptt is False


def test_apply_control(controller, fake_serial) -> None:
    controller.connect("icom.ic7300", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    ids = [control.id for control in controller.controls_schema()]
    assert ids[:3] == ["band", "mode", "ptt"]
    controller.apply_control("band", "40m")
    assert port.written == [
        bytes([0xFE, 0xFE, 0x94, 0xE0, 0x05, 0x00, 0x50, 0x15, 0x07, 0x00, 0xFD]),
        bytes([0xFE, 0xFE, 0x94, 0xE0, 0x03, 0xFD]),
    ]
    with pytest.raises(ConfigurationError):
        controller.apply_control("band", "11m")
    with pytest.raises(ConfigurationError):
        controller.apply_control("warp", 1)


def test_expectations_drive_framing_end_to_end(controller, fake_serial) -> None:
    controller.connect("yaesu.ft857d", "/dev/ttyFAKE")
    port = fake_serial.ports[0]
    controller.command("read_frequency")
    port.feed(bytes([0x01, 0x40]))
    port.feed(bytes([0x74, 0x00, 0x01]))
    assert wait_for(lambda: controller.state.mode == "USB")
    assert controller.state.freq_hz == 14074000


def test_reconnect_gets_a_fresh_driver(controller, fake_serial) -> None:
    controller.connect("yaesu.ft857d", "/dev/ttyFAKE")
    first = controller.driver
    controller.command("read_frequency")
    assert len(first.expectations) == 1
    controller.connect("yaesu.ft857d", "/dev/ttyFAKE", 4800)
    assert controller.driver is not first
    assert not controller.driver.expectations
    assert fake_serial.ports[0].closed
    assert fake_serial.ports[1].kwargs["baudrate"] == 4800


def test_power_reading_uses_last_frequency(controller, fake_serial) -> None:
    controller.connect("yaesu.ft991a", "/dev/ttyFAKE")
    fake_serial.ports[0].feed(b"FA145500000;PC100;")
    assert wait_for(lambda: controller.state.rfpwr.raw == 100)
    assert controller.state.rfpwr.value == 50.0
    assert controller.band_for().name == "2m"
