from __future__ import annotations

import queue

import pytest


class FakeSerialException(Exception):
    pass


class FakeSerialPort:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.rts = True
        self.dtr = True
        self.written: list[bytes] = []
        self.fail_writes = False
        self.closed = False
        self._incoming: "queue.Queue[bytes]" = queue.Queue()
        self._pending = bytearray()

    def feed(self, data: bytes) -> None:
        self._incoming.put(bytes(data))

    def read(self, size: int = 1) -> bytes:
        if self.closed:
            raise FakeSerialException("port closed")
        if not self._pending:
            try:
                self._pending.extend(self._incoming.get(timeout=0.01))
            except queue.Empty:
                return b""
        out = bytes(self._pending[:size])
        del self._pending[:size]
        return out

    @property
    def in_waiting(self) -> int:
        return len(self._pending)

    def write(self, data: bytes) -> int:
        if self.fail_writes:
            raise FakeSerialException("write failed")
        self.written.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def cancel_read(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class FakeSerialModule:
    SerialException = FakeSerialException

    def __init__(self) -> None:
        self.ports: list[FakeSerialPort] = []
        self.fail_open = False
        # Bytes every newly opened port hands back before anything is written.
        self.preload = b""

    def Serial(self, **kwargs):
        if self.fail_open:
            raise FakeSerialException(f"could not open port {kwargs.get('port')}")
        port = FakeSerialPort(**kwargs)
        if self.preload:
            port.feed(self.preload)
        self.ports.append(port)
        return port


@pytest.fixture
def fake_serial(monkeypatch):
    module = FakeSerialModule()
    monkeypatch.setattr("rigcat.controller.serial", module)
    return module
