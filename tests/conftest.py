"""Shared test doubles."""

from __future__ import annotations

import queue
import threading
import time

import pytest

from vmc_vendify_mcp.transport.base import DeviceInfo

_EOF = object()


class FakeTimer:
    """Stands in for ``threading.Timer``; fires only when told to."""

    instances: list["FakeTimer"] = []

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.instances.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args, **self.kwargs)


class FakeTransport:
    """In-memory transport: reads come from a queue, writes are recorded."""

    def __init__(self, fail_open: bool = False, fail_write: bool = False) -> None:
        self.fail_open = fail_open
        self.fail_write = fail_write
        self.written: list[bytes] = []
        self.write_event = threading.Event()
        self.closed = False
        self._open = False
        self._inbound: "queue.Queue[object]" = queue.Queue()

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self, address: str) -> DeviceInfo:
        if self.fail_open:
            raise ConnectionError(f"cannot reach {address}")
        self._open = True
        return DeviceInfo(address=address, name="fake", backend="fake")

    def write(self, data: bytes) -> int:
        if self.fail_write:
            raise OSError("radio link down")
        self.written.append(bytes(data))
        self.write_event.set()
        return len(data)

    def feed(self, data: bytes) -> None:
        self._inbound.put(bytes(data))

    def end_stream(self) -> None:
        self._inbound.put(_EOF)

    def break_link(self, error: Exception | None = None) -> None:
        self._inbound.put(error or OSError("connection reset"))

    def read(self, size: int) -> bytes:
        item = self._inbound.get()
        if item is _EOF:
            self._inbound.put(_EOF)
            return b""
        if isinstance(item, Exception):
            raise item
        return item  # type: ignore[return-value]

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._open = False
            self._inbound.put(_EOF)


@pytest.fixture
def fake_timer():
    FakeTimer.instances = []
    yield FakeTimer
    FakeTimer.instances = []


@pytest.fixture
def fake_transport():
    return FakeTransport()


def run_in_thread(target, *args) -> tuple[threading.Thread, dict]:
    """Run *target* on a thread, capturing its result or exception."""
    outcome: dict = {}

    def _runner():
        try:
            outcome["result"] = target(*args)
        except BaseException as e:  # noqa: BLE001 - recorded for assertions
            outcome["error"] = e

    thread = threading.Thread(target=_runner, daemon=True)
    thread.start()
    return thread, outcome


def wait_for(predicate, timeout: float = 2.0) -> bool:
    """Poll *predicate* until it holds or *timeout* elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()
