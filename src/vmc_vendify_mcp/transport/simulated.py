"""In-memory VMC for demos and tests.

Addresses of the form ``sim://<name>`` select this backend. Every valid
command frame gets a checksum-valid reply; malformed frames are ignored,
as the real controller does.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional

from ..protocol.commands import OpCode
from ..protocol.framing import (
    PRODUCT_DELIVERED,
    STATUS_NORMAL,
    build_response,
    is_valid_command_frame,
)
from .base import DeviceInfo

logger = logging.getLogger(__name__)

SIM_SCHEME = "sim://"

Responder = Callable[[bytes], Optional[bytes]]

_EOF = object()


class SimulatedVMC:
    """Minimal controller model answering the command catalog."""

    def __init__(self, temperature: int = 5, standby_temperature: int = 4) -> None:
        self.temperature = temperature
        self.standby_temperature = standby_temperature
        self.door_open = False
        self.lights_on = False
        self.dispensed: list[tuple[int, int]] = []

    def __call__(self, frame: bytes) -> Optional[bytes]:
        if not is_valid_command_frame(frame):
            logger.debug("Simulator ignoring malformed frame %s", frame.hex(" "))
            return None

        board, op, param = frame[0], frame[2], frame[4]
        if OpCode.DISPENSE_START <= op <= OpCode.DISPENSE_END:
            self.dispensed.append((board, op))
            return build_response(board, STATUS_NORMAL, 0x00, PRODUCT_DELIVERED)
        if op == OpCode.READ_TEMPERATURE:
            return build_response(
                board, STATUS_NORMAL, self.temperature & 0xFF, self.standby_temperature & 0xFF
            )
        if op == OpCode.DOOR_STATUS:
            return build_response(board, STATUS_NORMAL, 0x00, 0x01 if self.door_open else 0x00)
        if op == OpCode.SET_TARGET_TEMPERATURE:
            self.standby_temperature = param - 0x100 if param & 0x80 else param
        elif op == OpCode.LIGHTING_CONTROL:
            self.lights_on = param == 0xAA
        return build_response(board, STATUS_NORMAL)


class SimulatedTransport:
    """Loopback transport whose far end is a :class:`SimulatedVMC`.

    Args:
        responder: Maps a written frame to reply bytes, or ``None`` for
            silence. Defaults to a fresh :class:`SimulatedVMC`.
    """

    def __init__(self, responder: Optional[Responder] = None) -> None:
        self.responder: Responder = responder or SimulatedVMC()
        self.written: list[bytes] = []
        self._inbound: "queue.Queue[object]" = queue.Queue()
        self._remainder = b""
        self._lock = threading.Lock()
        self._open = False
        self._device_info = DeviceInfo(backend="sim")

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    def open(self, address: str) -> DeviceInfo:
        name = address[len(SIM_SCHEME):] if address.startswith(SIM_SCHEME) else address
        with self._lock:
            self._inbound = queue.Queue()
            self._remainder = b""
            self._open = True
        self._device_info = DeviceInfo(address=address, name=name or "Simulated VMC", backend="sim")
        logger.info("Connected to simulated VMC %s", address)
        return self._device_info

    def write(self, data: bytes) -> int:
        if not self._open:
            raise ConnectionError("Not connected to device")
        self.written.append(bytes(data))
        reply = self.responder(bytes(data))
        if reply:
            self.inject(reply)
        return len(data)

    def inject(self, data: bytes) -> None:
        """Queue raw bytes as if the VMC had sent them."""
        self._inbound.put(bytes(data))

    def hang_up(self) -> None:
        """End the inbound stream as if the remote side dropped the link."""
        self._inbound.put(_EOF)

    def read(self, size: int) -> bytes:
        if self._remainder:
            data, self._remainder = self._remainder[:size], self._remainder[size:]
            return data
        inbound = self._inbound
        item = inbound.get()
        if item is _EOF:
            # Let any other reader see the end of stream too
            inbound.put(_EOF)
            return b""
        data: bytes = item  # type: ignore[assignment]
        self._remainder = data[size:]
        return data[:size]

    def close(self) -> None:
        with self._lock:
            if not self._open:
                return
            self._open = False
        self._inbound.put(_EOF)
        logger.info("Disconnected from simulated VMC")
