"""Serial-port connection for SPP devices bound to a tty or COM port.

On Linux ``rfcomm bind`` exposes a paired VMC as ``/dev/rfcommN``; on
Windows pairing creates an outgoing COM port. Either way pyserial can
drive it like any UART.
"""

from __future__ import annotations

import logging
from typing import Optional

import serial

from .base import DeviceInfo

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 9600
READ_POLL_TIMEOUT_S = 0.5


class SerialTransport:
    """pyserial-backed transport.

    ``read`` polls with a short timeout so that ``close`` from another
    thread is noticed; it only returns ``b""`` once the port is closed.
    """

    def __init__(
        self,
        baudrate: int = DEFAULT_BAUDRATE,
        poll_timeout: float = READ_POLL_TIMEOUT_S,
    ) -> None:
        self._baudrate = baudrate
        self._poll_timeout = poll_timeout
        self._port: Optional[serial.Serial] = None
        self._device_info = DeviceInfo(backend="serial")

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    def open(self, address: str) -> DeviceInfo:
        """Open the serial port at *address* (e.g. ``/dev/rfcomm0``, ``COM5``).

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        try:
            port = serial.Serial(
                address,
                baudrate=self._baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self._poll_timeout,
            )
        except serial.SerialException as e:
            raise ConnectionError(f"Could not open serial port {address}: {e}") from e

        self._port = port
        self._device_info = DeviceInfo(address=address, name=port.name or address, backend="serial")
        logger.info("Connected via serial: %s @ %d baud", address, self._baudrate)
        return self._device_info

    def write(self, data: bytes) -> int:
        port = self._port
        if port is None:
            raise ConnectionError("Not connected to device")
        written = port.write(data)
        port.flush()
        return written if written is not None else len(data)

    def read(self, size: int) -> bytes:
        while True:
            port = self._port
            if port is None or not port.is_open:
                return b""
            waiting = port.in_waiting
            data = port.read(min(max(waiting, 1), size))
            if data:
                return bytes(data)

    def close(self) -> None:
        port = self._port
        if port is None:
            return
        self._port = None
        try:
            port.close()
        except serial.SerialException as e:
            logger.warning("Error closing port: %s", e)
        finally:
            logger.info("Disconnected")
