"""Bluetooth RFCOMM (Serial Port Profile) socket connection.

The VMC's radio module exposes a classic Bluetooth SPP endpoint. Python's
``socket`` module speaks RFCOMM directly on Linux and Windows, so no
Bluetooth stack binding is needed. Pairing is left to the OS.
"""

from __future__ import annotations

import logging
import re
import socket
from typing import Optional

from .base import DeviceInfo

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = 1
CONNECT_TIMEOUT_S = 10.0

_MAC_RE = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}$")


def is_bluetooth_address(address: str) -> bool:
    """True for ``AA:BB:CC:DD:EE:FF`` with an optional ``/channel`` suffix."""
    mac = address.split("/", 1)[0]
    return bool(_MAC_RE.match(mac))


def parse_rfcomm_address(address: str, default_channel: int = DEFAULT_CHANNEL) -> tuple[str, int]:
    """Split ``"AA:BB:CC:DD:EE:FF/3"`` into ``("AA:BB:CC:DD:EE:FF", 3)``.

    Raises:
        ValueError: If the MAC address or channel is malformed.
    """
    mac, _, channel_text = address.partition("/")
    if not _MAC_RE.match(mac):
        raise ValueError(f"Not a Bluetooth address: {address!r}")
    channel = int(channel_text) if channel_text else default_channel
    if not 1 <= channel <= 30:
        raise ValueError(f"RFCOMM channel must be 1-30, got {channel}")
    return mac.replace("-", ":").upper(), channel


class RfcommTransport:
    """Stream socket to a paired SPP device.

    Usage::

        conn = RfcommTransport()
        conn.open("00:11:22:33:44:55")
        conn.write(frame)
        chunk = conn.read(1024)
        conn.close()
    """

    def __init__(
        self,
        default_channel: int = DEFAULT_CHANNEL,
        connect_timeout: float = CONNECT_TIMEOUT_S,
    ) -> None:
        self._default_channel = default_channel
        self._connect_timeout = connect_timeout
        self._sock: Optional[socket.socket] = None
        self._device_info = DeviceInfo(backend="rfcomm")

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    def open(self, address: str) -> DeviceInfo:
        """Connect to *address*.

        Raises:
            ConnectionError: If RFCOMM is unsupported here or the device
                refuses the connection.
        """
        mac, channel = parse_rfcomm_address(address, self._default_channel)
        family = getattr(socket, "AF_BLUETOOTH", None)
        proto = getattr(socket, "BTPROTO_RFCOMM", None)
        if family is None or proto is None:
            raise ConnectionError(
                "This Python build has no Bluetooth socket support; "
                "bind the device to a serial port and use that path instead"
            )

        sock = socket.socket(family, socket.SOCK_STREAM, proto)
        try:
            sock.settimeout(self._connect_timeout)
            sock.connect((mac, channel))
            sock.settimeout(None)
        except OSError as e:
            sock.close()
            raise ConnectionError(
                f"Could not connect to {mac} on RFCOMM channel {channel}: {e}"
            ) from e

        self._sock = sock
        self._device_info = DeviceInfo(address=mac, name=f"RFCOMM {mac}/{channel}", backend="rfcomm")
        logger.info("Connected via RFCOMM: %s channel %d", mac, channel)
        return self._device_info

    def write(self, data: bytes) -> int:
        if self._sock is None:
            raise ConnectionError("Not connected to device")
        self._sock.sendall(data)
        return len(data)

    def read(self, size: int) -> bytes:
        sock = self._sock
        if sock is None:
            return b""
        return sock.recv(size)

    def close(self) -> None:
        sock = self._sock
        if sock is None:
            return
        self._sock = None
        try:
            # Wakes a reader blocked in recv() on another thread
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Socket shutdown: %s", e)
        finally:
            sock.close()
            logger.info("Disconnected")
