"""Byte-stream transports to the VMC radio link."""

from __future__ import annotations

from typing import Optional

from ..config import LinkConfig
from .base import DeviceInfo, Transport
from .rfcomm_connection import RfcommTransport, is_bluetooth_address
from .serial_connection import SerialTransport
from .simulated import SIM_SCHEME, SimulatedTransport, SimulatedVMC


def create_transport(address: str, config: Optional[LinkConfig] = None) -> Transport:
    """Pick a backend for *address*.

    ``sim://...`` is the in-memory simulator, a Bluetooth MAC address
    (optionally ``/channel``) is an RFCOMM socket, and anything else is
    treated as a serial port path.
    """
    config = config or LinkConfig()
    if address.startswith(SIM_SCHEME):
        return SimulatedTransport()
    if is_bluetooth_address(address):
        return RfcommTransport(default_channel=config.rfcomm_channel)
    return SerialTransport(
        baudrate=config.baudrate,
        poll_timeout=config.read_poll_timeout_s,
    )


__all__ = [
    "DeviceInfo",
    "Transport",
    "RfcommTransport",
    "SerialTransport",
    "SimulatedTransport",
    "SimulatedVMC",
    "create_transport",
]
