"""Protocol engine and MCP server for vending-machine controllers on a
serial-over-Bluetooth link."""

from .config import LinkConfig
from .errors import (
    BusyError,
    CommandFailedError,
    ConnectionLostError,
    NotConnectedError,
    ResponseTimeoutError,
    TransportError,
    ValidationError,
    VMCError,
)
from .session.manager import VMCSession

__version__ = "0.1.0"
