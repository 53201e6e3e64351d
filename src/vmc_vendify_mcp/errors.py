"""Exception types raised by the VMC protocol engine.

Every :meth:`~vmc_vendify_mcp.session.manager.VMCSession.send_command`
call ends with either a response or exactly one of these errors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .protocol.commands import VMCCommand
    from .protocol.framing import Response


class VMCError(Exception):
    """Base class for all VMC protocol errors."""


class ValidationError(VMCError, ValueError):
    """A command parameter is outside the protocol contract.

    Raised before any byte is produced or transmitted.
    """


class BusyError(VMCError, RuntimeError):
    """A command is already awaiting its response."""

    def __init__(self, pending: VMCCommand | None = None) -> None:
        self.pending = pending
        detail = f" ({pending!r})" if pending is not None else ""
        super().__init__(f"Another command is in progress{detail}")


class TransportError(VMCError, ConnectionError):
    """The transport could not be opened or written to."""


class NotConnectedError(TransportError):
    """An operation needed an open connection and there was none."""

    def __init__(self, message: str = "Not connected to any device") -> None:
        super().__init__(message)


class ConnectionLostError(VMCError, ConnectionError):
    """The connection closed while a command was awaiting its response."""


class ResponseTimeoutError(VMCError, TimeoutError):
    """No valid response arrived before the command's deadline."""

    def __init__(self, command: VMCCommand, timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"No response to {command!r} within {timeout:g}s")


class CommandFailedError(VMCError):
    """The device answered, but reported the operation as failed."""

    def __init__(self, message: str, response: Response) -> None:
        self.response = response
        super().__init__(f"{message}: {response.error_description}")


class FrameFormatError(VMCError):
    """A candidate response frame has the wrong length.

    Internal only: the stream framer never passes a short window to the
    decoder, so this does not reach callers of ``send_command``.
    """
