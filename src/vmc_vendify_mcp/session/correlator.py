"""Single-flight command/response correlation.

State machine::

    IDLE --send--> AWAITING_RESPONSE --(response | deadline | link lost
                                        | write failure)--> IDLE

Only one command may await a response. A second ``send`` fails with
:class:`~vmc_vendify_mcp.errors.BusyError` instead of queueing. The
response, the deadline timer and the transport race to settle the
pending request; :meth:`PendingRequest.resolve` lets exactly one win.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional

from ..errors import (
    BusyError,
    ConnectionLostError,
    ResponseTimeoutError,
    TransportError,
    VMCError,
)
from ..protocol.commands import VMCCommand
from ..protocol.framing import Response, encode_command

logger = logging.getLogger(__name__)

Writer = Callable[[bytes], Any]
TimerFactory = Callable[..., Any]


class CorrelatorState(Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"


class PendingRequest:
    """The one command currently awaiting its response.

    Resolves at most once; later attempts return ``False`` and change
    nothing.
    """

    def __init__(self, command: VMCCommand, frame: bytes, timeout: float) -> None:
        self.command = command
        self.frame = frame
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._resolved = False
        self._response: Optional[Response] = None
        self._error: Optional[VMCError] = None

    @property
    def resolved(self) -> bool:
        with self._lock:
            return self._resolved

    def resolve(
        self,
        response: Optional[Response] = None,
        error: Optional[VMCError] = None,
    ) -> bool:
        """Settle the request with a response or an error.

        Returns:
            ``True`` if this call settled it, ``False`` if it was already
            settled.
        """
        if (response is None) == (error is None):
            raise ValueError("Resolve with exactly one of response or error")
        with self._lock:
            if self._resolved:
                return False
            self._resolved = True
            self._response = response
            self._error = error
        self._done.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> Response:
        """Block until resolved; return the response or raise the error."""
        if not self._done.wait(timeout):
            raise RuntimeError("Pending request was not resolved in time")
        if self._error is not None:
            raise self._error
        if self._response is None:
            raise RuntimeError("Pending request resolved without a response")
        return self._response


class Correlator:
    """Pairs each sent command with the next valid response.

    Args:
        write: Sends a frame on the transport. ``OSError`` means the
            write failed.
        lock: Re-entrant lock shared with the stream framer; pending
            state and the receive buffer are only touched while holding it.
        timer_factory: ``threading.Timer``-compatible factory for the
            response deadline.
    """

    def __init__(
        self,
        write: Writer,
        lock: Optional[threading.RLock] = None,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._lock = lock if lock is not None else threading.RLock()
        self._write = write
        self._timer_factory = timer_factory
        self._pending: Optional[PendingRequest] = None
        self._timer: Any = None

    @property
    def state(self) -> CorrelatorState:
        with self._lock:
            if self._pending is None:
                return CorrelatorState.IDLE
            return CorrelatorState.AWAITING_RESPONSE

    @property
    def pending(self) -> Optional[PendingRequest]:
        with self._lock:
            return self._pending

    def begin(self, command: VMCCommand, timeout: Optional[float] = None) -> PendingRequest:
        """Encode and transmit *command*, returning its pending request.

        Raises:
            BusyError: Another command is awaiting its response.
            ValidationError: The command is out of contract. Nothing was
                sent and the state is unchanged.
        """
        with self._lock:
            if self._pending is not None:
                raise BusyError(self._pending.command)
            frame = encode_command(command)
            effective = timeout if timeout is not None else command.timeout
            pending = PendingRequest(command, frame, effective)
            self._pending = pending
            timer = self._timer_factory(effective, self._on_deadline, args=(pending,))
            timer.daemon = True
            self._timer = timer
            timer.start()

        logger.debug("TX %r: %s", command, frame.hex(" "))
        try:
            self._write(frame)
        except OSError as e:
            logger.warning("Write failed for %r: %s", command, e)
            error = e if isinstance(e, TransportError) else TransportError(f"Failed to send command: {e}")
            if self._release(pending):
                pending.resolve(error=error)
        except Exception:
            self._release(pending)
            raise
        return pending

    def send(self, command: VMCCommand, timeout: Optional[float] = None) -> Response:
        """Send *command* and block until its single outcome.

        Raises:
            BusyError, ValidationError: Immediately, with no state change.
            ResponseTimeoutError, ConnectionLostError, TransportError:
                When the request settles without a response.
        """
        return self.begin(command, timeout).wait()

    def on_response(self, response: Response) -> bool:
        """Route a framed response.

        Returns:
            ``True`` if it settled the pending request, ``False`` if it
            was unsolicited.
        """
        with self._lock:
            pending = self._pending
            if pending is None:
                logger.debug("Unsolicited %r", response)
                return False
            self._release(pending)
        settled = pending.resolve(response=response)
        if settled:
            logger.debug("RX %r for %r", response, pending.command)
        return settled

    def connection_lost(self, reason: str = "Connection lost") -> bool:
        """Fail the pending request, if any, with ``ConnectionLostError``."""
        with self._lock:
            pending = self._pending
            if pending is None:
                return False
            self._release(pending)
        return pending.resolve(error=ConnectionLostError(f"{reason} while awaiting {pending.command!r}"))

    def _on_deadline(self, pending: PendingRequest) -> None:
        if not self._release(pending):
            return
        if pending.resolve(error=ResponseTimeoutError(pending.command, pending.timeout)):
            logger.warning("No response to %r within %gs", pending.command, pending.timeout)

    def _release(self, pending: PendingRequest) -> bool:
        """Return to IDLE if *pending* is still the current request."""
        with self._lock:
            if self._pending is not pending:
                return False
            self._pending = None
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        return True
