"""Connection lifecycle for one VMC link.

:class:`VMCSession` owns the transport, runs a background reader thread
that feeds the stream framer, and routes framed responses through the
correlator. The receive buffer and the pending request are only mutated
under one shared lock.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional

from ..config import LinkConfig
from ..errors import NotConnectedError, TransportError
from ..protocol.commands import (
    DispenseCommand,
    DoorStatusCommand,
    LightingControlCommand,
    RawCommand,
    ReadTemperatureCommand,
    SelfCheckCommand,
    SetSlotModeCommand,
    SetTargetTemperatureCommand,
    SlotMergeCommand,
    TemperatureControlCommand,
    VMCCommand,
)
from ..protocol.framing import Response
from ..protocol.parser import (
    DoorStatusData,
    TemperatureData,
    parse_door_status,
    parse_temperature,
)
from ..protocol.stream import StreamFramer
from ..transport import DeviceInfo, Transport, create_transport
from .correlator import Correlator, CorrelatorState, TimerFactory
from .events import EventStream

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str], Transport]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class VMCSession:
    """A single-flight command channel to one VMC.

    Usage::

        with VMCSession() as vmc:
            vmc.connect("00:11:22:33:44:55")
            response = vmc.dispense_product(driver_board_number=0, slot_number=12)

    ``responses`` receives every checksum-valid response, including
    unsolicited ones. ``connection_lost`` fires once per unexpected loss
    of the link; it does not fire for :meth:`disconnect`.
    """

    def __init__(
        self,
        config: Optional[LinkConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._config = config or LinkConfig()
        self._transport_factory = transport_factory or self._default_transport
        self._lock = threading.RLock()
        self._framer = StreamFramer(
            max_buffer_size=self._config.max_buffer_size,
            resync_warning_threshold=self._config.resync_warning_threshold,
        )
        self._correlator = Correlator(self._write, lock=self._lock, timer_factory=timer_factory)
        self.responses: EventStream[Response] = EventStream("responses")
        self.connection_lost: EventStream[None] = EventStream("connection_lost")

        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[Transport] = None
        self._reader: Optional[threading.Thread] = None
        self._generation = 0
        self._address: Optional[str] = None
        self._device_info: Optional[DeviceInfo] = None

    # ─── STATE ───────────────────────────────────────────────────────

    @property
    def config(self) -> LinkConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def connected_address(self) -> Optional[str]:
        with self._lock:
            return self._address

    @property
    def device_info(self) -> Optional[DeviceInfo]:
        with self._lock:
            return self._device_info

    @property
    def correlator_state(self) -> CorrelatorState:
        return self._correlator.state

    def connection_stats(self) -> dict[str, Any]:
        with self._lock:
            info = self._device_info
            return {
                "connected": self._state is ConnectionState.CONNECTED,
                "address": self._address,
                "device_name": info.name if info else None,
                "backend": info.backend if info else None,
                "has_pending_response": self._correlator.pending is not None,
                "buffer_size": self._framer.buffered,
                **{f"rx_{key}": value for key, value in self._framer.stats().items() if key != "buffered"},
            }

    # ─── LIFECYCLE ───────────────────────────────────────────────────

    def connect(self, address: str) -> DeviceInfo:
        """Open a link to *address* and start the reader thread.

        Any existing connection is closed first.

        Raises:
            TransportError: If the transport cannot be opened.
        """
        self.disconnect()

        transport = self._transport_factory(address)
        try:
            info = transport.open(address)
        except (OSError, ValueError) as e:
            raise TransportError(f"Could not connect to {address}: {e}") from e

        with self._lock:
            self._framer.reset()
            self._generation += 1
            generation = self._generation
            self._transport = transport
            self._state = ConnectionState.CONNECTED
            self._address = address
            self._device_info = info
            reader = threading.Thread(
                target=self._read_loop,
                args=(transport, generation),
                name=f"vmc-reader-{generation}",
                daemon=True,
            )
            self._reader = reader
        reader.start()
        logger.info("Connected to %s (%s)", address, info.backend)
        return info

    def disconnect(self) -> bool:
        """Close the link, failing any pending command.

        Safe to call at any time. A command awaiting its response is
        settled with ``ConnectionLostError`` before this returns.

        Returns:
            ``True`` if a connection was closed, ``False`` if there was none.
        """
        with self._lock:
            transport = self._transport
            reader = self._reader
            if transport is None and self._state is ConnectionState.DISCONNECTED:
                return False
            self._mark_disconnected()
            self._correlator.connection_lost("Disconnected")

        if transport is not None:
            self._close_transport(transport)
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=max(self._config.read_poll_timeout_s * 4, 1.0))
            if reader.is_alive():
                logger.warning("Reader thread did not stop within the join timeout")
        logger.info("Disconnected from VMC")
        return True

    close = disconnect

    def __enter__(self) -> VMCSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    # ─── COMMANDS ────────────────────────────────────────────────────

    def send_command(self, command: VMCCommand, timeout: Optional[float] = None) -> Response:
        """Send *command* and block until its response.

        Args:
            command: Any catalog command.
            timeout: Override the session's response timeout for this call.

        Raises:
            NotConnectedError: No open connection.
            ValidationError: Command parameters are out of range.
            BusyError: Another command is still awaiting its response.
            ResponseTimeoutError: No valid response before the deadline.
            ConnectionLostError: The link closed while waiting.
            TransportError: The frame could not be written.
        """
        if not self.is_connected:
            raise NotConnectedError()
        if timeout is None:
            timeout = self._session_timeout(command)
        return self._correlator.send(command, timeout)

    def dispense_product(
        self,
        driver_board_number: int,
        slot_number: int,
        use_drop_sensor: bool = True,
    ) -> Response:
        return self.send_command(DispenseCommand(driver_board_number, slot_number, use_drop_sensor))

    def perform_self_check(self, driver_board_number: int, check_drop_sensor: bool = True) -> Response:
        return self.send_command(SelfCheckCommand(driver_board_number, check_drop_sensor))

    def read_temperature(self, driver_board_number: int) -> TemperatureData:
        """Read current and standby temperature.

        Raises:
            CommandFailedError: If the board reports failure.
        """
        return parse_temperature(self.send_command(ReadTemperatureCommand(driver_board_number)))

    def set_temperature_control(
        self,
        driver_board_number: int,
        enable_control: bool,
        cooling_mode: bool,
        target_temperature: int,
    ) -> Response:
        """Switch temperature control, then set the target temperature.

        Both commands are validated up front. If the board rejects the
        first one, its response is returned and no set-point is sent.
        """
        control = TemperatureControlCommand(
            driver_board_number, enable_control, cooling_mode, target_temperature
        )
        set_point = SetTargetTemperatureCommand(driver_board_number, target_temperature)
        control.validate()
        set_point.validate()

        response = self.send_command(control)
        if not response.is_success:
            return response
        time.sleep(self._config.inter_command_delay_s)
        return self.send_command(set_point)

    def control_lighting(self, driver_board_number: int, turn_on: bool) -> Response:
        return self.send_command(LightingControlCommand(driver_board_number, turn_on))

    def read_door_status(self, driver_board_number: int) -> DoorStatusData:
        """Query the door switch.

        Raises:
            CommandFailedError: If the board reports failure.
        """
        return parse_door_status(self.send_command(DoorStatusCommand(driver_board_number)))

    def set_slot_mode(self, driver_board_number: int, slot_number: int, is_belt_mode: bool) -> Response:
        return self.send_command(SetSlotModeCommand(driver_board_number, slot_number, is_belt_mode))

    def set_slot_merge(self, driver_board_number: int, slot_number: int, is_dual_slot: bool) -> Response:
        return self.send_command(SlotMergeCommand(driver_board_number, slot_number, is_dual_slot))

    def clear_buffer(self) -> None:
        with self._lock:
            self._framer.reset()

    # ─── INTERNALS ───────────────────────────────────────────────────

    def _default_transport(self, address: str) -> Transport:
        return create_transport(address, self._config)

    def _session_timeout(self, command: VMCCommand) -> float:
        """Response deadline for *command* under this session's config."""
        if isinstance(command, RawCommand):
            return command.timeout
        if isinstance(command, DispenseCommand):
            return self._config.dispense_timeout_s
        return self._config.default_timeout_s

    def _write(self, frame: bytes) -> None:
        with self._lock:
            transport = self._transport
        if transport is None:
            raise NotConnectedError()
        transport.write(frame)

    def _mark_disconnected(self) -> None:
        """Reset connection state. Caller holds the lock."""
        self._state = ConnectionState.DISCONNECTED
        self._transport = None
        self._reader = None
        self._address = None
        self._device_info = None
        self._framer.reset()

    def _close_transport(self, transport: Transport) -> None:
        try:
            transport.close()
        except OSError as e:
            logger.warning("Error closing transport: %s", e)

    def _read_loop(self, transport: Transport, generation: int) -> None:
        error: Optional[BaseException] = None
        try:
            while True:
                chunk = transport.read(self._config.read_chunk_size)
                if not chunk:
                    break
                logger.debug("RX %d bytes: %s", len(chunk), chunk.hex(" "))
                self._handle_chunk(chunk, generation)
        except OSError as e:
            error = e
        except Exception as e:
            logger.exception("Reader for %s failed", transport)
            error = e
        finally:
            self._on_reader_exit(transport, generation, error)

    def _handle_chunk(self, chunk: bytes, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state is not ConnectionState.CONNECTED:
                return
            responses = self._framer.feed(chunk)
            for response in responses:
                self._correlator.on_response(response)
        for response in responses:
            self.responses.publish(response)

    def _on_reader_exit(
        self,
        transport: Transport,
        generation: int,
        error: Optional[BaseException],
    ) -> None:
        with self._lock:
            if generation != self._generation or self._state is not ConnectionState.CONNECTED:
                logger.debug("Reader %d stopped", generation)
                return
            self._mark_disconnected()
            self._correlator.connection_lost("Connection lost")

        if error is not None:
            logger.warning("Bluetooth connection lost: %s", error)
        else:
            logger.warning("Bluetooth connection lost: remote closed the stream")
        self._close_transport(transport)
        # Listeners must not hold up the reader's exit
        threading.Thread(
            target=self.connection_lost.publish,
            args=(None,),
            name="vmc-connection-lost",
            daemon=True,
        ).start()
