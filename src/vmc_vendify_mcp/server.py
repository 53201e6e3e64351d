"""MCP server entry point for a Bluetooth-linked vending-machine controller.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import LinkConfig
from .errors import VMCError
from .protocol.commands import OpCode, RawCommand
from .protocol.framing import MOTOR_FAULT_TEXT, SENSOR_FAULT_TEXT
from .protocol.parser import response_to_dict
from .session.manager import VMCSession

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "vmc-vendify",
    instructions="MCP server for a vending-machine controller on a Bluetooth serial link",
)

# Global connection state
_session: VMCSession | None = None


def _get_session() -> VMCSession:
    """Get the active session, raising if not connected."""
    if _session is None or not _session.is_connected:
        raise RuntimeError(
            "Not connected to a VMC. Use the 'connect' tool first."
        )
    return _session


def _run(action) -> dict[str, Any]:
    """Run a device action, reporting protocol failures as an error dict."""
    try:
        return action()
    except VMCError as e:
        logger.warning("%s: %s", type(e).__name__, e)
        return {"error": str(e), "kind": type(e).__name__}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(address: str | None = None) -> dict[str, Any]:
    """Open the serial-over-Bluetooth link to the VMC.

    Args:
        address: Bluetooth MAC (``AA:BB:CC:DD:EE:FF`` or with ``/channel``),
            a serial port path such as ``/dev/rfcomm0`` or ``COM5``, or
            ``sim://demo`` for the built-in simulator. Defaults to the
            ``VMC_ADDRESS`` environment variable.
    """
    global _session
    config = LinkConfig.from_env()
    target = address or config.address
    if not target:
        return {"error": "No address given and VMC_ADDRESS is not set"}

    if _session is None:
        _session = VMCSession(config)

    def _connect() -> dict[str, Any]:
        info = _session.connect(target)
        return {
            "connected": True,
            "address": info.address,
            "device_name": info.name,
            "backend": info.backend,
        }

    return _run(_connect)


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the link. Any command still awaiting a reply is abandoned."""
    if _session is not None:
        _session.disconnect()
    return {"disconnected": True}


@mcp.tool()
def connection_status() -> dict[str, Any]:
    """Report link state, buffer size and framing counters."""
    if _session is None:
        return {"connected": False}
    return _session.connection_stats()


# ─── VENDING TOOLS ────────────────────────────────────────────────────

@mcp.tool()
def dispense(slot_number: int, board: int = 0, use_drop_sensor: bool = True) -> dict[str, Any]:
    """Dispense one product from a slot.

    Args:
        slot_number: Slot 1-80.
        board: Driver board number 0-255.
        use_drop_sensor: Confirm delivery with the drop sensor.
    """
    session = _get_session()
    return _run(lambda: response_to_dict(
        session.dispense_product(board, slot_number, use_drop_sensor)
    ))


@mcp.tool()
def self_check(board: int = 0, check_drop_sensor: bool = True) -> dict[str, Any]:
    """Run the driver board self-check and report motor/sensor faults."""
    session = _get_session()
    return _run(lambda: response_to_dict(session.perform_self_check(board, check_drop_sensor)))


@mcp.tool()
def set_slot_mode(slot_number: int, belt: bool, board: int = 0) -> dict[str, Any]:
    """Configure a slot as belt-driven (belt=True) or spiral-driven.

    Args:
        slot_number: Slot 1-80.
        belt: True for belt mode, False for spiral mode.
        board: Driver board number 0-255.
    """
    session = _get_session()
    return _run(lambda: response_to_dict(session.set_slot_mode(board, slot_number, belt)))


@mcp.tool()
def set_slot_merge(slot_number: int, dual: bool, board: int = 0) -> dict[str, Any]:
    """Merge a slot with its neighbour (dual=True) or split it (dual=False)."""
    session = _get_session()
    return _run(lambda: response_to_dict(session.set_slot_merge(board, slot_number, dual)))


# ─── CABINET TOOLS ────────────────────────────────────────────────────

@mcp.tool()
def read_temperature(board: int = 0) -> dict[str, Any]:
    """Read the cabinet's current and standby temperature in °C."""
    session = _get_session()

    def _read() -> dict[str, Any]:
        data = session.read_temperature(board)
        return {
            "current_temperature": data.current_temperature,
            "standby_temperature": data.standby_temperature,
        }

    return _run(_read)


@mcp.tool()
def set_temperature_control(
    enable: bool,
    target_temperature: int,
    cooling: bool = True,
    board: int = 0,
) -> dict[str, Any]:
    """Enable or disable temperature control and set the target.

    Args:
        enable: Turn temperature control on or off.
        target_temperature: Set-point in °C, -50 to 100.
        cooling: Cooling mode (True) or heating mode (False).
        board: Driver board number 0-255.
    """
    session = _get_session()
    return _run(lambda: response_to_dict(
        session.set_temperature_control(board, enable, cooling, target_temperature)
    ))


@mcp.tool()
def control_lighting(on: bool, board: int = 0) -> dict[str, Any]:
    """Switch the cabinet lighting on or off."""
    session = _get_session()
    return _run(lambda: response_to_dict(session.control_lighting(board, on)))


@mcp.tool()
def read_door_status(board: int = 0) -> dict[str, Any]:
    """Report whether the cabinet door is open."""
    session = _get_session()
    return _run(lambda: {"door_open": session.read_door_status(board).is_open})


@mcp.tool()
def send_raw_command(board: int, opcode: int, parameter: int, timeout: float = 5.0) -> dict[str, Any]:
    """Send an arbitrary frame built from D1 (board), D3 (op-code) and D5.

    Complement bytes are filled in automatically. Intended for probing
    op-codes not covered by the other tools.
    """
    session = _get_session()
    return _run(lambda: response_to_dict(
        session.send_command(RawCommand(board, opcode, parameter, timeout))
    ))


# ─── RESOURCES ────────────────────────────────────────────────────────

@mcp.resource("vmc://device/status")
def resource_device_status() -> str:
    """Connection state and framing counters."""
    return json.dumps(connection_status())


@mcp.resource("vmc://protocol/opcodes")
def opcodes_resource() -> str:
    """Op-codes understood by the driver boards."""
    return json.dumps({op.name: f"0x{op.value:02X}" for op in OpCode})


@mcp.resource("vmc://protocol/faults")
def faults_resource() -> str:
    """Meaning of the error-code nibbles in a failure response."""
    return json.dumps({
        "motor": {str(int(k)): v for k, v in MOTOR_FAULT_TEXT.items()},
        "sensor": {str(int(k)): v for k, v in SENSOR_FAULT_TEXT.items()},
    })


# ─── PROMPTS ──────────────────────────────────────────────────────────

@mcp.prompt()
def diagnose_fault(slot_number: int, board: int = 0) -> str:
    """Walk through diagnosing a slot that fails to dispense."""
    return f"""Diagnose why slot {slot_number} on driver board {board} fails to dispense.
Steps:
- Run self_check on board {board} and read the motor and sensor fault text
- Check read_door_status; an open door can block vending
- Try dispense on slot {slot_number} with use_drop_sensor=false to separate
  motor faults from drop sensor faults
- Use the vmc://protocol/faults resource to interpret error codes

Report the likely cause and whether the slot mode (set_slot_mode) or
slot merge (set_slot_merge) configuration may be wrong."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    config = LinkConfig.from_env()
    # stdout carries the MCP stdio channel
    logging.basicConfig(level=config.log_level, stream=sys.stderr)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
