"""Op-code constants and the catalog of VMC commands.

Each command addresses one driver board and encodes to exactly one
6-byte frame. A command validates its own parameters; encoding an
invalid command raises :class:`~vmc_vendify_mcp.errors.ValidationError`
before any byte is produced.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar

from ..config import DEFAULT_TIMEOUT_S, DISPENSE_TIMEOUT_S
from ..errors import ValidationError
from .framing import encode_command

MIN_SLOT = 1
MAX_SLOT = 80
MIN_TEMPERATURE = -50
MAX_TEMPERATURE = 100


class OpCode(IntEnum):
    """Values placed in D3 of a command frame."""

    DISPENSE_START = 0x01
    DISPENSE_END = 0x50
    SELF_CHECK = 0x64
    SLOT_RESET = 0x65
    SET_BELT_SLOT = 0x68
    SET_SPIRAL_SLOT = 0x74
    SET_ALL_SPIRAL_SLOTS = 0x75
    SET_ALL_BELT_SLOTS = 0x76
    QUERY_SLOT_START = 0x79
    QUERY_SLOT_END = 0xC8
    SET_SINGLE_SLOT = 0xC9
    SET_DUAL_SLOT = 0xCA
    SET_ALL_SINGLE_SLOTS = 0xCB
    TEMPERATURE_CONTROL = 0xCC
    TEMPERATURE_MODE = 0xCD
    SET_TARGET_TEMPERATURE = 0xCE
    SET_TEMP_RETURN_DIFF = 0xCF
    SET_TEMP_COMPENSATION = 0xD0
    SET_DEFROST_TIME = 0xD1
    SET_WORKING_TIME = 0xD2
    SET_DOWNTIME = 0xD3
    GLASS_HEATING = 0xD4
    READ_TEMPERATURE = 0xDC
    LIGHTING_CONTROL = 0xDD
    DOOR_STATUS = 0xDF


# Parameter bytes (D5)
WITH_DROP_SENSOR = 0xAA
WITHOUT_DROP_SENSOR = 0x55
LIGHT_ON = 0xAA
LIGHT_OFF = 0x55
TEMP_CONTROL_ENABLED = 0x01
TEMP_CONTROL_DISABLED = 0x00
READ_PARAMETER = 0x55  # used by read-only queries


def _check_int(name: str, value: object, low: int, high: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if not low <= value <= high:
        raise ValidationError(f"{name} must be {low}-{high}, got {value}")


def _check_flag(name: str, value: object) -> None:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be a bool, got {value!r}")


@dataclass(frozen=True)
class VMCCommand:
    """Base for all commands: one driver board, one frame."""

    driver_board_number: int

    timeout: ClassVar[float] = DEFAULT_TIMEOUT_S

    def validate(self) -> None:
        """Raise ``ValidationError`` if any parameter is out of range."""
        _check_int("Driver board number", self.driver_board_number, 0, 0xFF)

    @property
    def opcode_byte(self) -> int:
        raise NotImplementedError

    @property
    def parameter_byte(self) -> int:
        raise NotImplementedError

    def encode(self) -> bytes:
        return encode_command(self)


@dataclass(frozen=True)
class DispenseCommand(VMCCommand):
    """Vend from a slot. The slot number itself takes the op-code position."""

    slot_number: int
    use_drop_sensor: bool = True

    # Mechanical actuation takes longer than a register read.
    timeout: ClassVar[float] = DISPENSE_TIMEOUT_S

    def validate(self) -> None:
        super().validate()
        _check_int("Slot number", self.slot_number, MIN_SLOT, MAX_SLOT)
        _check_flag("use_drop_sensor", self.use_drop_sensor)

    @property
    def opcode_byte(self) -> int:
        return self.slot_number

    @property
    def parameter_byte(self) -> int:
        return WITH_DROP_SENSOR if self.use_drop_sensor else WITHOUT_DROP_SENSOR


@dataclass(frozen=True)
class SelfCheckCommand(VMCCommand):
    check_drop_sensor: bool = True

    def validate(self) -> None:
        super().validate()
        _check_flag("check_drop_sensor", self.check_drop_sensor)

    @property
    def opcode_byte(self) -> int:
        return OpCode.SELF_CHECK

    @property
    def parameter_byte(self) -> int:
        return WITH_DROP_SENSOR if self.check_drop_sensor else WITHOUT_DROP_SENSOR


@dataclass(frozen=True)
class ReadTemperatureCommand(VMCCommand):
    @property
    def opcode_byte(self) -> int:
        return OpCode.READ_TEMPERATURE

    @property
    def parameter_byte(self) -> int:
        return READ_PARAMETER


@dataclass(frozen=True)
class TemperatureControlCommand(VMCCommand):
    """Enable or disable temperature control.

    Only the enable flag goes on the wire. ``cooling_mode`` and
    ``target_temperature`` travel with the command so the session can
    follow up with :class:`SetTargetTemperatureCommand`.
    """

    enable_control: bool
    cooling_mode: bool = True
    target_temperature: int = 4

    def validate(self) -> None:
        super().validate()
        _check_flag("enable_control", self.enable_control)
        _check_flag("cooling_mode", self.cooling_mode)
        _check_int("Target temperature", self.target_temperature, MIN_TEMPERATURE, MAX_TEMPERATURE)

    @property
    def opcode_byte(self) -> int:
        return OpCode.TEMPERATURE_CONTROL

    @property
    def parameter_byte(self) -> int:
        return TEMP_CONTROL_ENABLED if self.enable_control else TEMP_CONTROL_DISABLED


@dataclass(frozen=True)
class SetTargetTemperatureCommand(VMCCommand):
    temperature: int

    def validate(self) -> None:
        super().validate()
        _check_int("Temperature", self.temperature, MIN_TEMPERATURE, MAX_TEMPERATURE)

    @property
    def opcode_byte(self) -> int:
        return OpCode.SET_TARGET_TEMPERATURE

    @property
    def parameter_byte(self) -> int:
        # Two's complement byte for negative set-points
        return self.temperature & 0xFF


@dataclass(frozen=True)
class LightingControlCommand(VMCCommand):
    turn_on: bool

    def validate(self) -> None:
        super().validate()
        _check_flag("turn_on", self.turn_on)

    @property
    def opcode_byte(self) -> int:
        return OpCode.LIGHTING_CONTROL

    @property
    def parameter_byte(self) -> int:
        return LIGHT_ON if self.turn_on else LIGHT_OFF


@dataclass(frozen=True)
class DoorStatusCommand(VMCCommand):
    @property
    def opcode_byte(self) -> int:
        return OpCode.DOOR_STATUS

    @property
    def parameter_byte(self) -> int:
        return READ_PARAMETER


@dataclass(frozen=True)
class SetSlotModeCommand(VMCCommand):
    """Configure a slot as belt-driven or spiral-driven."""

    slot_number: int
    is_belt_mode: bool

    def validate(self) -> None:
        super().validate()
        _check_int("Slot number", self.slot_number, MIN_SLOT, MAX_SLOT)
        _check_flag("is_belt_mode", self.is_belt_mode)

    @property
    def opcode_byte(self) -> int:
        return OpCode.SET_BELT_SLOT if self.is_belt_mode else OpCode.SET_SPIRAL_SLOT

    @property
    def parameter_byte(self) -> int:
        return self.slot_number


@dataclass(frozen=True)
class SlotMergeCommand(VMCCommand):
    """Merge a slot with its neighbour (dual) or split it back (single)."""

    slot_number: int
    is_dual_slot: bool

    def validate(self) -> None:
        super().validate()
        _check_int("Slot number", self.slot_number, MIN_SLOT, MAX_SLOT)
        _check_flag("is_dual_slot", self.is_dual_slot)

    @property
    def opcode_byte(self) -> int:
        return OpCode.SET_DUAL_SLOT if self.is_dual_slot else OpCode.SET_SINGLE_SLOT

    @property
    def parameter_byte(self) -> int:
        return self.slot_number


@dataclass(frozen=True)
class RawCommand(VMCCommand):
    """Arbitrary D3/D5 bytes, for probing op-codes outside the catalog."""

    opcode: int
    parameter: int
    response_timeout: float = DEFAULT_TIMEOUT_S

    def validate(self) -> None:
        super().validate()
        _check_int("Op-code", self.opcode, 0, 0xFF)
        _check_int("Parameter", self.parameter, 0, 0xFF)
        if self.response_timeout <= 0:
            raise ValidationError(f"Timeout must be positive, got {self.response_timeout}")

    @property
    def opcode_byte(self) -> int:
        return self.opcode

    @property
    def parameter_byte(self) -> int:
        return self.parameter

    @property
    def timeout(self) -> float:  # type: ignore[override]
        return self.response_timeout


def build_dispense(board: int, slot_number: int, use_drop_sensor: bool = True) -> bytes:
    """Build a dispense frame.

    Args:
        board: Driver board number 0-255.
        slot_number: Slot 1-80.
        use_drop_sensor: Confirm delivery with the drop sensor.
    """
    return DispenseCommand(board, slot_number, use_drop_sensor).encode()


def build_self_check(board: int, check_drop_sensor: bool = True) -> bytes:
    return SelfCheckCommand(board, check_drop_sensor).encode()


def build_read_temperature(board: int) -> bytes:
    return ReadTemperatureCommand(board).encode()


def build_set_target_temperature(board: int, temperature: int) -> bytes:
    """Build a set-target-temperature frame.

    Args:
        board: Driver board number 0-255.
        temperature: Set-point in degrees Celsius, -50 to 100.
    """
    return SetTargetTemperatureCommand(board, temperature).encode()


def build_lighting(board: int, turn_on: bool) -> bytes:
    return LightingControlCommand(board, turn_on).encode()


def build_door_status(board: int) -> bytes:
    return DoorStatusCommand(board).encode()
