"""Command frame builder and response frame decoder.

Command frame (host to VMC), always 6 bytes::

    +-------+-------+-------+-------+-------+-------+
    |  D1   |  D2   |  D3   |  D4   |  D5   |  D6   |
    | board | ~D1   | op/slot| ~D3  | param | ~D5   |
    +-------+-------+-------+-------+-------+-------+

- D1: driver board number (0-255)
- D3: op-code, or the slot number (1-80) for a dispense
- D5: variant-specific parameter byte
- D2, D4, D6: ``0xFF - D1``, ``0xFF - D3``, ``0xFF - D5``

Response frame (VMC to host), always 5 bytes::

    +-------+--------+-------+---------+----------+
    |  R1   |   R2   |  R3   |   R4    |    R5    |
    | board | status | error | product | checksum |
    +-------+--------+-------+---------+----------+

- R2: 0x5D success, anything else (normally 0x5C) failure
- R3: error code; upper nibble motor/MOSFET fault, lower nibble drop
  sensor fault. Some read commands place data here instead.
- R4: product delivery flag (0xAA delivered, 0x00 none) or data
- R5: ``(R1 + R2 + R3 + R4) & 0xFF``
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING

from ..errors import FrameFormatError, ValidationError
from ..utils.checksum import complement, is_complement_pair, response_checksum

if TYPE_CHECKING:
    from .commands import VMCCommand

COMMAND_FRAME_SIZE = 6
RESPONSE_FRAME_SIZE = 5

STATUS_NORMAL = 0x5D
STATUS_ABNORMAL = 0x5C

NO_PRODUCT_DELIVERY = 0x00
PRODUCT_DELIVERED = 0xAA


class MotorFault(IntEnum):
    """Upper nibble of the response error code."""

    NORMAL = 0
    PMOS_SHORT = 1
    NMOS_SHORT = 2
    MOTOR_SHORT = 3
    MOTOR_OPEN = 4
    ROTATION_TIMEOUT = 5


class SensorFault(IntEnum):
    """Lower nibble of the response error code."""

    NORMAL = 0
    SIGNAL_WHILE_IDLE = 1
    NO_SIGNAL_WHILE_DISABLED = 2
    SIGNAL_DURING_PASS_THROUGH = 3


MOTOR_FAULT_TEXT: dict[MotorFault, str] = {
    MotorFault.NORMAL: "Motor and MOSFET normal",
    MotorFault.PMOS_SHORT: "PMOS short circuit",
    MotorFault.NMOS_SHORT: "NMOS short circuit",
    MotorFault.MOTOR_SHORT: "Motor short circuit",
    MotorFault.MOTOR_OPEN: "Motor open circuit",
    MotorFault.ROTATION_TIMEOUT: "Motor rotation timeout",
}

SENSOR_FAULT_TEXT: dict[SensorFault, str] = {
    SensorFault.NORMAL: "Drop sensor normal",
    SensorFault.SIGNAL_WHILE_IDLE: "Signal output when no emission in drop sensor",
    SensorFault.NO_SIGNAL_WHILE_DISABLED: "No signal output when drop sensor disabled",
    SensorFault.SIGNAL_DURING_PASS_THROUGH: (
        "Signal output when product passing through drop sensor"
    ),
}


@dataclass(frozen=True)
class Response:
    """A decoded 5-byte response frame."""

    driver_board_number: int
    status: int
    error_code: int
    product_flag: int
    checksum: int
    is_checksum_valid: bool

    @property
    def is_success(self) -> bool:
        return self.status == STATUS_NORMAL

    @property
    def has_product_delivery(self) -> bool:
        return self.product_flag == PRODUCT_DELIVERED

    @property
    def motor_fault(self) -> int:
        return (self.error_code >> 4) & 0x0F

    @property
    def sensor_fault(self) -> int:
        return self.error_code & 0x0F

    @property
    def error_description(self) -> str:
        return error_description(self)

    @property
    def raw(self) -> bytes:
        return bytes([
            self.driver_board_number,
            self.status,
            self.error_code,
            self.product_flag,
            self.checksum,
        ])

    def __repr__(self) -> str:
        return (
            f"Response(board={self.driver_board_number}, "
            f"success={self.is_success}, "
            f"error=0x{self.error_code:02X}, "
            f"product={'delivered' if self.has_product_delivery else 'none'}, "
            f"checksum={'valid' if self.is_checksum_valid else 'invalid'})"
        )


def build_frame(d1: int, d3: int, d5: int) -> bytes:
    """Build a 6-byte command frame from its three meaningful bytes.

    Args:
        d1: Driver board number.
        d3: Op-code, or slot number for a dispense.
        d5: Parameter byte.

    Raises:
        ValidationError: If any byte is outside 0-255.
    """
    for name, value in (("D1", d1), ("D3", d3), ("D5", d5)):
        if not 0 <= value <= 0xFF:
            raise ValidationError(f"{name} must be 0-255, got {value}")
    return bytes([d1, complement(d1), d3, complement(d3), d5, complement(d5)])


def encode_command(command: VMCCommand) -> bytes:
    """Validate *command* and encode it into a 6-byte frame.

    Raises:
        ValidationError: If the command's parameters are out of range.
            Nothing is encoded in that case.
    """
    command.validate()
    return build_frame(
        command.driver_board_number,
        command.opcode_byte,
        command.parameter_byte,
    )


def is_valid_command_frame(data: bytes) -> bool:
    """True if *data* is 6 bytes and all three complement pairs hold."""
    if len(data) != COMMAND_FRAME_SIZE:
        return False
    return all(
        is_complement_pair(data[i], data[i + 1]) for i in range(0, COMMAND_FRAME_SIZE, 2)
    )


def build_response(
    board: int,
    status: int,
    error_code: int = 0x00,
    product_flag: int = NO_PRODUCT_DELIVERY,
) -> bytes:
    """Build a 5-byte response frame with a correct checksum."""
    body = bytes([board, status, error_code, product_flag])
    return body + bytes([response_checksum(body)])


def decode_response(data: bytes) -> Response:
    """Decode a 5-byte response frame.

    Decoding never fails on content: a frame with a bad checksum decodes
    with ``is_checksum_valid=False`` and it is up to the caller to treat
    it as noise.

    Raises:
        FrameFormatError: If *data* is not exactly 5 bytes long.
    """
    if len(data) != RESPONSE_FRAME_SIZE:
        raise FrameFormatError(
            f"Response must be exactly {RESPONSE_FRAME_SIZE} bytes, got {len(data)}"
        )
    r1, r2, r3, r4, r5 = data
    return Response(
        driver_board_number=r1,
        status=r2,
        error_code=r3,
        product_flag=r4,
        checksum=r5,
        is_checksum_valid=response_checksum(data[:4]) == r5,
    )


def error_description(response: Response) -> str:
    """Human-readable reading of a response's error code."""
    if response.is_success:
        return "Operation successful"

    motor = response.motor_fault
    sensor = response.sensor_fault
    try:
        motor_text = MOTOR_FAULT_TEXT[MotorFault(motor)]
    except ValueError:
        motor_text = f"Unknown motor error ({motor})"
    try:
        sensor_text = SENSOR_FAULT_TEXT[SensorFault(sensor)]
    except ValueError:
        sensor_text = f"Unknown sensor error ({sensor})"
    return f"{motor_text}; {sensor_text}"
