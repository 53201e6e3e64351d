"""Typed views over responses to read commands."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import CommandFailedError
from .framing import Response

DOOR_OPEN_FLAG = 0x01


def _signed_byte(value: int) -> int:
    return value - 0x100 if value & 0x80 else value


@dataclass(frozen=True)
class TemperatureData:
    """Parsed read-temperature reply: R3 current, R4 standby set-point."""

    current_temperature: int
    standby_temperature: int

    @classmethod
    def from_response(cls, response: Response) -> TemperatureData:
        return cls(
            current_temperature=_signed_byte(response.error_code),
            standby_temperature=_signed_byte(response.product_flag),
        )

    def __str__(self) -> str:
        return (
            f"Temperature: {self.current_temperature}°C, "
            f"Standby: {self.standby_temperature}°C"
        )


@dataclass(frozen=True)
class DoorStatusData:
    """Parsed door-status reply."""

    is_open: bool

    @classmethod
    def from_response(cls, response: Response) -> DoorStatusData:
        return cls(is_open=response.product_flag == DOOR_OPEN_FLAG)

    def __str__(self) -> str:
        return f"Door is {'OPEN' if self.is_open else 'CLOSED'}"


def parse_temperature(response: Response) -> TemperatureData:
    """Read the temperature fields out of a successful response.

    Raises:
        CommandFailedError: If the device reported failure.
    """
    if not response.is_success:
        raise CommandFailedError("Failed to read temperature", response)
    return TemperatureData.from_response(response)


def parse_door_status(response: Response) -> DoorStatusData:
    """Read the door flag out of a successful response.

    Raises:
        CommandFailedError: If the device reported failure.
    """
    if not response.is_success:
        raise CommandFailedError("Failed to read door status", response)
    return DoorStatusData.from_response(response)


def response_to_dict(response: Response) -> dict[str, Any]:
    """JSON-friendly summary of a response, as returned by the MCP tools."""
    return {
        "board": response.driver_board_number,
        "success": response.is_success,
        "error_code": f"0x{response.error_code:02X}",
        "error_description": response.error_description,
        "product_delivered": response.has_product_delivery,
        "raw": response.raw.hex(" "),
    }
