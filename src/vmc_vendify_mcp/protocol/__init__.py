"""Protocol layer: frame codec, command catalog, response views, stream framer."""

from .framing import Response, build_frame, decode_response, encode_command
from .commands import (
    OpCode,
    VMCCommand,
    DispenseCommand,
    SelfCheckCommand,
    ReadTemperatureCommand,
    TemperatureControlCommand,
    SetTargetTemperatureCommand,
    LightingControlCommand,
    DoorStatusCommand,
    SetSlotModeCommand,
    SlotMergeCommand,
    RawCommand,
)
from .stream import StreamFramer
