"""Runtime configuration for the VMC link."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Mapping, Optional

DEFAULT_RFCOMM_CHANNEL = 1
DEFAULT_BAUDRATE = 9600
DEFAULT_TIMEOUT_S = 5.0
DISPENSE_TIMEOUT_S = 10.0

# Environment variable -> (field name, converter)
_ENV_FIELDS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "VMC_ADDRESS": ("address", str),
    "VMC_RFCOMM_CHANNEL": ("rfcomm_channel", int),
    "VMC_BAUDRATE": ("baudrate", int),
    "VMC_READ_CHUNK_SIZE": ("read_chunk_size", int),
    "VMC_DEFAULT_TIMEOUT": ("default_timeout_s", float),
    "VMC_DISPENSE_TIMEOUT": ("dispense_timeout_s", float),
    "VMC_MAX_BUFFER": ("max_buffer_size", int),
    "VMC_LOG_LEVEL": ("log_level", str),
}


@dataclass(slots=True)
class LinkConfig:
    """Transport and protocol-engine parameters for one VMC connection."""

    address: Optional[str] = None
    rfcomm_channel: int = DEFAULT_RFCOMM_CHANNEL
    baudrate: int = DEFAULT_BAUDRATE
    read_chunk_size: int = 1024
    read_poll_timeout_s: float = 0.5
    default_timeout_s: float = DEFAULT_TIMEOUT_S
    dispense_timeout_s: float = DISPENSE_TIMEOUT_S
    inter_command_delay_s: float = 0.1
    max_buffer_size: int = 4096
    resync_warning_threshold: int = 64
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 1 <= self.rfcomm_channel <= 30:
            raise ValueError(f"RFCOMM channel must be 1-30, got {self.rfcomm_channel}")
        if self.read_chunk_size < 1:
            raise ValueError(f"read_chunk_size must be positive, got {self.read_chunk_size}")
        if self.default_timeout_s <= 0 or self.dispense_timeout_s <= 0:
            raise ValueError("Response timeouts must be positive")
        if self.max_buffer_size < 5:
            raise ValueError(f"max_buffer_size must hold at least one frame, got {self.max_buffer_size}")
        self.log_level = self.log_level.upper()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LinkConfig":
        """Build a config from ``VMC_*`` environment variables.

        Unset variables keep their defaults. A value that cannot be
        converted raises ``ValueError`` naming the variable.
        """

        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, (field_name, convert) in _ENV_FIELDS.items():
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                continue
            try:
                values[field_name] = convert(raw.strip())
            except ValueError as exc:
                raise ValueError(f"Invalid value for {name}: {raw!r}") from exc
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


__all__ = ["LinkConfig"]
