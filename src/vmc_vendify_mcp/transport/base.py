"""Transport contract shared by every byte-stream backend."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class DeviceInfo:
    """Identification of the remote end of an open transport."""

    address: str = ""
    name: str = ""
    backend: str = ""


class Transport(Protocol):
    """Bidirectional byte stream to a VMC.

    ``read`` blocks until at least one byte is available. It returns
    ``b""`` once the stream has ended (including after ``close``) and
    raises ``OSError`` when the link breaks.
    """

    @property
    def is_open(self) -> bool:  # pragma: no cover - protocol signature
        ...

    def open(self, address: str) -> DeviceInfo:  # pragma: no cover - protocol signature
        ...

    def write(self, data: bytes) -> int:  # pragma: no cover - protocol signature
        ...

    def read(self, size: int) -> bytes:  # pragma: no cover - protocol signature
        ...

    def close(self) -> None:  # pragma: no cover - protocol signature
        ...
