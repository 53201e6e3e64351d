"""Resynchronising decoder for the inbound response byte stream.

The protocol has no start-of-frame marker, so the framer treats every
5-byte window at the head of its buffer as a candidate frame. A window
with a valid checksum is a response and is consumed whole; any other
window costs exactly one byte. Each pass shrinks the buffer, so feeding
any finite input always terminates.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .framing import RESPONSE_FRAME_SIZE, Response, decode_response

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER_SIZE = 4096
DEFAULT_RESYNC_WARNING_THRESHOLD = 64

ResponseHandler = Callable[[Response], None]


class StreamFramer:
    """Turns arbitrary byte chunks into checksum-valid responses.

    Usage::

        framer = StreamFramer(on_response=handle)
        framer.feed(chunk)

    The framer is not thread-safe; the owning session serialises calls.
    """

    def __init__(
        self,
        on_response: Optional[ResponseHandler] = None,
        max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
        resync_warning_threshold: int = DEFAULT_RESYNC_WARNING_THRESHOLD,
    ) -> None:
        if max_buffer_size < RESPONSE_FRAME_SIZE:
            raise ValueError(
                f"max_buffer_size must be at least {RESPONSE_FRAME_SIZE}, got {max_buffer_size}"
            )
        self._buffer = bytearray()
        self._on_response = on_response
        self._max_buffer_size = max_buffer_size
        self._resync_warning_threshold = resync_warning_threshold
        self._resync_streak = 0
        self.bytes_fed = 0
        self.bytes_discarded = 0
        self.frames_decoded = 0
        self.resync_count = 0

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for more input."""
        return len(self._buffer)

    @property
    def pending_bytes(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> list[Response]:
        """Append *chunk* and extract every complete response.

        Returns:
            The responses found, in stream order. Each one is also passed
            to the ``on_response`` callback, if set.
        """
        self.bytes_fed += len(chunk)
        self._buffer.extend(chunk)
        self._enforce_cap()

        responses: list[Response] = []
        while len(self._buffer) >= RESPONSE_FRAME_SIZE:
            candidate = decode_response(bytes(self._buffer[:RESPONSE_FRAME_SIZE]))
            if candidate.is_checksum_valid:
                del self._buffer[:RESPONSE_FRAME_SIZE]
                self.frames_decoded += 1
                self._resync_streak = 0
                logger.debug("RX frame %s", candidate.raw.hex(" "))
                responses.append(candidate)
                if self._on_response is not None:
                    self._on_response(candidate)
            else:
                dropped = self._buffer.pop(0)
                self.bytes_discarded += 1
                self.resync_count += 1
                self._resync_streak += 1
                logger.debug("Checksum mismatch, dropped 0x%02X to resync", dropped)
                if self._resync_streak == self._resync_warning_threshold:
                    logger.warning(
                        "No valid frame in the last %d bytes; link may be noisy",
                        self._resync_streak,
                    )
        return responses

    def reset(self) -> None:
        """Discard any partial frame. Counters are kept."""
        if self._buffer:
            logger.debug("Clearing %d buffered bytes", len(self._buffer))
            self.bytes_discarded += len(self._buffer)
            self._buffer.clear()
        self._resync_streak = 0

    def stats(self) -> dict[str, int]:
        return {
            "bytes_fed": self.bytes_fed,
            "bytes_discarded": self.bytes_discarded,
            "frames_decoded": self.frames_decoded,
            "resync_count": self.resync_count,
            "buffered": len(self._buffer),
        }

    def _enforce_cap(self) -> None:
        excess = len(self._buffer) - self._max_buffer_size
        if excess > 0:
            logger.warning(
                "Receive buffer over %d bytes, discarding %d oldest",
                self._max_buffer_size,
                excess,
            )
            del self._buffer[:excess]
            self.bytes_discarded += excess
