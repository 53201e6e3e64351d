"""Complement and checksum arithmetic for VMC frames.

Command frames protect each meaningful byte with its bitwise complement
(``0xFF - b``). Response frames carry a single additive checksum byte:
the low 8 bits of the sum of the four preceding bytes.
"""

from __future__ import annotations


def complement(value: int) -> int:
    """Return the one-byte complement ``0xFF - value``."""
    return (0xFF - value) & 0xFF


def response_checksum(data: bytes) -> int:
    """Return ``sum(data) mod 256`` for the leading bytes of a response.

    Args:
        data: The bytes covered by the checksum (R1..R4).
    """
    return sum(data) & 0xFF


def is_complement_pair(value: int, check: int) -> bool:
    """True if *check* is the complement of *value*."""
    return complement(value) == check
