"""Byte escaping and checksum for RSP packets.

Reserved bytes ``$ # * }`` never appear raw inside a packet body. Each one is
sent as the escape byte ``}`` followed by the original byte XOR 0x20::

    '#' (0x23)  ->  '}' (0x7D) 0x03

The checksum is the modulo-256 sum of the body bytes exactly as they appear
on the wire, i.e. after escaping. Both directions checksum the wire form,
never the logical payload.
"""

from __future__ import annotations

from ..errors import BufferTooSmall, TruncatedEscape

ESCAPE = 0x7D  # '}'
ESCAPE_XOR = 0x20
RESERVED = frozenset(b"$#*}")

_HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")


def escape(data: bytes, capacity: int | None = None) -> bytes:
    """Escape reserved bytes for transmission.

    Args:
        data: Logical payload bytes.
        capacity: Maximum size of the escaped result, or None for unbounded.

    Raises:
        BufferTooSmall: If the escaped form would exceed ``capacity``.
    """
    out = bytearray()
    for byte in data:
        if byte in RESERVED:
            out.append(ESCAPE)
            out.append(byte ^ ESCAPE_XOR)
        else:
            out.append(byte)
        if capacity is not None and len(out) > capacity:
            raise BufferTooSmall(
                f"escaped data exceeds {capacity} bytes"
            )
    return bytes(out)


def unescape(data: bytes, capacity: int | None = None) -> bytes:
    """Reverse :func:`escape`.

    Raises:
        TruncatedEscape: If ``data`` ends in an unpaired escape byte.
        BufferTooSmall: If the decoded form would exceed ``capacity``.
    """
    out = bytearray()
    i = 0
    while i < len(data):
        byte = data[i]
        if byte == ESCAPE:
            if i + 1 >= len(data):
                raise TruncatedEscape("data ends in an escape byte")
            byte = data[i + 1] ^ ESCAPE_XOR
            i += 2
        else:
            i += 1
        if capacity is not None and len(out) >= capacity:
            raise BufferTooSmall(f"unescaped data exceeds {capacity} bytes")
        out.append(byte)
    return bytes(out)


def checksum(data: bytes) -> int:
    """8-bit additive checksum over ``data``."""
    return sum(data) & 0xFF


def format_checksum(value: int) -> bytes:
    """Render a checksum as two lowercase hex digits."""
    return b"%02x" % (value & 0xFF)


def parse_checksum(digits: bytes) -> int | None:
    """Decode two hex digits, or return None if they are not hex."""
    if len(digits) != 2 or not all(d in _HEX_DIGITS for d in digits):
        return None
    return int(digits, 16)
