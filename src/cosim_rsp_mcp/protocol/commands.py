"""Command kinds and packet-to-command parsing.

Each kind is identified by the leading byte of the packet body. The
interrupt byte is not a packet at all but is surfaced as a command so the
session can treat it uniformly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

INTERRUPT_BYTE = 0x03


class CommandKind(IntEnum):
    """Supported command identifiers."""

    UNKNOWN = 0x00
    INTERRUPT = INTERRUPT_BYTE
    QUERY_STOP_REASON = ord("?")
    CONTINUE = ord("c")
    DETACH = ord("D")
    READ_ALL_REGISTERS = ord("g")
    WRITE_ALL_REGISTERS = ord("G")
    READ_MEMORY = ord("m")
    WRITE_MEMORY = ord("M")
    READ_REGISTER = ord("p")
    WRITE_REGISTER = ord("P")
    QUERY = ord("q")
    STEP = ord("s")


_KINDS_BY_BYTE: dict[int, CommandKind] = {
    kind.value: kind
    for kind in CommandKind
    if kind not in (CommandKind.UNKNOWN, CommandKind.INTERRUPT)
}


@dataclass(frozen=True)
class Command:
    """A decoded request from the debugger."""

    kind: CommandKind
    data: bytes = b""

    @property
    def args(self) -> bytes:
        """Packet body after the command byte."""
        return self.data[1:]

    @property
    def text(self) -> str:
        return self.data.decode("latin-1")

    def __repr__(self) -> str:
        return f"Command({self.kind.name}, {self.data!r})"


INTERRUPT = Command(CommandKind.INTERRUPT, bytes([INTERRUPT_BYTE]))


def parse_command(body: bytes) -> Command:
    """Classify an unescaped packet body.

    Unrecognized leading bytes, and the empty packet, yield an
    ``UNKNOWN`` command that keeps the raw bytes.
    """
    if not body:
        return Command(CommandKind.UNKNOWN, body)
    kind = _KINDS_BY_BYTE.get(body[0], CommandKind.UNKNOWN)
    return Command(kind, body)
