"""Per-connection session state shared by the receiver, sender and dispatcher."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..config import WIRE_BUFFER_SIZE, RetryPolicy
from ..errors import BufferOverflowError
from ..transport import Transport


class WireBuffer:
    """Fixed-capacity byte accumulator for partially received frames.

    Appending past ``capacity`` raises instead of truncating. Consumed
    frames are removed with :meth:`drain`, which compacts the remainder to
    the front.
    """

    def __init__(self, capacity: int = WIRE_BUFFER_SIZE) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._data = bytearray()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def free(self) -> int:
        return self._capacity - len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __getitem__(self, index: int) -> int:
        return self._data[index]

    def __bytes__(self) -> bytes:
        return bytes(self._data)

    def append(self, data: bytes) -> None:
        """Append ``data``.

        Raises:
            BufferOverflowError: If the result would exceed the capacity.
        """
        if len(data) > self.free:
            raise BufferOverflowError(
                f"receive buffer overflow: {len(self._data)} + {len(data)} "
                f"bytes exceeds capacity {self._capacity}"
            )
        self._data += data

    def find(self, sub: bytes, start: int = 0) -> int:
        return self._data.find(sub, start)

    def peek(self, start: int, end: int) -> bytes:
        return bytes(self._data[start:end])

    def drain(self, count: int) -> bytes:
        """Remove and return the first ``count`` bytes."""
        if not 0 <= count <= len(self._data):
            raise ValueError(f"cannot drain {count} of {len(self._data)} bytes")
        head = bytes(self._data[:count])
        del self._data[:count]
        return head

    def remove(self, index: int) -> int:
        """Remove the single byte at ``index`` and return it."""
        byte = self._data[index]
        del self._data[index]
        return byte

    def clear(self) -> None:
        self._data.clear()


@dataclass
class SessionStats:
    """Exchange and retry counters for one connection."""

    frames_received: int = 0
    interrupts: int = 0
    checksum_failures: int = 0
    rejected_frames: int = 0
    noise_bytes: int = 0
    replies_sent: int = 0
    naks_received: int = 0
    retransmissions: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "frames_received": self.frames_received,
            "interrupts": self.interrupts,
            "checksum_failures": self.checksum_failures,
            "rejected_frames": self.rejected_frames,
            "noise_bytes": self.noise_bytes,
            "replies_sent": self.replies_sent,
            "naks_received": self.naks_received,
            "retransmissions": self.retransmissions,
        }


@dataclass
class SessionState:
    """Everything owned by one debugger connection."""

    transport: Transport
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    buffer: WireBuffer = field(default_factory=WireBuffer)
    stats: SessionStats = field(default_factory=SessionStats)
    running: bool = False
    closed: bool = False
    close_reason: str = ""
