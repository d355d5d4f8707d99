"""Shared fixtures: an in-memory transport driven by a script of reads."""

from __future__ import annotations

from collections import deque

import pytest

from cosim_rsp_mcp.config import RetryPolicy
from cosim_rsp_mcp.errors import TransportError
from cosim_rsp_mcp.models.hart import HartAccessError, MemoryHart
from cosim_rsp_mcp.protocol.state import SessionState

# No sleeping in tests; a handful of polls is plenty for scripted input
FAST_RETRY = RetryPolicy(poll_interval=0.0, max_attempts=5, max_resends=3)


class ScriptedTransport:
    """Transport whose reads come from a list of chunks.

    A ``None`` entry is one read that finds nothing ready. Chunks longer than
    the requested size are split across reads. Once the script is used up,
    reads return None, or ``b""`` if ``eof`` is set.
    """

    def __init__(self, chunks=(), eof: bool = False, write_limit: int | None = None):
        self.incoming = deque(chunks)
        self.eof = eof
        self.write_limit = write_limit
        self.written = bytearray()
        self.writes: list[bytes] = []
        self.closed = False

    def read(self, max_bytes: int, timeout: float = 0.0) -> bytes | None:
        if self.closed:
            raise TransportError("Not connected to debugger")
        if not self.incoming:
            return b"" if self.eof else None
        chunk = self.incoming.popleft()
        if chunk is None:
            return None
        if len(chunk) > max_bytes:
            self.incoming.appendleft(chunk[max_bytes:])
            chunk = chunk[:max_bytes]
        return chunk

    def write(self, data: bytes) -> int:
        if self.closed:
            raise TransportError("Not connected to debugger")
        if self.write_limit is not None:
            data = data[: self.write_limit]
        self.written += data
        if data:
            self.writes.append(bytes(data))
        return len(data)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def session(transport):
    return SessionState(transport=transport, retry=FAST_RETRY)


class FaultingHart(MemoryHart):
    """Hart whose step fails, and whose x1 holds a value wider than xlen."""

    def step(self) -> bool:
        raise HartAccessError(f"instruction fetch fault at 0x{self.pc:x}")

    def read_register(self, index: int) -> int:
        if index == 1:
            return 1 << self.xlen
        return super().read_register(index)
