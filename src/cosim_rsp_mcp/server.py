"""MCP server entry point for the co-simulation debug bridge.

Exposes tools and resources via the Model Context Protocol using the
official Python MCP SDK with stdio transport. The tools start and stop the
GDB stub and inspect or drive the hart it serves.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import DEFAULT_HOST, MAX_PACKET_SIZE, RetryPolicy, StubConfig, default_port
from .errors import TransportError
from .models.hart import HartAccessError, MemoryHart
from .protocol.commands import CommandKind
from .session import GdbStubServer

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "cosim-rsp",
    instructions="Control a GDB remote serial protocol stub attached to a simulated hart",
)

# Global bridge state
_stub: GdbStubServer | None = None
_hart: MemoryHart | None = None
_hart_lock = threading.RLock()


def _get_hart() -> MemoryHart:
    """Get the simulated hart, creating it on first use."""
    global _hart
    if _hart is None:
        _hart = MemoryHart()
    return _hart


def _get_stub() -> GdbStubServer:
    """Get the running stub, raising if it was not started."""
    if _stub is None or not _stub.listening:
        raise RuntimeError(
            "Debug stub is not running. Use the 'start_debug_stub' tool first."
        )
    return _stub


# ─── STUB LIFECYCLE TOOLS ────────────────────────────────────────────

@mcp.tool()
def start_debug_stub(
    port: int | None = None,
    host: str = DEFAULT_HOST,
    attach_hart: bool = True,
    poll_interval: float = RetryPolicy.poll_interval,
    max_attempts: int = RetryPolicy.max_attempts,
) -> dict[str, Any]:
    """Start listening for a GDB connection.

    Args:
        port: TCP port (default from COSIM_RSP_PORT, else 10001; 0 picks a free port).
        host: Interface to bind.
        attach_hart: Serve registers and memory from the simulated hart.
            When False the stub answers with fixed placeholder replies.
        poll_interval: Seconds per wait attempt for acks.
        max_attempts: Wait attempts before an ack is given up on.
    """
    global _stub
    if _stub is not None and _stub.listening:
        return {"listening": True, "message": "Already running", **_stub.status()}

    try:
        config = StubConfig(
            host=host,
            port=default_port() if port is None else port,
            retry=RetryPolicy(poll_interval=poll_interval, max_attempts=max_attempts),
        )
    except ValueError as e:
        return {"error": str(e)}

    hart = _get_hart() if attach_hart else None
    stub = GdbStubServer(config, hart=hart, hart_lock=_hart_lock)
    try:
        bound_host, bound_port = stub.start()
    except TransportError as e:
        return {"error": str(e)}

    _stub = stub
    return {
        "listening": True,
        "host": bound_host,
        "port": bound_port,
        "hart_attached": hart is not None,
        "connect_with": f"target remote {bound_host}:{bound_port}",
    }


@mcp.tool()
def stop_debug_stub() -> dict[str, bool]:
    """Stop the stub, ending any debugger session."""
    global _stub
    if _stub is None:
        return {"stopped": True}
    _stub.stop()
    _stub = None
    return {"stopped": True}


@mcp.tool()
def get_stub_status() -> dict[str, Any]:
    """Report listener state, the active session and its exchange counters."""
    if _stub is None:
        return {"listening": False}
    return _stub.status()


# ─── HART TOOLS ──────────────────────────────────────────────────────

@mcp.tool()
def read_hart_state() -> dict[str, Any]:
    """Read the simulated hart's pc, integer registers and injected traps."""
    hart = _get_hart()
    with _hart_lock:
        return hart.to_dict()


@mcp.tool()
def step_hart(count: int = 1) -> dict[str, Any]:
    """Retire instructions on the simulated hart.

    Args:
        count: Number of instructions (1-100000).
    """
    if not 1 <= count <= 100000:
        return {"error": "count must be 1-100000"}

    hart = _get_hart()
    retired = 0
    with _hart_lock:
        for _ in range(count):
            if hart.exited:
                break
            hart.step()
            retired += 1
        return {"retired": retired, "pc": f"0x{hart.pc:x}", "exited": hart.exited}


@mcp.tool()
def inject_trap(cause: int) -> dict[str, Any]:
    """Inject a trap into the simulated hart.

    Args:
        cause: Trap cause code (e.g. 2 = illegal instruction, 3 = breakpoint).
    """
    hart = _get_hart()
    with _hart_lock:
        hart.raise_trap(cause)
        return {"injected": True, "cause": cause, "pc": f"0x{hart.pc:x}"}


@mcp.tool()
def read_hart_memory(address: int, length: int) -> dict[str, Any]:
    """Read bytes from the simulated hart's memory.

    Args:
        address: Start address.
        length: Number of bytes (max 8192).
    """
    if not 0 <= length <= MAX_PACKET_SIZE // 2:
        return {"error": f"length must be 0-{MAX_PACKET_SIZE // 2}"}

    hart = _get_hart()
    try:
        with _hart_lock:
            data = hart.read_memory(address, length)
    except HartAccessError as e:
        return {"error": str(e)}
    return {"address": f"0x{address:x}", "data": data.hex()}


@mcp.tool()
def write_hart_memory(address: int, data_hex: str) -> dict[str, Any]:
    """Write bytes into the simulated hart's memory.

    Args:
        address: Start address.
        data_hex: Bytes to write as a hex string.
    """
    try:
        data = bytes.fromhex(data_hex)
    except ValueError as e:
        return {"error": f"data_hex is not valid hex: {e}"}

    hart = _get_hart()
    try:
        with _hart_lock:
            hart.write_memory(address, data)
    except HartAccessError as e:
        return {"error": str(e)}
    return {"written": len(data), "address": f"0x{address:x}"}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("rsp://stub/status")
def resource_stub_status() -> str:
    """Listener state and session counters."""
    if _stub is None:
        return json.dumps({"listening": False})
    return json.dumps(_stub.status())


@mcp.resource("rsp://protocol/commands")
def resource_protocol_commands() -> str:
    """Packets the stub recognizes, keyed by command byte."""
    return json.dumps({
        "packet_size": MAX_PACKET_SIZE,
        "commands": {
            (chr(kind.value) if kind.value >= 0x20 else f"0x{kind.value:02x}"): kind.name
            for kind in CommandKind
            if kind is not CommandKind.UNKNOWN
        },
    })


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def attach_debugger(port: int = 10001) -> str:
    """Walk through attaching GDB to the stub."""
    return f"""Start the stub with the start_debug_stub tool (port {port}).
Then, in a RISC-V GDB:

    (gdb) target remote localhost:{port}
    (gdb) info registers
    (gdb) x/4xw $pc
    (gdb) stepi

Use get_stub_status to watch checksum failures and retransmissions,
and inject_trap to exercise trap handling in the simulated hart."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    # stdout carries the MCP stream
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
