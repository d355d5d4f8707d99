"""Command dispatch: turns each decoded command into a reply payload.

Without a hart attached the stub answers with fixed replies (a zeroed
register file, ``T05`` stop reason, empty replies for everything it does
not handle). With a :class:`~cosim_rsp_mcp.models.hart.GoldenModelAdapter`
attached, register, memory and execution commands are served from the hart.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from ..config import MAX_PACKET_SIZE
from ..models.hart import NUM_FP_REGISTERS, NUM_INT_REGISTERS, GoldenModelAdapter, HartAccessError
from .commands import Command, CommandKind
from .state import SessionState

logger = logging.getLogger(__name__)

STUB_XLEN = 32
FLEN = 64
PC_REGNUM = NUM_INT_REGISTERS
FIRST_FP_REGNUM = PC_REGNUM + 1

SIGINT = 0x02
SIGTRAP = 0x05
SIGSEGV = 0x0B

# Fixed error reply codes, independent of the host's errno values
ERR_BAD_REGISTER = 0x00
ERR_MALFORMED = 0x01
ERR_ACCESS = 0x0E

OK = b"OK"
EMPTY = b""

Handler = Callable[[Command], "bytes | None"]


def encode_register(value: int, width_bits: int) -> bytes:
    """Hex-encode a register in target (little-endian) byte order."""
    return value.to_bytes(width_bits // 8, "little").hex().encode("ascii")


def decode_register(digits: bytes) -> int:
    return int.from_bytes(bytes.fromhex(digits.decode("ascii")), "little")


def error_reply(code: int) -> bytes:
    return b"E%02x" % (code & 0xFF)


def stop_reply(signal: int) -> bytes:
    return b"T%02x" % signal


class SessionDispatcher:
    """Maps commands to replies for one session.

    :meth:`dispatch` returns the reply payload, ``b""`` for the
    "unsupported" reply, or None when the protocol expects no reply.
    """

    def __init__(
        self,
        session: SessionState,
        hart: GoldenModelAdapter | None = None,
        hart_lock: threading.RLock | None = None,
    ) -> None:
        self._session = session
        self._hart = hart
        self._lock = hart_lock or threading.RLock()
        self._dispatch_table = self._build_dispatch_table()

    @property
    def attached(self) -> bool:
        return self._hart is not None

    def dispatch(self, command: Command) -> bytes | None:
        handler = self._dispatch_table.get(command.kind, self._handle_unsupported)
        try:
            return handler(command)
        except (ValueError, IndexError) as e:
            logger.warning("Malformed %s packet %r: %s", command.kind.name, command.data, e)
            return error_reply(ERR_MALFORMED)
        except (HartAccessError, OverflowError) as e:
            logger.warning("Hart rejected %s: %s", command.kind.name, e)
            return error_reply(ERR_ACCESS)

    def step_running(self) -> bytes | None:
        """Advance a continuing hart by one instruction.

        Returns:
            A stop reply when the hart exits or faults, otherwise None.
        """
        if not self._session.running or self._hart is None:
            return None
        try:
            with self._lock:
                alive = self._hart.step()
        except HartAccessError as e:
            self._session.running = False
            logger.warning("Hart faulted while running: %s", e)
            return stop_reply(SIGSEGV)
        if alive:
            return None
        self._session.running = False
        logger.info("Hart exited while running")
        return b"W00"

    def _build_dispatch_table(self) -> dict[CommandKind, Handler]:
        return {
            CommandKind.INTERRUPT: self._handle_interrupt,
            CommandKind.QUERY_STOP_REASON: self._handle_stop_reason,
            CommandKind.READ_ALL_REGISTERS: self._handle_read_all_registers,
            CommandKind.WRITE_ALL_REGISTERS: self._handle_write_all_registers,
            CommandKind.READ_REGISTER: self._handle_read_register,
            CommandKind.WRITE_REGISTER: self._handle_write_register,
            CommandKind.READ_MEMORY: self._handle_read_memory,
            CommandKind.WRITE_MEMORY: self._handle_write_memory,
            CommandKind.QUERY: self._handle_query,
            CommandKind.STEP: self._handle_step,
            CommandKind.CONTINUE: self._handle_continue,
            CommandKind.DETACH: self._handle_detach,
        }

    def _handle_unsupported(self, command: Command) -> bytes:
        logger.info("Unsupported packet %r", command.data)
        return EMPTY

    def _handle_interrupt(self, command: Command) -> bytes | None:
        if not self._session.running:
            logger.info("Interrupt received while halted")
            return None
        self._session.running = False
        logger.info("Interrupt received; halting hart")
        return stop_reply(SIGINT)

    def _handle_stop_reason(self, command: Command) -> bytes:
        return stop_reply(SIGTRAP)

    def _handle_read_all_registers(self, command: Command) -> bytes:
        if self._hart is None:
            return encode_register(0, STUB_XLEN) * (NUM_INT_REGISTERS + 1)

        xlen = self._hart.xlen
        with self._lock:
            values = [self._hart.read_register(i) for i in range(NUM_INT_REGISTERS)]
            values.append(self._hart.read_pc())
        return b"".join(encode_register(v, xlen) for v in values)

    def _handle_write_all_registers(self, command: Command) -> bytes:
        if self._hart is None:
            return self._handle_unsupported(command)

        width = self._hart.xlen // 4
        digits = command.args
        if not digits or len(digits) % width:
            raise ValueError(f"register data length {len(digits)} is not a multiple of {width}")
        values = [decode_register(digits[i : i + width]) for i in range(0, len(digits), width)]
        if len(values) > NUM_INT_REGISTERS + 1:
            raise ValueError(f"{len(values)} registers supplied")

        with self._lock:
            for index, value in enumerate(values):
                if index == PC_REGNUM:
                    self._hart.write_pc(value)
                else:
                    self._hart.write_register(index, value)
        return OK

    def _handle_read_register(self, command: Command) -> bytes:
        if self._hart is None:
            return self._handle_unsupported(command)

        regnum = int(command.args, 16)
        if regnum < 0:
            return error_reply(ERR_BAD_REGISTER)
        with self._lock:
            if regnum < NUM_INT_REGISTERS:
                return encode_register(self._hart.read_register(regnum), self._hart.xlen)
            if regnum == PC_REGNUM:
                return encode_register(self._hart.read_pc(), self._hart.xlen)
            if regnum < FIRST_FP_REGNUM + NUM_FP_REGISTERS:
                value = self._hart.read_fp_register(regnum - FIRST_FP_REGNUM)
                return encode_register(value, FLEN)
        return error_reply(ERR_BAD_REGISTER)

    def _handle_write_register(self, command: Command) -> bytes:
        if self._hart is None:
            return self._handle_unsupported(command)

        regnum_hex, _, digits = command.args.partition(b"=")
        regnum = int(regnum_hex, 16)
        if regnum < 0:
            return error_reply(ERR_BAD_REGISTER)
        value = decode_register(digits)
        with self._lock:
            if regnum < NUM_INT_REGISTERS:
                self._hart.write_register(regnum, value)
            elif regnum == PC_REGNUM:
                self._hart.write_pc(value)
            elif regnum < FIRST_FP_REGNUM + NUM_FP_REGISTERS:
                self._hart.write_fp_register(regnum - FIRST_FP_REGNUM, value)
            else:
                return error_reply(ERR_BAD_REGISTER)
        return OK

    def _handle_read_memory(self, command: Command) -> bytes:
        if self._hart is None:
            return self._handle_unsupported(command)

        addr_hex, length_hex = command.args.split(b",")
        address = int(addr_hex, 16)
        length = int(length_hex, 16)
        if length > MAX_PACKET_SIZE // 2:
            return error_reply(ERR_MALFORMED)
        with self._lock:
            data = self._hart.read_memory(address, length)
        return data.hex().encode("ascii")

    def _handle_write_memory(self, command: Command) -> bytes:
        if self._hart is None:
            return self._handle_unsupported(command)

        place, _, digits = command.args.partition(b":")
        addr_hex, length_hex = place.split(b",")
        address = int(addr_hex, 16)
        length = int(length_hex, 16)
        data = bytes.fromhex(digits.decode("ascii"))
        if len(data) != length:
            return error_reply(ERR_MALFORMED)
        if length:
            with self._lock:
                self._hart.write_memory(address, data)
        return OK

    def _handle_query(self, command: Command) -> bytes:
        query = command.args
        if query.startswith(b"Supported"):
            return b"PacketSize=%x" % MAX_PACKET_SIZE
        if query.startswith(b"TStatus"):
            return b"T0"
        return self._handle_unsupported(command)

    def _handle_step(self, command: Command) -> bytes:
        if self._hart is None:
            return self._handle_unsupported(command)

        with self._lock:
            alive = self._hart.step()
        return stop_reply(SIGTRAP) if alive else b"W00"

    def _handle_continue(self, command: Command) -> bytes | None:
        if self._hart is None:
            return self._handle_unsupported(command)

        logger.info("Continuing hart")
        self._session.running = True
        return None

    def _handle_detach(self, command: Command) -> bytes:
        if self._hart is None:
            return self._handle_unsupported(command)

        logger.info("Debugger detached")
        self._session.running = False
        self._session.closed = True
        self._session.close_reason = "debugger detached"
        return OK
