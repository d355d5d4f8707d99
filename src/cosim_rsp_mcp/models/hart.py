"""Accessor interface to the simulated hart, and an in-memory reference model.

The golden-model simulator is an external collaborator; the stub only
touches it through :class:`GoldenModelAdapter`. :class:`MemoryHart` holds
architectural state in plain Python containers and stands in for a
simulator when none is attached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

NUM_INT_REGISTERS = 32
NUM_FP_REGISTERS = 32
INSTRUCTION_SIZE = 4


class HartAccessError(Exception):
    """The hart rejected a register or memory access."""


@runtime_checkable
class GoldenModelAdapter(Protocol):
    """What the debug stub needs from the simulated hart."""

    xlen: int

    def read_pc(self) -> int: ...

    def write_pc(self, value: int) -> None: ...

    def read_register(self, index: int) -> int: ...

    def write_register(self, index: int, value: int) -> None: ...

    def read_fp_register(self, index: int) -> int: ...

    def write_fp_register(self, index: int, value: int) -> None: ...

    def read_memory(self, address: int, length: int) -> bytes: ...

    def write_memory(self, address: int, data: bytes) -> None: ...

    def step(self) -> bool: ...

    def raise_trap(self, cause: int) -> None: ...


@dataclass
class TrapRecord:
    """A trap injected into the hart."""

    cause: int
    pc: int

    def to_dict(self) -> dict:
        return {"cause": self.cause, "pc": f"0x{self.pc:x}"}


@dataclass
class MemoryHart:
    """Minimal hart with flat sparse memory.

    ``step`` retires one fixed-size instruction by advancing the pc; it
    does not decode anything. Reads of unwritten memory return zeros.
    Memory outside ``[memory_base, memory_base + memory_size)`` raises
    :class:`HartAccessError`.
    """

    xlen: int = 32
    reset_pc: int = 0x80000000
    memory_base: int = 0x80000000
    memory_size: int = 0x100000
    max_steps: int | None = None

    pc: int = field(init=False, default=0)
    registers: list[int] = field(init=False, default_factory=list)
    fp_registers: list[int] = field(init=False, default_factory=list)
    memory: dict[int, int] = field(init=False, default_factory=dict)
    traps: list[TrapRecord] = field(init=False, default_factory=list)
    steps: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if self.xlen not in (32, 64):
            raise ValueError(f"xlen must be 32 or 64, got {self.xlen}")
        self.pc = self.reset_pc & self._mask
        self.registers = [0] * NUM_INT_REGISTERS
        self.fp_registers = [0] * NUM_FP_REGISTERS

    @property
    def _mask(self) -> int:
        return (1 << self.xlen) - 1

    @property
    def exited(self) -> bool:
        return self.max_steps is not None and self.steps >= self.max_steps

    def read_pc(self) -> int:
        return self.pc

    def write_pc(self, value: int) -> None:
        self.pc = value & self._mask

    def read_register(self, index: int) -> int:
        self._check_index(index, NUM_INT_REGISTERS)
        return self.registers[index]

    def write_register(self, index: int, value: int) -> None:
        self._check_index(index, NUM_INT_REGISTERS)
        # x0 is hard-wired to zero
        if index != 0:
            self.registers[index] = value & self._mask

    def read_fp_register(self, index: int) -> int:
        self._check_index(index, NUM_FP_REGISTERS)
        return self.fp_registers[index]

    def write_fp_register(self, index: int, value: int) -> None:
        self._check_index(index, NUM_FP_REGISTERS)
        self.fp_registers[index] = value & 0xFFFFFFFFFFFFFFFF

    def read_memory(self, address: int, length: int) -> bytes:
        self._check_range(address, length)
        return bytes(self.memory.get(address + i, 0) for i in range(length))

    def write_memory(self, address: int, data: bytes) -> None:
        self._check_range(address, len(data))
        for i, byte in enumerate(data):
            self.memory[address + i] = byte

    def step(self) -> bool:
        """Retire one instruction. Returns False once the hart has exited."""
        if self.exited:
            return False
        self.pc = (self.pc + INSTRUCTION_SIZE) & self._mask
        self.steps += 1
        return not self.exited

    def raise_trap(self, cause: int) -> None:
        logger.info("Trap injected: cause=%d pc=0x%x", cause, self.pc)
        self.traps.append(TrapRecord(cause=cause, pc=self.pc))

    def to_dict(self) -> dict:
        return {
            "xlen": self.xlen,
            "pc": f"0x{self.pc:x}",
            "registers": [f"0x{v:x}" for v in self.registers],
            "steps": self.steps,
            "exited": self.exited,
            "traps": [t.to_dict() for t in self.traps],
        }

    def _check_index(self, index: int, limit: int) -> None:
        if not 0 <= index < limit:
            raise HartAccessError(f"register index must be 0-{limit - 1}, got {index}")

    def _check_range(self, address: int, length: int) -> None:
        end = self.memory_base + self.memory_size
        if length < 0 or address < self.memory_base or address + length > end:
            raise HartAccessError(
                f"memory access 0x{address:x}+{length} outside "
                f"0x{self.memory_base:x}-0x{end:x}"
            )
