"""Protocol constants and stub configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

MAX_PACKET_SIZE = 16384
# Worst case every payload byte escaped, plus '$', '#' and two checksum digits
WIRE_BUFFER_SIZE = 2 * MAX_PACKET_SIZE + 4
FRAME_OVERHEAD = 4

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 10001
PORT_ENV_VAR = "COSIM_RSP_PORT"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded waiting for the transport.

    ``poll_interval * max_attempts`` is the effective deadline for a single
    acknowledgement or a stalled write.

    Attributes:
        poll_interval: Seconds to wait for readiness on each attempt.
        max_attempts: Polls allowed before a wait is abandoned.
        max_resends: Naks tolerated for one outgoing packet.
    """

    poll_interval: float = 0.005
    max_attempts: int = 1000
    max_resends: int = 8

    def __post_init__(self) -> None:
        if self.poll_interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {self.poll_interval}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.max_resends < 0:
            raise ValueError(f"max_resends must be >= 0, got {self.max_resends}")

    @property
    def deadline(self) -> float:
        return self.poll_interval * self.max_attempts


def default_port() -> int:
    """Listening port from the environment, falling back to DEFAULT_PORT."""
    value = os.environ.get(PORT_ENV_VAR)
    if not value:
        return DEFAULT_PORT
    try:
        port = int(value)
    except ValueError as e:
        raise ValueError(f"{PORT_ENV_VAR} must be an integer, got {value!r}") from e
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"{PORT_ENV_VAR} must be 0-65535, got {port}")
    return port


@dataclass
class StubConfig:
    """Where the stub listens and how patiently it talks to the debugger."""

    host: str = DEFAULT_HOST
    port: int = field(default_factory=default_port)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
