"""TCP transport for the debug channel.

The debugger connects to a listening socket; exactly one accepted
connection is served at a time. Reads distinguish three outcomes:

- ``None``: nothing arrived within the wait (not an error),
- ``b""``: the peer closed the connection,
- ``TransportError``: the socket failed.
"""

from __future__ import annotations

import logging
import select
import socket
from typing import Protocol

from ..errors import TransportError

logger = logging.getLogger(__name__)

READ_CHUNK = 4096


class Transport(Protocol):
    """Byte stream consumed by the protocol engine."""

    def read(self, max_bytes: int, timeout: float = 0.0) -> bytes | None: ...

    def write(self, data: bytes) -> int: ...

    def close(self) -> None: ...


class TcpConnection:
    """One accepted debugger connection.

    Usage::

        conn = TcpConnection(sock, peer)
        conn.write(b"+")
        data = conn.read(1024, timeout=0.01)
        conn.close()
    """

    def __init__(self, sock: socket.socket, peer: str = "") -> None:
        sock.setblocking(False)
        self._sock = sock
        self._peer = peer
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def peer(self) -> str:
        return self._peer

    def read(self, max_bytes: int = READ_CHUNK, timeout: float = 0.0) -> bytes | None:
        """Read up to ``max_bytes``, waiting at most ``timeout`` seconds.

        Returns:
            The bytes read, None if nothing is available yet, or ``b""`` at
            end of stream.

        Raises:
            TransportError: If the connection is closed or the read fails.
        """
        if not self._connected:
            raise TransportError("Not connected to debugger")
        if max_bytes <= 0:
            return None

        try:
            readable, _, _ = select.select([self._sock], [], [], timeout)
            if not readable:
                return None
            return self._sock.recv(max_bytes)
        except (BlockingIOError, InterruptedError):
            return None
        except OSError as e:
            raise TransportError(f"read from {self._peer or 'debugger'} failed: {e}") from e

    def write(self, data: bytes) -> int:
        """Send as much of ``data`` as the socket accepts right now.

        Returns:
            Number of bytes sent; 0 means the socket is not ready.

        Raises:
            TransportError: If the connection is closed or the write fails.
        """
        if not self._connected:
            raise TransportError("Not connected to debugger")

        try:
            return self._sock.send(data)
        except (BlockingIOError, InterruptedError):
            return 0
        except OSError as e:
            raise TransportError(f"write to {self._peer or 'debugger'} failed: {e}") from e

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if not self._connected:
            return

        try:
            self._sock.close()
        except OSError as e:
            logger.warning("Error closing connection: %s", e)
        finally:
            self._connected = False
            logger.info("Disconnected from %s", self._peer or "debugger")


class TcpListener:
    """Listening socket that hands out :class:`TcpConnection` objects."""

    def __init__(self, host: str, port: int) -> None:
        self._host = host
        self._port = port
        self._sock: socket.socket | None = None

    @property
    def address(self) -> tuple[str, int]:
        """Bound address; the port is the real one when 0 was requested."""
        if self._sock is None:
            return (self._host, self._port)
        host, port = self._sock.getsockname()[:2]
        return (host, port)

    @property
    def listening(self) -> bool:
        return self._sock is not None

    def open(self) -> tuple[str, int]:
        """Bind and listen.

        Raises:
            TransportError: If the port cannot be bound.
        """
        if self._sock is not None:
            return self.address

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self._host, self._port))
            sock.listen(1)
        except OSError as e:
            sock.close()
            raise TransportError(
                f"Could not listen on {self._host}:{self._port}: {e}"
            ) from e

        self._sock = sock
        logger.info("Listening for debugger on %s:%d", *self.address)
        return self.address

    def accept(self, timeout: float | None = None) -> TcpConnection | None:
        """Wait for a debugger to connect.

        Returns:
            The accepted connection, or None if ``timeout`` expired.
        """
        if self._sock is None:
            raise TransportError("Listener is not open")

        try:
            readable, _, _ = select.select([self._sock], [], [], timeout)
            if not readable:
                return None
            sock, client = self._sock.accept()
        except OSError as e:
            raise TransportError(f"accept failed: {e}") from e

        peer = f"{client[0]}:{client[1]}"
        logger.info("New connection from %s", peer)
        return TcpConnection(sock, peer)

    def close(self) -> None:
        if self._sock is None:
            return
        try:
            self._sock.close()
        except OSError as e:
            logger.warning("Error closing listener: %s", e)
        finally:
            self._sock = None
