"""Debug session lifecycle: the receive/dispatch/send loop and the accept loop.

A session ends on detach, on disconnect, or on any fatal protocol error.
Ending a session releases the connection and leaves the hart alone; the
server then waits for the next debugger.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from .config import RetryPolicy, StubConfig
from .errors import BufferTooSmall, FrameError, PacketTooLarge, SessionError
from .models.hart import GoldenModelAdapter, HartAccessError
from .protocol.dispatcher import SessionDispatcher
from .protocol.framing import ACK, FrameReceiver
from .protocol.sender import ReliableSender
from .protocol.state import SessionState
from .transport import TcpListener, Transport

logger = logging.getLogger(__name__)

ACCEPT_POLL_SECONDS = 0.2


class DebugSession:
    """Serves one debugger connection until it ends.

    Usage::

        session = DebugSession(conn, hart=hart)
        reason = session.run()
    """

    def __init__(
        self,
        transport: Transport,
        hart: GoldenModelAdapter | None = None,
        retry: RetryPolicy | None = None,
        hart_lock: threading.RLock | None = None,
        stop_event: threading.Event | None = None,
        expect_initial_ack: bool = True,
    ) -> None:
        self.state = SessionState(transport=transport, retry=retry or RetryPolicy())
        self.receiver = FrameReceiver(self.state)
        self.sender = ReliableSender(self.state)
        self.dispatcher = SessionDispatcher(self.state, hart, hart_lock)
        self._stop_event = stop_event or threading.Event()
        self._expect_initial_ack = expect_initial_ack

    @property
    def closed(self) -> bool:
        return self.state.closed

    def run(self) -> str:
        """Serve the connection until it ends.

        Returns:
            The reason the session closed.
        """
        state = self.state
        try:
            if self._expect_initial_ack:
                self._handshake()
            while not state.closed and not self._stop_event.is_set():
                self.poll()
        except (SessionError, PacketTooLarge, HartAccessError) as e:
            logger.error("Ending debug session: %s", e)
            state.close_reason = str(e)
        finally:
            self.close()
        return state.close_reason

    def poll(self) -> None:
        """Run one receive/dispatch/send exchange if a command is ready.

        Recoverable framing errors are absorbed here; fatal ones propagate.
        """
        state = self.state
        timeout = 0.0 if state.running else None
        try:
            command = self.receiver.receive(timeout)
        except FrameError as e:
            logger.warning("Rejected frame: %s", e)
            return
        except BufferTooSmall as e:
            logger.error("Dropped oversized frame: %s", e)
            return

        if command is None:
            reply = self.dispatcher.step_running()
        else:
            reply = self.dispatcher.dispatch(command)

        if reply is not None:
            self.sender.send(reply)

    def stop(self) -> None:
        self._stop_event.set()

    def close(self) -> None:
        state = self.state
        if not state.close_reason:
            state.close_reason = "stopped" if self._stop_event.is_set() else "closed"
        state.running = False
        state.closed = True
        state.transport.close()

    def _handshake(self) -> None:
        ack = self.sender.wait_for_ack()
        if ack != ACK:
            raise SessionError(f"expected '+' from debugger on connect, got {ack!r}")
        logger.debug("Debugger handshake complete")


class GdbStubServer:
    """Accepts debugger connections and serves them one at a time.

    The hart lock is shared with every session so that outside callers
    (for example the MCP tools) never touch the hart while a command is
    being dispatched.
    """

    def __init__(
        self,
        config: StubConfig | None = None,
        hart: GoldenModelAdapter | None = None,
        hart_lock: threading.RLock | None = None,
    ) -> None:
        self.config = config or StubConfig()
        self.hart = hart
        self.hart_lock = hart_lock or threading.RLock()
        self._listener = TcpListener(self.config.host, self.config.port)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._session: DebugSession | None = None
        self.sessions_served = 0
        self.last_close_reason = ""

    @property
    def address(self) -> tuple[str, int]:
        return self._listener.address

    @property
    def listening(self) -> bool:
        return self._listener.listening

    @property
    def session(self) -> DebugSession | None:
        return self._session

    def open(self) -> tuple[str, int]:
        """Bind the listening socket.

        Raises:
            TransportError: If the port cannot be bound.
        """
        return self._listener.open()

    def serve_forever(self, max_sessions: int | None = None) -> None:
        """Accept and serve debuggers until stopped.

        Args:
            max_sessions: Return after this many sessions; None for no limit.
        """
        if not self.listening:
            self.open()
        while not self._stop.is_set():
            if max_sessions is not None and self.sessions_served >= max_sessions:
                break
            conn = self._listener.accept(timeout=ACCEPT_POLL_SECONDS)
            if conn is None:
                continue
            self.serve_connection(conn)

    def serve_connection(self, transport: Transport) -> str:
        """Run one session to completion on an already-accepted transport."""
        session = DebugSession(
            transport,
            hart=self.hart,
            retry=self.config.retry,
            hart_lock=self.hart_lock,
            stop_event=self._stop,
        )
        self._session = session
        try:
            reason = session.run()
        finally:
            self._session = None
        self.sessions_served += 1
        self.last_close_reason = reason
        logger.info("Debug session ended: %s", reason)
        return reason

    def start(self) -> tuple[str, int]:
        """Serve in a background daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self.address
        self._stop.clear()
        address = self.open()
        self._thread = threading.Thread(target=self.serve_forever, daemon=True)
        self._thread.start()
        return address

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._listener.close()

    def status(self) -> dict[str, Any]:
        host, port = self.address
        session = self._session
        result: dict[str, Any] = {
            "listening": self.listening,
            "host": host,
            "port": port,
            "connected": session is not None and not session.closed,
            "hart_attached": self.hart is not None,
            "sessions_served": self.sessions_served,
            "last_close_reason": self.last_close_reason,
        }
        if session is not None:
            result["running"] = session.state.running
            result["stats"] = session.state.stats.to_dict()
        return result
