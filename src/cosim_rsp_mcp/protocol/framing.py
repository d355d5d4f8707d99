"""RSP frame building and incremental frame reception.

Frame layout::

    +-----+--------------------+-----+-----------------+
    | '$' |  escaped payload   | '#' | 2 hex checksum  |
    +-----+--------------------+-----+-----------------+

- Payload: reserved bytes escaped (see :mod:`.codec`)
- Checksum: modulo-256 sum of the escaped payload, lowercase hex

The interrupt byte 0x03 travels outside any frame and is never
acknowledged.
"""

from __future__ import annotations

import logging
import time
from enum import Enum

from ..config import FRAME_OVERHEAD, MAX_PACKET_SIZE, WIRE_BUFFER_SIZE, RetryPolicy
from ..errors import (
    BufferOverflowError,
    BufferTooSmall,
    ChecksumMismatch,
    PacketTooLarge,
    TransportError,
    TruncatedEscape,
)
from ..transport import Transport
from .codec import ESCAPE, checksum, escape, format_checksum, parse_checksum, unescape
from .commands import INTERRUPT, INTERRUPT_BYTE, Command, parse_command
from .state import SessionState

logger = logging.getLogger(__name__)

ACK = b"+"
NAK = b"-"


def build_frame(payload: bytes) -> bytes:
    """Build the wire form of a packet.

    Raises:
        PacketTooLarge: If the escaped payload does not fit the wire buffer.
    """
    try:
        body = escape(payload, capacity=WIRE_BUFFER_SIZE - FRAME_OVERHEAD)
    except BufferTooSmall as e:
        raise PacketTooLarge(
            f"payload of {len(payload)} bytes does not fit a "
            f"{WIRE_BUFFER_SIZE}-byte wire buffer"
        ) from e
    return b"$" + body + b"#" + format_checksum(checksum(body))


def write_all(transport: Transport, data: bytes, policy: RetryPolicy) -> None:
    """Write every byte of ``data``, tolerating partial writes.

    Raises:
        TransportError: If the transport accepts nothing for more than
            ``policy.max_attempts`` consecutive calls.
    """
    sent = 0
    stalls = 0
    while sent < len(data):
        n = transport.write(data[sent:])
        if n > 0:
            sent += n
            stalls = 0
            continue
        stalls += 1
        if stalls > policy.max_attempts:
            raise TransportError(
                f"nothing sent in {policy.max_attempts} write attempts"
            )
        time.sleep(policy.poll_interval)


class ReceiveState(Enum):
    AWAIT_START = "await_start"
    AWAIT_END = "await_end"
    AWAIT_CHECKSUM = "await_checksum"
    COMPLETE = "complete"


class FrameReceiver:
    """Turns the incoming byte stream into commands.

    Each :meth:`receive` call reads whatever the transport has, then tries
    to extract one frame from the session's wire buffer. Partial frames stay
    buffered between calls.
    """

    def __init__(self, session: SessionState) -> None:
        self._session = session
        self._state = ReceiveState.AWAIT_START

    @property
    def state(self) -> ReceiveState:
        return self._state

    def receive(self, timeout: float | None = None) -> Command | None:
        """Read from the transport and return the next complete command.

        Args:
            timeout: Seconds to wait for data; defaults to the retry
                policy's poll interval.

        Returns:
            The parsed command, or None if no complete frame is buffered.

        Raises:
            ChecksumMismatch: The frame was nak'd and discarded.
            TruncatedEscape: The frame was nak'd and discarded.
            BufferTooSmall: The frame payload exceeds the packet size; it was
                discarded without an acknowledgement.
            BufferOverflowError: The buffer is full without a complete frame.
            TransportError: The connection failed or was closed.
        """
        session = self._session
        if timeout is None:
            timeout = session.retry.poll_interval

        if session.buffer.free > 0:
            data = session.transport.read(session.buffer.free, timeout)
            if data == b"":
                raise TransportError("connection closed by debugger")
            if data:
                logger.debug("RX: %r", data)
                session.buffer.append(data)

        command = self._parse()
        if command is None and session.buffer.free == 0:
            raise BufferOverflowError(
                f"receive buffer full ({session.buffer.capacity} bytes) "
                "without a complete frame"
            )
        return command

    def _parse(self) -> Command | None:
        buf = self._session.buffer
        stats = self._session.stats
        self._state = ReceiveState.AWAIT_START

        start = self._find_start()
        if start < 0:
            if len(buf):
                logger.warning("Discarding %d bytes of noise before '$'", len(buf))
                stats.noise_bytes += len(buf)
                buf.clear()
            return None
        if start > 0:
            logger.warning("Discarding %d bytes of noise before '$'", start)
            stats.noise_bytes += start
            buf.drain(start)

        if buf[0] == INTERRUPT_BYTE:
            buf.drain(1)
            stats.interrupts += 1
            logger.debug("RX: interrupt")
            return INTERRUPT

        self._state = ReceiveState.AWAIT_END
        end = buf.find(b"#", 1)
        complete = end >= 0 and len(buf) >= end + 3
        if end >= 0 and not complete:
            self._state = ReceiveState.AWAIT_CHECKSUM

        # An interrupt anywhere in the frame is reported before the frame
        pos = self._find_interrupt(end, end + 3 if complete else len(buf))
        if pos is not None:
            buf.remove(pos)
            stats.interrupts += 1
            logger.debug("RX: interrupt inside frame")
            return INTERRUPT
        if not complete:
            return None

        self._state = ReceiveState.COMPLETE
        body = buf.peek(1, end)
        digits = buf.peek(end + 1, end + 3)
        buf.drain(end + 3)
        self._state = ReceiveState.AWAIT_START

        actual = checksum(body)
        expected = parse_checksum(digits)
        if expected != actual:
            stats.checksum_failures += 1
            logger.warning(
                "Checksum mismatch (got %r, computed %02x); sending nak", digits, actual
            )
            self._acknowledge(NAK)
            raise ChecksumMismatch(expected, actual)

        try:
            payload = unescape(body, capacity=MAX_PACKET_SIZE)
        except TruncatedEscape:
            stats.rejected_frames += 1
            logger.warning("Frame ends in an escape byte; sending nak")
            self._acknowledge(NAK)
            raise
        except BufferTooSmall:
            stats.rejected_frames += 1
            logger.error("Frame payload exceeds %d bytes; dropping it", MAX_PACKET_SIZE)
            raise

        self._acknowledge(ACK)
        stats.frames_received += 1
        command = parse_command(payload)
        logger.debug("Parsed %r", command)
        return command

    def _find_start(self) -> int:
        buf = self._session.buffer
        found = [i for i in (buf.find(b"$"), buf.find(bytes([INTERRUPT_BYTE]))) if i >= 0]
        return min(found) if found else -1

    def _find_interrupt(self, end: int, limit: int) -> int | None:
        """Locate an unescaped interrupt byte in ``buf[1:limit]``.

        ``end`` is the index of the frame's ``#``, or -1 if not yet seen;
        escapes only apply before it.
        """
        buf = self._session.buffer
        escaped = False
        for i in range(1, limit):
            byte = buf[i]
            in_body = end < 0 or i < end
            if escaped:
                escaped = False
            elif byte == ESCAPE and in_body:
                escaped = True
            elif byte == INTERRUPT_BYTE:
                return i
        return None

    def _acknowledge(self, ack: bytes) -> None:
        logger.debug("TX: %r", ack)
        write_all(self._session.transport, ack, self._session.retry)
