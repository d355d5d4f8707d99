"""Reliable delivery of reply packets.

Stop-and-wait: one frame is outstanding at a time. A ``-`` from the
debugger resends the identical wire bytes; a ``+`` completes the exchange.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import RetryExhausted, TransportError
from .framing import ACK, NAK, build_frame, write_all
from .state import SessionState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Acked:
    """A frame the debugger acknowledged."""

    frame: bytes
    retries: int = 0


class ReliableSender:
    """Sends payloads over the session transport and waits for acks."""

    def __init__(self, session: SessionState) -> None:
        self._session = session

    def send(self, payload: bytes) -> Acked:
        """Frame ``payload`` and deliver it.

        Raises:
            PacketTooLarge: The payload does not fit the wire buffer; nothing
                was written.
            RetryExhausted: The debugger kept rejecting the frame, answered
                with something other than an ack, or never answered.
            TransportError: The connection failed or was closed.
        """
        session = self._session
        frame = build_frame(payload)
        retries = 0

        while True:
            logger.debug("TX: %r", frame)
            write_all(session.transport, frame, session.retry)

            ack = self.wait_for_ack()
            if ack == ACK:
                session.stats.replies_sent += 1
                return Acked(frame=frame, retries=retries)

            session.stats.naks_received += 1
            if retries >= session.retry.max_resends:
                raise RetryExhausted(
                    f"frame rejected {retries + 1} times; giving up"
                )
            retries += 1
            session.stats.retransmissions += 1
            logger.warning("Received nak; resending frame (retry %d)", retries)

    def wait_for_ack(self) -> bytes:
        """Block until the debugger sends ``+`` or ``-``.

        Returns:
            ``b"+"`` or ``b"-"``.

        Raises:
            RetryExhausted: No ack within the retry budget, or an unexpected
                byte arrived instead.
            TransportError: The connection failed or was closed.
        """
        session = self._session
        policy = session.retry
        for _ in range(policy.max_attempts):
            data = session.transport.read(1, policy.poll_interval)
            if data is None:
                continue
            if data == b"":
                raise TransportError("connection closed while waiting for ack")
            if data in (ACK, NAK):
                logger.debug("RX: %r", data)
                return data
            raise RetryExhausted(f"expected ack or nak, received {data!r}")

        raise RetryExhausted(
            f"no ack received within {policy.max_attempts} polls "
            f"({policy.deadline:.3f}s)"
        )
