"""Exception hierarchy for the RSP stub.

``FrameError`` subclasses are recovered inside the protocol (nak and wait for
a resend). ``SessionError`` subclasses end the debug session. Codec capacity
errors are ``ValueError`` subclasses so pure callers can treat them as bad
input.
"""

from __future__ import annotations


class RSPError(Exception):
    """Base class for all protocol errors."""


class FrameError(RSPError):
    """A received frame was rejected; the sender is expected to resend."""


class ChecksumMismatch(FrameError):
    """The checksum trailing a frame did not match its wire bytes."""

    def __init__(self, expected: int | None, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        shown = "??" if expected is None else f"{expected:02x}"
        super().__init__(f"checksum mismatch: frame says {shown}, computed {actual:02x}")


class TruncatedEscape(FrameError):
    """The escaped data ended in an unpaired escape byte."""


class BufferTooSmall(RSPError, ValueError):
    """A codec result would not fit the destination capacity."""


class PacketTooLarge(RSPError, ValueError):
    """An outgoing payload does not fit the maximum wire size."""


class SessionError(RSPError):
    """An error that terminates the current debug session."""


class BufferOverflowError(SessionError):
    """The receive buffer would exceed its declared capacity."""


class TransportError(SessionError, ConnectionError):
    """The transport failed or was closed by the peer."""


class RetryExhausted(SessionError):
    """No acknowledgement was obtained within the retry budget."""
