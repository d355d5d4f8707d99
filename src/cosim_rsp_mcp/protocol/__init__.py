"""Protocol layer: escaping, checksums, framing, reliable send and dispatch."""

from .codec import checksum, escape, unescape
from .commands import Command, CommandKind, parse_command
from .framing import FrameReceiver, build_frame
from .sender import Acked, ReliableSender
from .dispatcher import SessionDispatcher
