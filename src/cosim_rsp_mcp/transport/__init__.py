"""Transport layer: the byte stream between the debugger and the stub."""

from .tcp_connection import TcpConnection, TcpListener, Transport
