"""Command-line entry point: serve the RSP stub on a TCP port."""

from __future__ import annotations

import argparse
import logging

from .config import DEFAULT_HOST, RetryPolicy, StubConfig, default_port
from .errors import TransportError
from .models.hart import MemoryHart
from .session import GdbStubServer

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="cosim-rsp",
        description="GDB remote serial protocol stub for a simulated hart.",
    )
    p.add_argument(
        "--gdbinit",
        "--port",
        dest="port",
        type=int,
        default=None,
        metavar="PORT",
        help="TCP port to listen on for the debugger",
    )
    p.add_argument("--host", default=DEFAULT_HOST)
    p.add_argument(
        "--hart",
        choices=["none", "memory"],
        default="none",
        help="'none' answers with fixed stub replies; 'memory' serves an in-memory hart",
    )
    p.add_argument("--xlen", type=int, choices=[32, 64], default=32)
    p.add_argument("--poll-interval", type=float, default=RetryPolicy.poll_interval)
    p.add_argument("--max-attempts", type=int, default=RetryPolicy.max_attempts)
    p.add_argument("--max-resends", type=int, default=RetryPolicy.max_resends)
    p.add_argument("--once", action="store_true", help="exit after the first session")
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return p


def config_from_args(args: argparse.Namespace) -> StubConfig:
    retry = RetryPolicy(
        poll_interval=args.poll_interval,
        max_attempts=args.max_attempts,
        max_resends=args.max_resends,
    )
    port = args.port if args.port is not None else default_port()
    return StubConfig(host=args.host, port=port, retry=retry)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s %(name)s %(message)s",
    )

    try:
        config = config_from_args(args)
    except ValueError as e:
        logger.error("%s", e)
        return 2

    hart = MemoryHart(xlen=args.xlen) if args.hart == "memory" else None
    server = GdbStubServer(config, hart=hart)
    try:
        server.open()
        server.serve_forever(max_sessions=1 if args.once else None)
    except TransportError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        server.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
