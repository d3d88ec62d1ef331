"""
=============================================================================
NETSTACK CLI ENTRY POINT
=============================================================================

Small command-line tools built on the NetworkStack, handy for poking at
a service by hand or smoke-testing the stack itself.

=============================================================================
USAGE
=============================================================================

    # Send a line, print the reply line
    python -m netstack send 127.0.0.1 7000 "hello" --until "\\n"

    # Line echo server
    python -m netstack echo --port 7000

    # Fire one UDP datagram
    python -m netstack udp-send 127.0.0.1 9999 "ping"

    # Print the next 5 datagrams arriving on port 9999
    python -m netstack udp-listen --port 9999 --count 5

=============================================================================
"""

import argparse
import logging
import sys
import threading

from . import __version__
from .client import TCPSocket, UDPSocket
from .config import StackConfig
from .errors import NetstackError, PrematureEndOfStreamError
from .oplog import setup_logging
from .stack import NetworkStack


logger = logging.getLogger("netstack.cli")


def _unescape(text: str) -> str:
    """Let "\\n" on the command line mean a newline."""
    return text.encode("utf-8").decode("unicode_escape")


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_send(stack: NetworkStack, args) -> int:
    with TCPSocket.connect(stack, args.host, args.port) as sock:
        message = _unescape(args.message)
        if args.newline:
            message += "\n"
        sock.write(message)

        if args.until is None:
            return 0

        reply = sock.read(until=_unescape(args.until), timeout=args.timeout)
        print(reply)
    return 0


def _echo_lines(conn: TCPSocket) -> None:
    with conn:
        while True:
            try:
                line = conn.read(until="\n")
            except PrematureEndOfStreamError:
                break  # peer hung up
            conn.write(line + "\n")


def cmd_echo(stack: NetworkStack, args) -> int:
    server = TCPSocket.listen(stack, port=args.port, host=args.host)
    print(f"Echoing lines on {server.local_address}:{server.local_port} (Ctrl+C to stop)")

    while True:
        conn = server.accept()
        logger.info(f"Connection from {conn.remote_address}:{conn.remote_port}")
        threading.Thread(target=_echo_lines, args=(conn,), daemon=True).start()


def cmd_udp_send(stack: NetworkStack, args) -> int:
    with UDPSocket.create(stack, broadcast=args.broadcast) as sock:
        sent = sock.send(args.host, args.port, _unescape(args.message))
    print(f"Sent {sent} bytes")
    return 0


def cmd_udp_listen(stack: NetworkStack, args) -> int:
    with UDPSocket.create(stack, port=args.port, reuse=True) as sock:
        if args.group:
            sock.join(args.group)
        received = 0
        while args.count is None or received < args.count:
            packet = sock.receive()
            print(f"{packet.sender_address}:{packet.sender_port} {packet.data}")
            received += 1
    return 0


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="netstack",
        description="TCP/UDP tools on top of the netstack session engine",
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: NETSTACK_LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Operation log format (default: text)"
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"netstack {__version__}"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    send = commands.add_parser("send", help="Connect, send a message, optionally read a reply")
    send.add_argument("host")
    send.add_argument("port", type=int)
    send.add_argument("message")
    send.add_argument("--until", default=None, help="Read a reply up to this terminator")
    send.add_argument("--newline", action="store_true", help="Append a newline to the message")
    send.add_argument("--timeout", type=float, default=None, help="Seconds to wait for the reply")
    send.set_defaults(handler=cmd_send)

    echo = commands.add_parser("echo", help="Run a line echo server")
    echo.add_argument("--host", "-H", default="127.0.0.1")
    echo.add_argument("--port", "-p", type=int, default=7000)
    echo.set_defaults(handler=cmd_echo)

    udp_send = commands.add_parser("udp-send", help="Send one UDP datagram")
    udp_send.add_argument("host")
    udp_send.add_argument("port", type=int)
    udp_send.add_argument("message")
    udp_send.add_argument("--broadcast", action="store_true")
    udp_send.set_defaults(handler=cmd_udp_send)

    udp_listen = commands.add_parser("udp-listen", help="Print incoming UDP datagrams")
    udp_listen.add_argument("--port", "-p", type=int, default=9999)
    udp_listen.add_argument("--count", "-c", type=int, default=None)
    udp_listen.add_argument("--group", "-g", default=None, help="Multicast group to join")
    udp_listen.set_defaults(handler=cmd_udp_listen)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # Environment first, then explicit flags on top
    config = StackConfig.from_env()
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format

    try:
        config.validate()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    setup_logging(config)

    stack = NetworkStack(config)
    stack.install_exit_hook()

    try:
        return args.handler(stack, args)
    except KeyboardInterrupt:
        return 130
    except NetstackError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1
    finally:
        stack.shutdown()


if __name__ == "__main__":
    sys.exit(main())
