"""
=============================================================================
NETSTACK - Handle-Based TCP/UDP Sockets With Serialized Sessions
=============================================================================

This package exposes TCP and UDP sockets to a calling runtime through
integer handles. Every operation returns a Future; long transfers can
report progress on the side.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    netstack/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m netstack)
    ├── stack.py             # NetworkStack: the operation entry points
    ├── client.py            # TCPSocket / UDPSocket object wrappers
    ├── config.py            # StackConfig dataclass
    ├── errors.py            # Error taxonomy
    ├── oplog.py             # Structured operation logging
    └── core/                # Session engine
        ├── session.py       # Transport + read/write queues
        ├── serial_queue.py  # One-worker FIFO executor
        ├── registry.py      # Handle → session table
        ├── pipeline.py      # Read policies, write payloads
        ├── terminator.py    # Delimiter matcher
        ├── sinks.py         # Memory / file / discard sinks
        ├── transcode.py     # UTF-8 and Base64
        └── progress.py      # Throttled progress events

=============================================================================
QUICK START
=============================================================================

    from netstack import NetworkStack

    with NetworkStack() as stack:
        server = stack.listen("127.0.0.1", 0).result()
        pending = stack.accept(server.id)

        client = stack.connect("127.0.0.1", server.local_port).result()
        peer = pending.result()

        stack.write(client.id, "hello\\n")
        print(stack.read(peer.id, terminator="\\n").result())   # hello

=============================================================================
"""

__version__ = "1.0.0"

from .config import StackConfig
from .errors import (
    ArgumentError,
    NetstackError,
    PrematureEndOfStreamError,
    SessionClosedError,
    SessionRoleError,
    TransportError,
)
from .stack import NetworkStack
from .client import TCPSocket, UDPSocket
from .core.progress import ProgressEvent
from .core.session import Datagram, SocketInfo

__all__ = [
    "NetworkStack",
    "StackConfig",
    "TCPSocket",
    "UDPSocket",
    "SocketInfo",
    "Datagram",
    "ProgressEvent",
    "NetstackError",
    "SessionClosedError",
    "ArgumentError",
    "SessionRoleError",
    "TransportError",
    "PrematureEndOfStreamError",
    "__version__",
]
