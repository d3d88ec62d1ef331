"""
=============================================================================
SESSION
=============================================================================

A session is one open transport plus the two queues that serialize work
on it.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           Session #7                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │  role        connecting-socket | listening-socket | datagram-socket │
    │  transport   socket.socket (exactly one)                            │
    │                                                                     │
    │  read_queue  ──► [read] [read] [accept] [udp receive]               │
    │  write_queue ──► [setup] [write] [write] [udp send] [close]         │
    └─────────────────────────────────────────────────────────────────────┘

At most one read-side and one write-side task touch the transport at any
moment. Reads and writes run concurrently with each other; a TCP socket
has independent send and receive buffers, so that is safe.

=============================================================================
LIFECYCLE
=============================================================================

    Session()           queues running, no transport yet
        │
        ▼ setup task on write_queue (connect / listen / bind)
    attach(sock)        transport live, handle assigned by the table
        │
        ▼ close task on write_queue, or SessionTable.close_all()
    close_transport()   socket shut down and closed
    stop()              both queues drain and exit

A closed session never reopens. Its handle stays invalid.
=============================================================================
"""

import itertools
import logging
import socket
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..errors import SessionClosedError, SessionRoleError, TransportError
from .serial_queue import SerialQueue


logger = logging.getLogger(__name__)

# Names worker threads before a handle exists.
_queue_ids = itertools.count(1)


class SessionRole(Enum):
    """What kind of transport a session holds."""

    CONNECTING = "connecting-socket"
    LISTENING = "listening-socket"
    DATAGRAM = "datagram-socket"


@dataclass
class SocketInfo:
    """
    Result record of connect / listen / accept / bind.

    Remote fields are None for listeners and unconnected datagram
    endpoints.
    """

    id: int
    local_address: str
    local_port: int
    remote_address: Optional[str] = None
    remote_port: Optional[int] = None

    def to_dict(self) -> dict:
        info = {
            "id": self.id,
            "localAddress": self.local_address,
            "localPort": self.local_port,
        }
        if self.remote_address is not None:
            info["remoteAddress"] = self.remote_address
        if self.remote_port is not None:
            info["remotePort"] = self.remote_port
        return info


@dataclass
class Datagram:
    """One received UDP datagram, decoded as UTF-8."""

    data: str
    sender_address: str
    sender_port: int

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "senderAddress": self.sender_address,
            "senderPort": self.sender_port,
        }


class Session:
    """
    One transport and its read/write queues.

    Sessions are created empty, get their transport from a setup task
    running on their own write queue, and are registered in the
    SessionTable only once that succeeded.
    """

    def __init__(self, role: SessionRole, transport: Optional[socket.socket] = None):
        self.role = role
        self.handle: Optional[int] = None

        self._transport = transport
        self._lock = threading.Lock()
        self._closed = False

        queue_id = next(_queue_ids)
        self.read_queue = SerialQueue(f"netstack-{queue_id}-read")
        self.write_queue = SerialQueue(f"netstack-{queue_id}-write")

        # Close requests after the first share its future.
        self.close_future = None

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Session handle={self.handle} role={self.role.value} {state}>"

    # =========================================================================
    # TRANSPORT ACCESS
    # =========================================================================

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def transport(self) -> Optional[socket.socket]:
        return self._transport

    @property
    def stream(self) -> Optional[socket.socket]:
        return self._transport if self.role is SessionRole.CONNECTING else None

    @property
    def listener(self) -> Optional[socket.socket]:
        return self._transport if self.role is SessionRole.LISTENING else None

    @property
    def datagram(self) -> Optional[socket.socket]:
        return self._transport if self.role is SessionRole.DATAGRAM else None

    def attach(self, transport: socket.socket) -> None:
        """Install the transport produced by a setup task."""
        with self._lock:
            if self._closed:
                raise SessionClosedError(self.handle)
            self._transport = transport

    def _live_transport(self) -> socket.socket:
        if self._closed or self._transport is None:
            raise SessionClosedError(self.handle)
        return self._transport

    def require_readable(self) -> socket.socket:
        """Transport for the read pipeline: a connected stream or a datagram endpoint."""
        if self.role is SessionRole.LISTENING:
            raise SessionRoleError(
                "This is a listening socket. Accept a connection before reading."
            )
        return self._live_transport()

    def require_stream(self) -> socket.socket:
        if self.role is not SessionRole.CONNECTING:
            raise SessionRoleError(
                f"This is a {self.role.value}. Writes need a connected stream."
            )
        return self._live_transport()

    def require_listener(self) -> socket.socket:
        if self.role is not SessionRole.LISTENING:
            raise SessionRoleError("This is not a listening socket. You can't accept() on it.")
        return self._live_transport()

    def require_datagram(self) -> socket.socket:
        if self.role is not SessionRole.DATAGRAM:
            raise SessionRoleError("This is not a datagram socket.")
        return self._live_transport()

    # =========================================================================
    # DESCRIPTION
    # =========================================================================

    def info(self) -> SocketInfo:
        """Describe the transport for the setup result record."""
        sock = self._live_transport()
        local = sock.getsockname()

        remote_address = remote_port = None
        if self.role is SessionRole.CONNECTING:
            remote = sock.getpeername()
            remote_address, remote_port = remote[0], remote[1]

        return SocketInfo(
            id=self.handle,
            local_address=local[0],
            local_port=local[1],
            remote_address=remote_address,
            remote_port=remote_port,
        )

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close_transport(self) -> bool:
        """
        Shut down and close the transport. Idempotent.

        shutdown() comes first: on Linux it wakes a thread blocked in
        recv()/accept() on the same socket, which close() alone does not.

        Returns:
            True if this call closed it, False if it was already closed.

        Raises:
            TransportError: If close() itself failed. The session is
                            marked closed regardless.
        """
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            sock, self._transport = self._transport, None

        if sock is None:
            return True

        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # never connected, or the peer is already gone

        try:
            sock.close()
        except OSError as e:
            raise TransportError.from_os_error(e) from e

        logger.debug(f"Session {self.handle} ({self.role.value}) transport closed")
        return True

    def stop(self) -> None:
        """Let both queues finish what is queued and exit."""
        self.read_queue.shutdown()
        self.write_queue.shutdown()
